from __future__ import annotations

import logging
import os
from typing import Any

import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .api_models import Node
from .errors import MembershipQueryError

logger = logging.getLogger(__name__)


def load_kube_config() -> None:
    """Use ``$KUBECONFIG`` when set, in-cluster service account credentials otherwise."""
    path = os.getenv("KUBECONFIG")
    if path:
        config.load_kube_config(config_file=path)
        logger.info("Using kubeconfig %s", path)
        return
    config.load_incluster_config()
    logger.info("Using in-cluster config")


class NodeSource:
    """Lists the cluster nodes that are eligible to receive traffic.

    A node is eligible when it matches the label selector (if any), reports
    ``Ready=True`` and has an address of ``address_type``. The controller
    treats the returned list as exactly the desired pool membership.
    """

    def __init__(
        self,
        core_api: client.CoreV1Api | None = None,
        label_selector: str = "",
        address_type: str = "ExternalIP",
        require_ready: bool = True,
        request_timeout_s: float = 30.0,
    ):
        self.core_api = core_api or client.CoreV1Api()
        self.label_selector = label_selector or None
        self.address_type = address_type
        self.require_ready = require_ready
        self.request_timeout_s = request_timeout_s

    def list_healthy_nodes(self) -> list[Node]:
        try:
            resp = self.core_api.list_node(label_selector=self.label_selector, _request_timeout=self.request_timeout_s)
        except (ApiException, urllib3.exceptions.HTTPError, ValueError) as e:
            # ValueError covers bodies the client fails to deserialize into its models.
            raise MembershipQueryError(self.label_selector or "all nodes", e) from e

        nodes: list[Node] = []
        try:
            for item in resp.items or []:
                node = self.project(item)
                if node is not None:
                    nodes.append(node)
        except (AttributeError, TypeError) as e:
            raise MembershipQueryError(self.label_selector or "all nodes", f"malformed node list: {e}") from e

        logger.debug("Listed %d eligible nodes", len(nodes))
        return nodes

    def project(self, item: Any) -> Node | None:
        """Map a ``V1Node`` to a :class:`Node`, or None when it is not eligible."""
        name = item.metadata.name
        status = item.status

        if self.require_ready and not _is_ready(status):
            logger.debug("Skipping node %s: not ready", name)
            return None

        address = ""
        for addr in (status.addresses if status else None) or []:
            if addr.type == self.address_type:
                address = addr.address
        if not address:
            logger.debug("Skipping node %s: no %s address", name, self.address_type)
            return None
        return Node(name=name, external_address=address)


def _is_ready(status: Any) -> bool:
    for cond in (status.conditions if status else None) or []:
        if cond.type == "Ready":
            return cond.status == "True"
    return False
