from __future__ import annotations

import logging
from threading import Event, Thread
from typing import Callable

import urllib3
from kubernetes import watch
from kubernetes.client.rest import ApiException

from .api_models import Node
from .errors import MembershipQueryError
from .kube_ops import NodeSource

logger = logging.getLogger(__name__)


class NodeWatcher(Thread):
    """Streams node events and reports real membership changes.

    Each event is projected through :meth:`NodeSource.project`, so only
    changes that alter the eligible (name, address) set reach ``on_change``.
    Status heartbeats and label churn are ignored.
    """

    def __init__(
        self,
        source: NodeSource,
        on_change: Callable[[str], None],
        timeout_seconds: int = 300,
        retry_s: float = 5.0,
    ):
        super().__init__(name="node-watcher", daemon=True)
        self.source = source
        self.on_change = on_change
        self.timeout_seconds = timeout_seconds
        self.retry_s = retry_s
        self._stop_event = Event()
        self._watch: watch.Watch | None = None
        self._seen: dict[str, Node] = {}

    def stop(self) -> None:
        self._stop_event.set()
        if self._watch is not None:
            self._watch.stop()

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._seed()
                self._stream()
            except (ApiException, urllib3.exceptions.HTTPError, MembershipQueryError) as e:
                logger.warning("Node watch interrupted: %s; restarting in %ss", e, self.retry_s)
                self._stop_event.wait(self.retry_s)
            except Exception:
                logger.exception("Node watch failed; restarting in %ss", self.retry_s)
                self._stop_event.wait(self.retry_s)

    def _seed(self) -> None:
        self._seen = {n.name: n for n in self.source.list_healthy_nodes()}

    def _stream(self) -> None:
        self._watch = watch.Watch()
        kwargs = {
            "timeout_seconds": self.timeout_seconds,
            "_request_timeout": self.timeout_seconds + self.source.request_timeout_s,
        }
        if self.source.label_selector:
            kwargs["label_selector"] = self.source.label_selector
        for event in self._watch.stream(self.source.core_api.list_node, **kwargs):
            if self._stop_event.is_set():
                break
            self.handle_event(event.get("type", ""), event.get("object"))

    def handle_event(self, event_type: str, obj: object) -> bool:
        """Apply one watch event; True when it changed eligible membership."""
        if obj is None or getattr(obj, "metadata", None) is None:
            return False
        name = obj.metadata.name
        node = None if event_type == "DELETED" else self.source.project(obj)

        before = self._seen.get(name)
        if node == before:
            return False
        if node is None:
            self._seen.pop(name, None)
        else:
            self._seen[name] = node
        reason = f"node {name} {event_type.lower() or 'changed'}"
        logger.info("Membership change: %s", reason)
        self.on_change(reason)
        return True
