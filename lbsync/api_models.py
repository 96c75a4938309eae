from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field

# Cloudflare pools may limit the number of origins.
MAX_ORIGINS = 5

# Never sent back in create/update bodies.
READ_ONLY_FIELDS = {"id", "created_on", "modified_on"}


@dataclass(frozen=True)
class Node:
    name: str
    external_address: str


class _Resource(BaseModel):
    # Unknown remote fields are kept so an update round-trips what other actors set.
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, exclude=READ_ONLY_FIELDS)


class Origin(BaseModel):
    name: str
    address: str
    enabled: bool = True


class Monitor(_Resource):
    id: str | None = None
    type: str = "https"
    description: str = ""
    method: str = "GET"
    path: str = "/"
    timeout: int = 5
    retries: int = 2
    interval: int = 60
    expected_codes: str = "200"
    follow_redirects: bool = False
    allow_insecure: bool = True


class Pool(_Resource):
    id: str | None = None
    name: str
    origins: list[Origin] = Field(default_factory=list)
    enabled: bool = True
    monitor_id: str | None = Field(None, alias="monitor")


class LoadBalancer(_Resource):
    id: str | None = None
    name: str
    description: str = ""
    fallback_pool_id: str | None = Field(None, alias="fallback_pool")
    default_pool_ids: list[str] = Field(default_factory=list, alias="default_pools")
    proxied: bool = True


class Zone(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str


def monitor_description(pool_name: str, zone: str, path: str) -> str:
    """Identity key of the monitor guarding a pool, e.g. ``pool1.example.com/healthz``."""
    return f"{pool_name}.{zone}{path}"


def load_balancer_name(lb_name: str, zone: str) -> str:
    return f"{lb_name}.{zone}"


def build_origins(nodes: Iterable[Node], limit: int = MAX_ORIGINS) -> list[Origin]:
    """One enabled origin per node, first ``limit`` nodes in input order."""
    origins: list[Origin] = []
    for node in nodes:
        if len(origins) >= limit:
            break
        origins.append(Origin(name=node.name, address=node.external_address, enabled=True))
    return origins
