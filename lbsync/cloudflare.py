from __future__ import annotations

import logging
from typing import Any

import httpx

from .api_models import LoadBalancer, Monitor, Pool, Zone
from .settings import DEFAULT_CF_API_BASE_URL

logger = logging.getLogger(__name__)


class CloudflareAPIError(Exception):
    def __init__(self, message: str, status_code: int | None = None, errors: list[Any] | None = None):
        self.status_code = status_code
        self.errors = errors or []
        super().__init__(message)


class CloudflareAPI:
    """Minimal client for the Cloudflare v4 load balancing endpoints.

    Every response is the usual envelope ``{"success", "errors", "result",
    "result_info"}``; anything other than a successful envelope raises
    :class:`CloudflareAPIError`. No retries are done here.
    """

    def __init__(
        self,
        api_key: str,
        email: str,
        organization_id: str | None = None,
        base_url: str = DEFAULT_CF_API_BASE_URL,
        timeout_s: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.organization_id = organization_id or None
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout_s,
            headers={
                "X-Auth-Key": api_key,
                "X-Auth-Email": email,
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "CloudflareAPI":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def _lb_root(self) -> str:
        # Monitors and pools are account level objects.
        if self.organization_id:
            return f"/organizations/{self.organization_id}/load_balancers"
        return "/user/load_balancers"

    def _request(self, method: str, path: str, params: dict[str, Any] | None = None, json: Any = None) -> dict[str, Any]:
        try:
            resp = self._http.request(method, path, params=params, json=json)
        except httpx.HTTPError as e:
            raise CloudflareAPIError(f"{method} {path}: {type(e).__name__}: {e}") from e
        logger.debug("%s %s -> HTTP %s", method, path, resp.status_code)

        try:
            payload = resp.json()
        except ValueError:
            raise CloudflareAPIError(f"{method} {path}: HTTP {resp.status_code} with non-JSON body", resp.status_code)

        if not isinstance(payload, dict):
            raise CloudflareAPIError(f"{method} {path}: unexpected payload {payload!r}", resp.status_code)
        if resp.status_code >= 400 or not payload.get("success", False):
            errors = payload.get("errors") or []
            detail = "; ".join(f"{e.get('code')}: {e.get('message')}" for e in errors if isinstance(e, dict))
            raise CloudflareAPIError(
                f"{method} {path}: HTTP {resp.status_code}" + (f" ({detail})" if detail else ""),
                resp.status_code,
                errors,
            )
        return payload

    def _list(self, path: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            query = dict(params or {})
            if page > 1:
                query["page"] = page
            payload = self._request("GET", path, params=query or None)
            result = payload.get("result") or []
            if not isinstance(result, list):
                raise CloudflareAPIError(f"GET {path}: expected a list result, got {type(result).__name__}")
            items.extend(result)

            info = payload.get("result_info") or {}
            total_pages = int(info.get("total_pages") or 1)
            if page >= total_pages or not result:
                return items
            page += 1

    def _result(self, payload: dict[str, Any]) -> dict[str, Any]:
        result = payload.get("result")
        if not isinstance(result, dict):
            raise CloudflareAPIError(f"expected an object result, got {result!r}")
        return result

    # Monitors

    def list_monitors(self) -> list[Monitor]:
        return [Monitor.model_validate(m) for m in self._list(f"{self._lb_root}/monitors")]

    def create_monitor(self, monitor: Monitor) -> Monitor:
        payload = self._request("POST", f"{self._lb_root}/monitors", json=monitor.to_payload())
        return Monitor.model_validate(self._result(payload))

    # Pools

    def list_pools(self) -> list[Pool]:
        return [Pool.model_validate(p) for p in self._list(f"{self._lb_root}/pools")]

    def create_pool(self, pool: Pool) -> Pool:
        payload = self._request("POST", f"{self._lb_root}/pools", json=pool.to_payload())
        return Pool.model_validate(self._result(payload))

    def update_pool(self, pool: Pool) -> Pool:
        if not pool.id:
            raise CloudflareAPIError(f"cannot update pool {pool.name!r} without an id")
        payload = self._request("PUT", f"{self._lb_root}/pools/{pool.id}", json=pool.to_payload())
        return Pool.model_validate(self._result(payload))

    # Zones

    def list_zones(self, name: str) -> list[Zone]:
        return [Zone.model_validate(z) for z in self._list("/zones", params={"name": name})]

    # Load balancers

    def list_load_balancers(self, zone_id: str) -> list[LoadBalancer]:
        return [LoadBalancer.model_validate(lb) for lb in self._list(f"/zones/{zone_id}/load_balancers")]

    def create_load_balancer(self, zone_id: str, lb: LoadBalancer) -> LoadBalancer:
        payload = self._request("POST", f"/zones/{zone_id}/load_balancers", json=lb.to_payload())
        return LoadBalancer.model_validate(self._result(payload))

    def update_load_balancer(self, zone_id: str, lb: LoadBalancer) -> LoadBalancer:
        if not lb.id:
            raise CloudflareAPIError(f"cannot update load balancer {lb.name!r} without an id")
        payload = self._request("PUT", f"/zones/{zone_id}/load_balancers/{lb.id}", json=lb.to_payload())
        return LoadBalancer.model_validate(self._result(payload))
