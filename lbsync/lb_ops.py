from __future__ import annotations

import logging
from typing import Sequence

from .api_models import (
    LoadBalancer,
    Monitor,
    Node,
    Pool,
    build_origins,
    load_balancer_name,
    monitor_description,
)
from .cloudflare import CloudflareAPI, CloudflareAPIError
from .errors import (
    LoadBalancerCreateError,
    LoadBalancerLookupError,
    LoadBalancerUpdateError,
    MonitorCreateError,
    MonitorLookupError,
    PoolCreateError,
    PoolLookupError,
    PoolUpdateError,
    ZoneNotFoundError,
)
from .metrics import POOL_TOTALS

logger = logging.getLogger(__name__)

LOAD_BALANCER_DESCRIPTION = "Created by lbsync"


def _monitor_policy(description: str, path: str) -> Monitor:
    return Monitor(
        type="https",
        description=description,
        method="GET",
        path=path,
        timeout=5,
        retries=2,
        interval=60,
        expected_codes="200",
        follow_redirects=False,
        allow_insecure=True,
    )


class LoadBalancerClient:
    """Get-or-create access to monitors, pools and load balancers keyed by name.

    The remote API has no client-assigned ids, so every operation lists the
    existing resources and matches on exact name (or description, for
    monitors) before writing. That keeps each call idempotent across restarts
    and across concurrent controller instances.
    """

    def __init__(self, api: CloudflareAPI):
        self.api = api

    def get_or_create_monitor(self, pool_name: str, zone: str, path: str) -> Monitor:
        description = monitor_description(pool_name, zone, path)
        try:
            monitors = self.api.list_monitors()
        except CloudflareAPIError as e:
            raise MonitorLookupError(description, e) from e

        for mon in monitors:
            if mon.description == description:
                # Existing monitors are never updated, even if they drifted from the policy.
                current = mon.to_payload()
                drift = sorted(k for k, v in _monitor_policy(description, path).to_payload().items() if current.get(k) != v)
                if drift:
                    logger.debug("Monitor %s differs from the create policy on %s; left unchanged", description, drift)
                logger.debug("Found monitor %s (id=%s)", description, mon.id)
                return mon

        try:
            created = self.api.create_monitor(_monitor_policy(description, path))
        except CloudflareAPIError as e:
            raise MonitorCreateError(description, e) from e
        logger.info("Created monitor %s (id=%s)", description, created.id)
        return created

    def get_or_create_pool(self, pool_name: str, nodes: Sequence[Node], monitor: Monitor) -> Pool:
        try:
            pools = self.api.list_pools()
        except CloudflareAPIError as e:
            POOL_TOTALS.labels(status="failed").inc()
            raise PoolLookupError(pool_name, e) from e

        existing: Pool | None = None
        for p in pools:
            if p.name == pool_name:
                existing = p
                break

        origins = build_origins(nodes)
        if len(nodes) > len(origins):
            logger.debug("Truncated %d nodes to %d origins for pool %s", len(nodes), len(origins), pool_name)

        if existing is None:
            try:
                pool = self.api.create_pool(Pool(name=pool_name, origins=origins, enabled=True, monitor_id=monitor.id))
            except CloudflareAPIError as e:
                POOL_TOTALS.labels(status="failed").inc()
                raise PoolCreateError(pool_name, e) from e
            POOL_TOTALS.labels(status="created").inc()
            logger.info("Created pool %s (id=%s) with %d origins", pool_name, pool.id, len(origins))
            return pool

        # Full overwrite: this is how node churn reaches the pool.
        desired = existing.model_copy(update={"origins": origins, "monitor_id": monitor.id})
        try:
            pool = self.api.update_pool(desired)
        except CloudflareAPIError as e:
            POOL_TOTALS.labels(status="failed").inc()
            raise PoolUpdateError(pool_name, e) from e
        POOL_TOTALS.labels(status="updated").inc()
        logger.info("Updated pool %s (id=%s) with %d origins", pool_name, pool.id, len(origins))
        return pool

    def get_or_create_load_balancer(self, lb_name: str, zone: str, pool: Pool) -> LoadBalancer:
        name = load_balancer_name(lb_name, zone)
        try:
            zones = self.api.list_zones(zone)
        except CloudflareAPIError as e:
            raise LoadBalancerLookupError(zone, e) from e
        matches = [z for z in zones if z.name == zone]
        if not matches:
            raise ZoneNotFoundError(zone, "no zone with that name")
        zone_id = matches[0].id
        logger.debug("Zone id for %s is %s", zone, zone_id)

        try:
            load_balancers = self.api.list_load_balancers(zone_id)
        except CloudflareAPIError as e:
            raise LoadBalancerLookupError(name, e) from e

        existing: LoadBalancer | None = None
        for lb in load_balancers:
            if lb.name == name:
                existing = lb
                break

        if existing is None:
            try:
                created = self.api.create_load_balancer(
                    zone_id,
                    LoadBalancer(
                        name=name,
                        description=LOAD_BALANCER_DESCRIPTION,
                        fallback_pool_id=pool.id,
                        default_pool_ids=[pool.id],
                        proxied=True,
                    ),
                )
            except CloudflareAPIError as e:
                raise LoadBalancerCreateError(name, e) from e
            logger.info("Created load balancer %s (id=%s) in zone %s", name, created.id, zone)
            return created

        if pool.id in existing.default_pool_ids:
            logger.debug("Load balancer %s already routes to pool %s", name, pool.id)
            return existing

        # Append only; pools added by others are never removed.
        desired = existing.model_copy(update={"default_pool_ids": [*existing.default_pool_ids, pool.id]})
        try:
            updated = self.api.update_load_balancer(zone_id, desired)
        except CloudflareAPIError as e:
            raise LoadBalancerUpdateError(name, e) from e
        logger.info("Added pool %s to load balancer %s", pool.id, name)
        return updated
