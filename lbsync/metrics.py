"""Prometheus metrics exposed on ``/metrics``."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter

POOL_TOTALS: Final[Counter] = Counter(
    "estafette_cloudflare_loadbalancer_pools_totals",
    "Number of created/updated Cloudflare load balancer pools, labeled by status (created, updated, failed).",
    labelnames=("status",),
)

RECONCILE_CYCLES: Final[Counter] = Counter(
    "lbsync_reconcile_cycles_total",
    "Reconciliation cycles run, labeled by phase (bootstrap, steady) and outcome.",
    labelnames=("phase", "outcome"),
)
