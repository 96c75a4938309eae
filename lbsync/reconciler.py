from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Callable

from .api_models import LoadBalancer, Monitor, Node, Pool
from .kube_ops import NodeSource
from .lb_ops import LoadBalancerClient
from .metrics import RECONCILE_CYCLES
from .runtime import CycleRecord, RuntimeState

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    POOL = "pool"
    DNS = "dns"


class CycleOutcome(str, Enum):
    SYNCED = "synced"
    NOT_IMPLEMENTED = "not_implemented"


@dataclass(frozen=True)
class Target:
    lb_name: str
    pool_name: str
    zone: str
    monitor_path: str


@dataclass
class Snapshot:
    """Last known remote objects; owned by the :class:`Reconciler`."""

    monitor: Monitor | None = None
    pool: Pool | None = None
    load_balancer: LoadBalancer | None = None
    nodes: list[Node] = field(default_factory=list)


class PoolStrategy:
    """Keep one origin pool filled with the current healthy nodes."""

    mode = Mode.POOL

    def __init__(self, nodes: NodeSource, lb: LoadBalancerClient, target: Target):
        self.nodes = nodes
        self.lb = lb
        self.target = target

    def bootstrap(self, snap: Snapshot) -> CycleOutcome:
        # Order matters: the pool needs the monitor id, the load balancer needs the pool id.
        t = self.target
        nodes = self.nodes.list_healthy_nodes()
        snap.nodes = nodes
        snap.monitor = self.lb.get_or_create_monitor(t.pool_name, t.zone, t.monitor_path)
        snap.pool = self.lb.get_or_create_pool(t.pool_name, nodes, snap.monitor)
        snap.load_balancer = self.lb.get_or_create_load_balancer(t.lb_name, t.zone, snap.pool)
        return CycleOutcome.SYNCED

    def reconcile(self, snap: Snapshot) -> CycleOutcome:
        if snap.monitor is None or snap.pool is None:
            raise RuntimeError("pool strategy has not been bootstrapped")
        nodes = self.nodes.list_healthy_nodes()
        pool = self.lb.get_or_create_pool(self.target.pool_name, nodes, snap.monitor)
        if pool.id != snap.pool.id:
            # The load balancer is not re-derived in steady state, so it still points at the old id.
            logger.warning(
                "Pool %s was recreated (id %s -> %s); load balancer is not updated until restart",
                self.target.pool_name,
                snap.pool.id,
                pool.id,
            )
        snap.nodes = nodes
        snap.pool = pool
        return CycleOutcome.SYNCED


class DnsStrategy:
    """Per-node DNS records instead of a pool. Not built yet."""

    mode = Mode.DNS

    def bootstrap(self, snap: Snapshot) -> CycleOutcome:
        logger.warning("DNS mode is not implemented; nothing was reconciled")
        return CycleOutcome.NOT_IMPLEMENTED

    def reconcile(self, snap: Snapshot) -> CycleOutcome:
        return CycleOutcome.NOT_IMPLEMENTED


Strategy = PoolStrategy | DnsStrategy


def build_strategy(mode: str | Mode, nodes: NodeSource, lb: LoadBalancerClient, target: Target) -> Strategy:
    """Pick the strategy once, at startup."""
    mode = Mode(mode)
    if mode is Mode.POOL:
        return PoolStrategy(nodes, lb, target)
    return DnsStrategy()


class Reconciler:
    """Runs bootstrap and steady-state cycles against one strategy.

    The lock covers a whole cycle: the snapshot is only read or written while
    it is held, so two cycles can never interleave.
    """

    def __init__(self, strategy: Strategy, runtime: RuntimeState | None = None):
        self.strategy = strategy
        self.runtime = runtime or RuntimeState()
        self.runtime.mode = strategy.mode.value
        self.snapshot = Snapshot()
        self._lock = Lock()

    def bootstrap(self) -> CycleOutcome:
        """Establish the remote configuration. Errors propagate and are fatal to the caller."""
        return self._run("bootstrap", "startup", self.strategy.bootstrap)

    def reconcile(self, reason: str = "interval") -> CycleOutcome:
        return self._run("steady", reason, self.strategy.reconcile)

    def _run(self, phase: str, reason: str, step: Callable[[Snapshot], CycleOutcome]) -> CycleOutcome:
        rec = CycleRecord(phase=phase, reason=reason, outcome="failed")
        with self._lock:
            try:
                outcome = step(self.snapshot)
            except Exception as e:
                rec.error = f"{type(e).__name__}: {e}"
                self.runtime.record_cycle(rec)
                RECONCILE_CYCLES.labels(phase=phase, outcome="failed").inc()
                raise
            snap = self.snapshot
            self.runtime.set_resources(
                len(snap.nodes),
                monitor=snap.monitor.id if snap.monitor else None,
                pool=snap.pool.id if snap.pool else None,
                load_balancer=snap.load_balancer.id if snap.load_balancer else None,
            )

        rec.outcome = outcome.value
        self.runtime.record_cycle(rec)
        RECONCILE_CYCLES.labels(phase=phase, outcome=outcome.value).inc()
        if outcome is CycleOutcome.SYNCED:
            msg = f"{phase} cycle ({reason}) synchronized pool with {len(self.snapshot.nodes)} nodes"
            logger.info(msg)
            self.runtime.log_event("INFO", msg)
        else:
            msg = f"{phase} cycle ({reason}) skipped: {self.strategy.mode.value} mode is not implemented"
            self.runtime.log_event("WARN", msg)
        return outcome
