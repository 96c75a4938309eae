from __future__ import annotations

import logging
import queue
import random
import time
from dataclasses import dataclass
from threading import Thread
from typing import Callable

from .errors import ReconcileError
from .reconciler import Reconciler

logger = logging.getLogger(__name__)

TICK = "tick"
CHANGE = "change"
MANUAL = "manual"
STOP = "stop"


def jitter(nominal: float, rng: random.Random, spread: float = 0.25) -> float:
    """Return ``nominal`` scaled by a uniform factor in ``[1 - spread, 1 + spread]``."""
    return nominal * rng.uniform(1.0 - spread, 1.0 + spread)


@dataclass(frozen=True)
class Message:
    kind: str
    reason: str = ""


class ReconcileWorker(Thread):
    """The only thread that runs steady-state cycles.

    Timer ticks, node change events and manual triggers all arrive as
    messages on one inbox, so cycles are strictly sequential. The timer is
    the inbox wait itself, re-jittered after every message. Change events are
    debounced: a burst of them collapses into one cycle once the inbox has
    been quiet for ``debounce_s``, or once ``max_debounce_s`` has passed since
    the first change of the burst, whichever comes first. The cap defaults to
    ``interval_s``: a burst never delays a cycle longer than a timer tick.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        interval_s: float = 900,
        debounce_s: float = 30,
        max_debounce_s: float | None = None,
        rng: random.Random | None = None,
        on_fatal: Callable[[ReconcileError], None] | None = None,
    ):
        super().__init__(name="reconcile-worker", daemon=True)
        self.reconciler = reconciler
        self.interval_s = max(1.0, float(interval_s))
        self.debounce_s = max(0.0, float(debounce_s))
        cap = self.interval_s if max_debounce_s is None else float(max_debounce_s)
        self.max_debounce_s = max(self.debounce_s, cap)
        self.rng = rng or random.Random()
        self.on_fatal = on_fatal
        self.fatal_error: ReconcileError | None = None
        self._inbox: queue.Queue[Message] = queue.Queue()

    def trigger(self, reason: str = "manual") -> None:
        self._inbox.put(Message(MANUAL, reason))

    def notify_change(self, reason: str) -> None:
        self._inbox.put(Message(CHANGE, reason))

    def stop(self) -> None:
        """Stop after the in-flight cycle, if any, has finished."""
        self._inbox.put(Message(STOP))

    def run(self) -> None:
        logger.info("Reconcile worker started (interval=%ss, debounce=%ss)", self.interval_s, self.debounce_s)
        while True:
            delay = jitter(self.interval_s, self.rng)
            try:
                msg = self._inbox.get(timeout=delay)
            except queue.Empty:
                msg = Message(TICK, "interval")

            if msg.kind == CHANGE:
                msg = self._debounce(msg)
            if msg.kind == STOP:
                break
            if not self._run_cycle(msg.reason or msg.kind):
                break
        logger.info("Reconcile worker stopped")

    def _debounce(self, first: Message) -> Message:
        coalesced = 1
        deadline = time.monotonic() + self.max_debounce_s
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                msg = self._inbox.get(timeout=min(self.debounce_s, remaining))
            except queue.Empty:
                break
            if msg.kind == STOP:
                return msg
            coalesced += 1
        if coalesced > 1:
            logger.info("Coalesced %d change events into one cycle", coalesced)
            return Message(CHANGE, f"{first.reason} (+{coalesced - 1} more)")
        return first

    def _run_cycle(self, reason: str) -> bool:
        """Run one cycle; False means the worker must stop."""
        started = time.monotonic()
        try:
            self.reconciler.reconcile(reason)
        except ReconcileError as e:
            if e.fatal:
                logger.error("Fatal error in reconcile cycle: operation=%s resource=%s cause=%s", e.operation, e.resource, e.cause)
                self.reconciler.runtime.log_event("ERROR", str(e))
                self.fatal_error = e
                if self.on_fatal:
                    self.on_fatal(e)
                return False
            logger.warning("Reconcile cycle failed: operation=%s resource=%s cause=%s", e.operation, e.resource, e.cause)
            self.reconciler.runtime.log_event("WARN", str(e))
        except Exception as e:
            logger.exception("Reconcile cycle crashed (%s)", reason)
            self.reconciler.runtime.log_event("ERROR", f"{type(e).__name__}: {e}")
        else:
            logger.debug("Reconcile cycle (%s) took %.2fs", reason, time.monotonic() - started)
        return True
