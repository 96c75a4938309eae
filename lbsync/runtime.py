from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class CycleRecord:
    phase: str  # bootstrap|steady
    reason: str
    outcome: str  # synced|not_implemented|failed
    error: str | None = None
    started_at: str = field(default_factory=utc_now)
    finished_at: str | None = None


class RuntimeState:
    """In-memory status shared with the HTTP surface."""

    def __init__(self, max_events: int = 100) -> None:
        self.lock = Lock()
        self.mode: str | None = None
        self.bootstrapped_at: str | None = None
        self.last_cycle: CycleRecord | None = None
        self.cycles_ok = 0
        self.cycles_failed = 0
        self.resources: dict[str, str | None] = {}  # kind -> remote id
        self.node_count = 0
        self.events: deque[dict[str, Any]] = deque(maxlen=max_events)

    def log_event(self, level: str, message: str) -> None:
        with self.lock:
            self.events.append({"ts": utc_now(), "level": level.upper(), "message": message})

    def latest_events(self, limit: int = 100) -> list[dict[str, Any]]:
        with self.lock:
            items = list(self.events)
        return list(reversed(items))[: max(0, limit)]

    def record_cycle(self, rec: CycleRecord) -> None:
        with self.lock:
            rec.finished_at = rec.finished_at or utc_now()
            self.last_cycle = rec
            if rec.outcome == "failed":
                self.cycles_failed += 1
            else:
                self.cycles_ok += 1
                if rec.phase == "bootstrap" and self.bootstrapped_at is None:
                    self.bootstrapped_at = rec.finished_at

    def set_resources(self, node_count: int, **ids: str | None) -> None:
        with self.lock:
            self.node_count = node_count
            self.resources.update(ids)

    def status(self) -> dict[str, Any]:
        with self.lock:
            return {
                "mode": self.mode,
                "bootstrapped_at": self.bootstrapped_at,
                "last_cycle": asdict(self.last_cycle) if self.last_cycle else None,
                "cycles_ok": self.cycles_ok,
                "cycles_failed": self.cycles_failed,
                "node_count": self.node_count,
                "resources": dict(self.resources),
            }
