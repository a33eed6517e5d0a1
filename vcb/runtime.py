from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock

from .events import utc_now
from .reconciler import ReconcileResult


@dataclass
class CycleStatus:
    trigger: str
    services: int
    result: ReconcileResult | None
    error: str | None = None
    finished_at: str = field(default_factory=utc_now)


class RuntimeState:
    """Snapshot of the orchestrator for the status API.

    Written only by the orchestrator thread; the lock covers API readers.
    """

    def __init__(self) -> None:
        self.lock = Lock()
        self.state = "starting"  # starting|reconciling|waiting|cooldown|stopped
        self.cycles = 0
        self.started_at = utc_now()
        self.last_cycle: CycleStatus | None = None

    def set_state(self, state: str) -> None:
        with self.lock:
            self.state = state

    def finish_cycle(self, status: CycleStatus) -> None:
        with self.lock:
            self.cycles += 1
            self.last_cycle = status

    def snapshot(self) -> dict:
        with self.lock:
            last = None
            if self.last_cycle:
                last = {
                    "trigger": self.last_cycle.trigger,
                    "services": self.last_cycle.services,
                    "error": self.last_cycle.error,
                    "finished_at": self.last_cycle.finished_at,
                    **(self.last_cycle.result.as_dict() if self.last_cycle.result else {}),
                }
            return {
                "state": self.state,
                "cycles": self.cycles,
                "started_at": self.started_at,
                "last_cycle": last,
            }
