from __future__ import annotations

import logging
import time
from threading import Event

from .builder import build
from .etcd import StoreError
from .events import EventLog
from .reconciler import ReconcileResult, Reconciler
from .registry import RegistryError, ServiceRegistryReader
from .runtime import CycleStatus, RuntimeState
from .watcher import ChangeSignal


logger = logging.getLogger(__name__)


class Orchestrator:
    """Read -> build -> reconcile at startup and after every debounced change.

    States: reconciling -> waiting -> cooldown -> reconciling ...
    Shutdown is only noticed while waiting.
    """

    def __init__(
        self,
        reader: ServiceRegistryReader,
        reconciler: Reconciler,
        signal: ChangeSignal,
        cooldown_s: float,
        events: EventLog | None = None,
        runtime: RuntimeState | None = None,
        poll_interval_s: float = 0.5,
    ):
        self.reader = reader
        self.reconciler = reconciler
        self.signal = signal
        self.cooldown_s = max(0.0, float(cooldown_s))
        self.events = events
        self.runtime = runtime or RuntimeState()
        self.poll_interval_s = poll_interval_s

    def _event(self, level: str, message: str) -> None:
        if self.events:
            self.events.log_event(level, message)
        else:
            logger.log({"ERROR": logging.ERROR, "WARN": logging.WARNING}.get(level, logging.INFO), message)

    def _finish(self, trigger: str, services: int, result: ReconcileResult | None, error: str | None = None) -> None:
        self.runtime.finish_cycle(CycleStatus(trigger=trigger, services=services, result=result, error=error))
        if self.events:
            self.events.record_cycle(trigger, services, result, error)

    def run_cycle(self, trigger: str = "change") -> ReconcileResult | None:
        """One full rebuild. Returns None when the vulcand read failed (cycle aborted).

        Raises RegistryError when the declarations cannot be read.
        """
        self.runtime.set_state("reconciling")
        # Anything that piled up so far is covered by the read below.
        self.signal.drain()

        try:
            services = self.reader.read()
        except RegistryError as e:
            msg = f"Cannot read service declarations: {e}"
            self._event("ERROR", msg)
            self._finish(trigger, 0, None, error=msg)
            raise

        desired = build(services)
        try:
            result = self.reconciler.apply(desired)
        except StoreError as e:
            msg = f"Reconcile cycle aborted: {e}"
            self._event("ERROR", msg)
            self._finish(trigger, len(services), None, error=msg)
            return None

        self._finish(trigger, len(services), result)
        if result.failures:
            self._event("WARN", f"Cycle finished with {result.failures} failed store operations")
        return result

    def wait_for_change(self, stop: Event) -> bool:
        """Block until a change (True) or a shutdown request (False)."""
        self.runtime.set_state("waiting")
        while True:
            if stop.is_set():
                return False
            if self.signal.wait(timeout=self.poll_interval_s):
                return True

    def run(self, stop: Event) -> None:
        self._event("INFO", "Orchestrator started")
        trigger = "startup"
        while True:
            self.run_cycle(trigger)
            if not self.wait_for_change(stop):
                break
            self.runtime.set_state("cooldown")
            time.sleep(self.cooldown_s)
            trigger = "change"
        self.runtime.set_state("stopped")
        self._event("INFO", "Orchestrator stopped")
