from __future__ import annotations

import logging
import queue
from threading import Event, Thread

from .etcd import EtcdClient, StoreError


logger = logging.getLogger(__name__)


class ChangeSignal:
    """Single-slot "something changed" flag.

    notify() never blocks; a notification arriving while one is pending is dropped.
    """

    def __init__(self) -> None:
        self._q: queue.Queue[None] = queue.Queue(maxsize=1)

    def notify(self) -> bool:
        try:
            self._q.put_nowait(None)
            return True
        except queue.Full:
            return False

    def wait(self, timeout: float | None = None) -> bool:
        try:
            self._q.get(timeout=timeout)
            return True
        except queue.Empty:
            return False

    def drain(self) -> bool:
        try:
            self._q.get_nowait()
            return True
        except queue.Empty:
            return False

    def pending(self) -> bool:
        return not self._q.empty()


class ChangeWatcher:
    """Watches a prefix forever and turns mutation events into a ChangeSignal."""

    def __init__(self, client: EtcdClient, prefix: str, retry_interval_s: float = 1.0, signal: ChangeSignal | None = None):
        self.client = client
        self.prefix = prefix
        self.retry_interval_s = retry_interval_s
        self.signal = signal or ChangeSignal()
        self._stop = Event()
        self._thr: Thread | None = None
        # last seen index + 1, kept across resubscribes
        self.next_index: int | None = None

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self._loop, name="vcb-watcher", daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()

    def wait(self, timeout: float | None = None) -> bool:
        return self.signal.wait(timeout)

    def _loop(self) -> None:
        logger.info("Watching %s for changes", self.prefix)
        while not self._stop.is_set():
            try:
                for event in self.client.watch(self.prefix, recursive=True, wait_index=self.next_index):
                    self.next_index = event.index + 1 if event.index else None
                    logger.debug("Change: %s %s (index %d)", event.action, event.key, event.index)
                    self.signal.notify()
                    if self._stop.is_set():
                        return
            except StoreError as e:
                logger.warning("Watch on %s failed: %s, retrying in %ss", self.prefix, e, self.retry_interval_s)
                self._stop.wait(self.retry_interval_s)
                self._before_resubscribe()
            except Exception as e:
                logger.error("Unexpected watch failure on %s: %s: %s", self.prefix, type(e).__name__, e)
                self._stop.wait(self.retry_interval_s)
                self._before_resubscribe()

    def _before_resubscribe(self) -> None:
        # Without a resume index the gap before the new subscription is unseen.
        if self.next_index is None:
            self.signal.notify()
