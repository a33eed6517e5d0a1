import time

import httpx

from vcb.etcd import EtcdClient, StoreError
from vcb.watcher import ChangeSignal, ChangeWatcher


def _eventually(cond, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if cond():
            return True
        time.sleep(0.01)
    return cond()


def test_signal_coalesces_pending_notifications():
    sig = ChangeSignal()
    assert sig.notify() is True
    for _ in range(5):
        assert sig.notify() is False

    assert sig.wait(timeout=0.01) is True
    assert sig.wait(timeout=0.01) is False


def test_drain_clears_pending_signal():
    sig = ChangeSignal()
    assert sig.drain() is False
    sig.notify()
    assert sig.pending()
    assert sig.drain() is True
    assert not sig.pending()


def test_watch_events_become_one_signal(store):
    watcher = ChangeWatcher(store, "/ft/services", retry_interval_s=0.01)
    watcher.start()
    try:
        for i in range(5):
            store.push_event(index=i + 1)
        assert _eventually(lambda: store.watch_items.empty())
        time.sleep(0.1)
        assert _eventually(watcher.signal.pending)
        assert watcher.wait(timeout=0.5) is True
        assert watcher.wait(timeout=0.05) is False
    finally:
        watcher.stop()


def test_watch_resubscribes_after_failure(store):
    watcher = ChangeWatcher(store, "/ft/services", retry_interval_s=0.01)
    store.watch_items.put(StoreError("cluster is unavailable"))
    store.push_event()
    watcher.start()
    try:
        assert _eventually(lambda: store.watch_calls >= 2)
        assert watcher.wait(timeout=1.0) is True
    finally:
        watcher.stop()


def _etcd_watcher(handler):
    client = EtcdClient(["http://etcd-1:2379"], transport=httpx.MockTransport(handler))
    return ChangeWatcher(client, "/ft/services", retry_interval_s=0.01)


def test_resubscribe_resumes_after_last_seen_index(store):
    watcher = ChangeWatcher(store, "/ft/services", retry_interval_s=0.01)
    store.push_event(index=41)
    store.watch_items.put(StoreError("leader changed"))
    watcher.start()
    try:
        assert _eventually(lambda: store.watch_calls >= 2)
        assert store.wait_indexes[:2] == [None, 42]
    finally:
        watcher.stop()


def test_resubscribe_over_http_keeps_wait_index():
    seen = []

    def handler(request):
        seen.append(request)
        if len(seen) == 1:
            return httpx.Response(200, json={"action": "set", "node": {"key": "/ft/services/a/servers/1", "modifiedIndex": 41}})
        raise httpx.ReadError("connection reset", request=request)

    watcher = _etcd_watcher(handler)
    watcher.start()
    try:
        assert _eventually(lambda: len(seen) >= 3)
    finally:
        watcher.stop()

    assert "waitIndex" not in seen[0].url.params
    assert seen[1].url.params["waitIndex"] == "42"
    assert seen[2].url.params["waitIndex"] == "42"


def test_failure_before_first_event_signals_change(store):
    watcher = ChangeWatcher(store, "/ft/services", retry_interval_s=0.01)
    store.watch_items.put(StoreError("cluster is unavailable"))
    watcher.start()
    try:
        assert watcher.wait(timeout=1.0) is True
    finally:
        watcher.stop()


def test_cleared_index_signals_change():
    seen = []

    def handler(request):
        seen.append(request)
        if len(seen) == 1:
            return httpx.Response(
                400,
                json={"errorCode": 401, "message": "The event in requested index is outdated and cleared"},
                headers={"X-Etcd-Index": "90"},
            )
        raise httpx.ReadError("connection reset", request=request)

    watcher = _etcd_watcher(handler)
    watcher.next_index = 12
    watcher.start()
    try:
        assert watcher.wait(timeout=1.0) is True
        assert _eventually(lambda: len(seen) >= 2)
    finally:
        watcher.stop()

    assert seen[0].url.params["waitIndex"] == "12"
    assert seen[1].url.params["waitIndex"] == "91"
