import os
import queue
import sys

import pytest

# Ensure project root is importable (so `import vcb` / `import cli` work without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from vcb.etcd import KeyNotFound, Node, StoreError, WatchEvent  # noqa: E402


class FakeStore:
    """In-memory stand-in for EtcdClient with etcd v2 directory semantics.

    Deleting a leaf leaves its (possibly empty) parent directories behind, like etcd.
    """

    def __init__(self, data=None):
        self.leaves = {}
        self.dirs = {"/"}
        self.ops = []
        self.fail_keys = set()
        self.fail_get = False
        self.ping_error = None
        self.watch_calls = 0
        self.wait_indexes = []
        self.watch_items = queue.Queue()
        for k, v in (data or {}).items():
            self._put(k, v)

    def _put(self, key, value):
        parts = key.strip("/").split("/")
        for i in range(1, len(parts)):
            self.dirs.add("/" + "/".join(parts[:i]))
        self.leaves[key] = value

    def mkdir(self, key):
        parts = key.strip("/").split("/")
        for i in range(1, len(parts) + 1):
            self.dirs.add("/" + "/".join(parts[:i]))

    def _node(self, key):
        if key in self.leaves:
            return Node(key=key, value=self.leaves[key])
        prefix = key.rstrip("/") + "/"
        names = set()
        for k in list(self.leaves) + list(self.dirs):
            if k.startswith(prefix) and k != prefix:
                names.add(k[len(prefix):].split("/")[0])
        return Node(key=key, dir=True, nodes=[self._node(prefix + n) for n in sorted(names)])

    # --- EtcdClient interface ---

    def ping(self):
        if self.ping_error:
            raise self.ping_error

    def get(self, key, recursive=True):
        if self.fail_get:
            raise StoreError("cluster unavailable")
        key = key.rstrip("/") or "/"
        if key not in self.leaves and key not in self.dirs:
            raise KeyNotFound(f"Key not found: {key}", code=100)
        return self._node(key)

    def set(self, key, value):
        if key in self.fail_keys:
            raise StoreError(f"write refused: {key}")
        self.ops.append(("set", key))
        self._put(key, value)

    def delete(self, key, recursive=False):
        if key in self.fail_keys:
            raise StoreError(f"delete refused: {key}")
        self.ops.append(("delete", key))
        if key in self.leaves:
            del self.leaves[key]
            return
        if key not in self.dirs:
            raise KeyNotFound(f"Key not found: {key}", code=100)
        if not recursive:
            raise StoreError(f"Not a file: {key}", code=102)
        prefix = key + "/"
        self.leaves = {k: v for k, v in self.leaves.items() if not k.startswith(prefix)}
        self.dirs = {d for d in self.dirs if d != key and not d.startswith(prefix)}

    def watch(self, prefix, recursive=True, wait_index=None):
        self.watch_calls += 1
        self.wait_indexes.append(wait_index)
        while True:
            item = self.watch_items.get()
            if isinstance(item, Exception):
                raise item
            yield item

    # --- helpers ---

    def push_event(self, key="/ft/services/x/servers/1", action="set", index=1):
        self.watch_items.put(WatchEvent(action=action, key=key, index=index))

    def writes(self):
        return [k for op, k in self.ops if op == "set"]

    def deletes(self):
        return [k for op, k in self.ops if op == "delete"]


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def make_store():
    return FakeStore
