from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any

from .builder import DesiredState
from .etcd import EtcdClient, KeyNotFound, StoreError


logger = logging.getLogger(__name__)

# Every backend/frontend name we own carries this tag; anything else is foreign.
TAG = "vcb-"

BACKEND_SETTINGS: dict[str, Any] = {
    "Timeouts": {"Read": "50s", "Dial": "20s", "TLSHandshake": "10s"},
    "KeepAlive": {"Period": "30s", "MaxIdleConnsPerHost": 12},
}


def _json(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"))


class ManagedLayout:
    """Key naming inside the vulcand root."""

    def __init__(self, root: str):
        self.root = root.rstrip("/")
        self.backend_prefix = f"{self.root}/backends/{TAG}"
        self.frontend_prefix = f"{self.root}/frontends/{TAG}"

    def backend_key(self, name: str) -> str:
        return f"{self.backend_prefix}{name}"

    def frontend_key(self, name: str) -> str:
        return f"{self.frontend_prefix}{name}"

    def is_managed(self, key: str) -> bool:
        return key.startswith(self.backend_prefix) or key.startswith(self.frontend_prefix)

    def write_phase(self, key: str) -> int:
        # backends, then frontend records, then middlewares
        if key.startswith(self.backend_prefix):
            return 0
        if key.startswith(self.frontend_prefix) and "/middlewares/" not in key:
            return 1
        return 2


def encode(state: DesiredState, layout: ManagedLayout) -> dict[str, str]:
    """Serialize a DesiredState into the flat key -> JSON value form vulcand reads."""
    kv: dict[str, str] = {}
    for name in sorted(state.backends):
        base = layout.backend_key(name)
        kv[f"{base}/backend"] = _json({"Type": "http", "Settings": BACKEND_SETTINGS})
        servers = state.backends[name].servers
        for sid in sorted(servers):
            kv[f"{base}/servers/{sid}"] = _json({"url": servers[sid]})

    for name in sorted(state.frontends):
        fe = state.frontends[name]
        base = layout.frontend_key(name)
        kv[f"{base}/frontend"] = _json(
            {
                "Type": fe.type,
                "BackendId": f"{TAG}{fe.backend_id}",
                "Route": fe.route,
                "Settings": {"FailoverPredicate": fe.failover_predicate},
            }
        )
        if fe.rewrite:
            kv[f"{base}/middlewares/rewrite"] = _json(
                {
                    "Id": "rewrite",
                    "Type": "rewrite",
                    "Priority": 1,
                    "Middleware": {"Regexp": fe.rewrite.pattern, "Replacement": fe.rewrite.replacement},
                }
            )
    return kv


@dataclass
class ReconcileResult:
    writes: int = 0
    deletes: int = 0
    pruned: int = 0
    failures: int = 0
    foreign: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class Reconciler:
    """Makes the vcb-owned part of the vulcand tree equal a DesiredState.

    Best effort: a failed write or delete is logged and counted, never rolled back.
    """

    def __init__(self, client: EtcdClient, root: str):
        self.client = client
        self.layout = ManagedLayout(root)

    def read_existing(self) -> dict[str, str]:
        """Flat view of the whole vulcand tree. StoreError aborts the cycle."""
        try:
            return self.client.get(self.layout.root, recursive=True).flatten()
        except KeyNotFound:
            return {}

    def apply(self, state: DesiredState) -> ReconcileResult:
        layout = self.layout
        new_conf = encode(state, layout)
        existing = self.read_existing()

        result = ReconcileResult()
        managed = {k: v for k, v in existing.items() if layout.is_managed(k)}
        result.foreign = len(existing) - len(managed)

        # Frontends go first so nothing live points at a deleted backend.
        stale = [k for k in managed if k not in new_conf]
        for prefix in (layout.frontend_prefix, layout.backend_prefix):
            for key in sorted((k for k in stale if k.startswith(prefix)), reverse=True):
                self._delete(key, result)

        changed = [k for k, v in new_conf.items() if existing.get(k) != v]
        for key in sorted(changed, key=lambda k: (layout.write_phase(k), k)):
            self._set(key, new_conf[key], result)

        self.prune(result)
        logger.info(
            "Reconciled: %d writes, %d deletes, %d pruned, %d failures",
            result.writes,
            result.deletes,
            result.pruned,
            result.failures,
        )
        return result

    def prune(self, result: ReconcileResult) -> None:
        """Remove managed backend/frontend directories left without any leaf."""
        try:
            tree = self.client.get(self.layout.root, recursive=True)
        except KeyNotFound:
            return
        except StoreError as e:
            logger.warning("Skipping prune, could not re-read %s: %s", self.layout.root, e)
            result.failures += 1
            return

        for section in ("frontends", "backends"):
            parent = tree.child(section)
            if parent is None or not parent.dir:
                continue
            for entry in parent.nodes:
                if not entry.dir or not self.layout.is_managed(entry.key):
                    continue
                if any(not n.dir for n in entry.walk()):
                    continue
                try:
                    self.client.delete(entry.key, recursive=True)
                    result.pruned += 1
                    logger.info("Pruned empty %s", entry.key)
                except StoreError as e:
                    result.failures += 1
                    logger.error("Failed to prune %s: %s", entry.key, e)

    def _set(self, key: str, value: str, result: ReconcileResult) -> None:
        try:
            self.client.set(key, value)
            result.writes += 1
            logger.info("Set %s", key)
        except StoreError as e:
            result.failures += 1
            logger.error("Failed to set %s: %s", key, e)

    def _delete(self, key: str, result: ReconcileResult) -> None:
        try:
            self.client.delete(key)
            result.deletes += 1
            logger.info("Deleted %s", key)
        except KeyNotFound:
            logger.debug("Already gone: %s", key)
        except StoreError as e:
            result.failures += 1
            logger.error("Failed to delete %s: %s", key, e)
