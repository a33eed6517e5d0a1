from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator
from urllib.parse import quote

import httpx


logger = logging.getLogger(__name__)

# etcd v2 error codes we react to.
ERR_KEY_NOT_FOUND = 100
ERR_EVENT_INDEX_CLEARED = 401


class StoreError(Exception):
    """Transient store failure (network, cluster). Callers may retry."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class KeyNotFound(StoreError):
    pass


@dataclass
class Node:
    key: str
    value: str | None = None
    dir: bool = False
    nodes: list[Node] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.key.rstrip("/").rsplit("/", 1)[-1]

    def walk(self) -> Iterator[Node]:
        yield self
        for child in self.nodes:
            yield from child.walk()

    def flatten(self) -> dict[str, str]:
        """Flat path -> value mapping of every leaf below (and including) this node."""
        return {n.key: n.value or "" for n in self.walk() if not n.dir}

    def child(self, name: str) -> Node | None:
        for n in self.nodes:
            if n.name == name:
                return n
        return None


@dataclass(frozen=True)
class WatchEvent:
    action: str
    key: str
    index: int


def _node_from_json(data: dict[str, Any]) -> Node:
    return Node(
        key=data.get("key", "/"),
        value=data.get("value"),
        dir=bool(data.get("dir", False)),
        nodes=[_node_from_json(n) for n in data.get("nodes", [])],
    )


class EtcdClient:
    """Minimal client for the etcd v2 keys API.

    Each request goes to the first endpoint that accepts a connection.
    """

    def __init__(
        self,
        endpoints: list[str] | tuple[str, ...],
        socks_proxy: str | None = None,
        timeout_s: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.endpoints = [e.rstrip("/") for e in endpoints if e.strip()]
        if not self.endpoints:
            raise ValueError("At least one etcd endpoint is required.")
        self.timeout_s = timeout_s
        proxy = None
        if socks_proxy:
            proxy = socks_proxy if "://" in socks_proxy else f"socks5://{socks_proxy}"
        self._client = httpx.Client(timeout=timeout_s, proxy=proxy, transport=transport)

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        last_error: Exception | None = None
        for endpoint in self.endpoints:
            try:
                return self._client.request(method, f"{endpoint}{path}", **kwargs)
            except httpx.TransportError as e:
                logger.debug("etcd endpoint %s failed: %s", endpoint, e)
                last_error = e
        raise StoreError(f"All etcd endpoints failed: {type(last_error).__name__}: {last_error}")

    def _keys_request(self, method: str, key: str, **kwargs: Any) -> dict[str, Any]:
        resp = self._request(method, "/v2/keys" + quote(key), **kwargs)
        return self._decode(resp)

    @staticmethod
    def _decode(resp: httpx.Response) -> dict[str, Any]:
        try:
            body = resp.json()
        except ValueError:
            raise StoreError(f"Invalid JSON from etcd (HTTP {resp.status_code})")
        if resp.status_code >= 400 or "errorCode" in body:
            code = body.get("errorCode")
            message = f"etcd error {code}: {body.get('message')} ({body.get('cause', '')})"
            if code == ERR_KEY_NOT_FOUND:
                raise KeyNotFound(message, code=code)
            raise StoreError(message, code=code)
        return body

    def ping(self) -> None:
        """Raise StoreError unless some endpoint answers."""
        resp = self._request("GET", "/version")
        if resp.status_code != 200:
            raise StoreError(f"etcd /version returned HTTP {resp.status_code}")

    def get(self, key: str, recursive: bool = True) -> Node:
        params = {"recursive": "true"} if recursive else {}
        body = self._keys_request("GET", key, params=params)
        return _node_from_json(body.get("node") or {})

    def set(self, key: str, value: str) -> None:
        self._keys_request("PUT", key, data={"value": value})

    def delete(self, key: str, recursive: bool = False) -> None:
        params = {"recursive": "true"} if recursive else {}
        self._keys_request("DELETE", key, params=params)

    def watch(self, prefix: str, recursive: bool = True, wait_index: int | None = None) -> Iterator[WatchEvent]:
        """Yield mutation events under prefix, forever.

        wait_index resumes a previous subscription (last seen index + 1).
        A cleared index yields a "resync" event: changes were missed.
        Raises StoreError when the long poll fails; the caller resubscribes.
        """
        timeout = httpx.Timeout(self.timeout_s, read=None)
        while True:
            params = {"wait": "true"}
            if recursive:
                params["recursive"] = "true"
            if wait_index is not None:
                params["waitIndex"] = str(wait_index)
            resp = self._request("GET", "/v2/keys" + quote(prefix), params=params, timeout=timeout)
            if not resp.content.strip():
                if resp.status_code != 200:
                    raise StoreError(f"Empty reply from etcd (HTTP {resp.status_code})")
                # etcd closed the long poll without an event
                continue
            try:
                body = self._decode(resp)
            except StoreError as e:
                if e.code != ERR_EVENT_INDEX_CLEARED:
                    raise
                current = resp.headers.get("X-Etcd-Index")
                logger.info("Watch index %s cleared, resuming from %s", wait_index, current)
                index = int(current) if current else 0
                wait_index = index + 1 if current else None
                yield WatchEvent(action="resync", key=prefix, index=index)
                continue
            node = body.get("node") or {}
            index = int(node.get("modifiedIndex", 0))
            wait_index = index + 1
            yield WatchEvent(action=body.get("action", ""), key=node.get("key", ""), index=index)
