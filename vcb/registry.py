from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .etcd import EtcdClient, KeyNotFound, Node, StoreError


logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """No trustworthy view of the declarations. Fatal: never build from a partial view."""


class SchemaError(RegistryError):
    """The declarative tree has a leaf where a directory belongs (or vice versa)."""


class RegistryReadError(RegistryError):
    pass


@dataclass
class Service:
    name: str
    has_health_check: bool = False
    addresses: dict[str, str] = field(default_factory=dict)  # server id -> host:port
    path_prefixes: dict[str, str] = field(default_factory=dict)  # path name -> pattern
    path_hosts: dict[str, str] = field(default_factory=dict)  # path name -> host override
    failover_predicate: str = ""


def _leaves(node: Node) -> dict[str, str]:
    if not node.dir:
        raise SchemaError(f"Expected a directory at {node.key}")
    out: dict[str, str] = {}
    for child in node.nodes:
        if child.dir:
            raise SchemaError(f"Expected a leaf at {child.key}")
        out[child.name] = child.value or ""
    return out


def _leaf(node: Node) -> str:
    if node.dir:
        raise SchemaError(f"Expected a leaf at {node.key}")
    return node.value or ""


def parse_service(node: Node) -> Service:
    if not node.dir:
        raise SchemaError(f"Expected a service directory at {node.key}")
    svc = Service(name=node.name)
    for child in node.nodes:
        key = child.name
        if key == "healthcheck":
            svc.has_health_check = _leaf(child) == "true"
        elif key == "servers":
            svc.addresses = _leaves(child)
        elif key == "path-regex":
            svc.path_prefixes = _leaves(child)
        elif key == "path-host":
            svc.path_hosts = _leaves(child)
        elif key == "failover-predicate":
            svc.failover_predicate = _leaf(child)
        else:
            logger.warning("Service %s: ignoring unknown key %s", svc.name, child.key)
    return svc


class ServiceRegistryReader:
    """Reads one Service per directory under the services root."""

    def __init__(self, client: EtcdClient, root: str):
        self.client = client
        self.root = root

    def read(self) -> list[Service]:
        try:
            root = self.client.get(self.root, recursive=True)
        except KeyNotFound:
            logger.info("Services root %s does not exist yet", self.root)
            return []
        except StoreError as e:
            raise RegistryReadError(f"Cannot read {self.root}: {e}") from e
        if not root.dir:
            raise SchemaError(f"Expected a directory at {root.key}")
        services = [parse_service(n) for n in root.nodes]
        return [s for s in services if s.name]
