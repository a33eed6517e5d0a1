from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from .registry import Service


logger = logging.getLogger(__name__)

ADDRESS_RE = re.compile(r"^[A-Za-z0-9_./\-]+:[0-9]{2,5}$")


@dataclass(frozen=True)
class RewriteRule:
    pattern: str
    replacement: str


@dataclass(frozen=True)
class Frontend:
    backend_id: str
    route: str
    type: str = "http"
    rewrite: RewriteRule | None = None
    failover_predicate: str = ""


@dataclass
class Backend:
    servers: dict[str, str] = field(default_factory=dict)  # server id -> url


@dataclass
class DesiredState:
    frontends: dict[str, Frontend] = field(default_factory=dict)
    backends: dict[str, Backend] = field(default_factory=dict)


def valid_address(address: str) -> bool:
    return bool(ADDRESS_RE.match(address))


def _lit(value: str) -> str:
    """Double-quoted predicate argument."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _strip_prefix(prefix: str) -> RewriteRule:
    return RewriteRule(pattern=f"{prefix}(.*)", replacement="$1")


def _servers(svc: Service) -> dict[str, str]:
    out: dict[str, str] = {}
    for sid in sorted(svc.addresses):
        address = svc.addresses[sid]
        if not valid_address(address):
            logger.warning("Service %s: dropping invalid address %r (server %s)", svc.name, address, sid)
            continue
        out[sid] = f"http://{address}"
    return out


def build(services: list[Service]) -> DesiredState:
    """Derive the complete proxy configuration for a list of services.

    Pure: equal inputs, in any order, give equal output with equal iteration order.
    """
    state = DesiredState()
    for svc in sorted(services, key=lambda s: s.name):
        name = svc.name
        main_id = f"b:{name}"
        servers = _servers(svc)

        state.backends[main_id] = Backend(servers=dict(servers))

        state.frontends[f"fe:byhost:{name}"] = Frontend(
            backend_id=main_id,
            route=f'Host({_lit(name)}) && PathRegexp("/.*")',
            failover_predicate=svc.failover_predicate,
        )

        for sid in sorted(svc.addresses):
            instance_id = f"b:{name}:{sid}"
            state.backends[instance_id] = Backend(servers={sid: servers[sid]} if sid in servers else {})
            if svc.has_health_check:
                prefix = f"/health/{name}-{sid}"
                state.frontends[f"fe:health:{name}:{sid}"] = Frontend(
                    backend_id=instance_id,
                    route=f"Path({_lit(prefix + '/__health')})",
                    rewrite=_strip_prefix(prefix),
                )

        state.frontends[f"fe:internal:{name}"] = Frontend(
            backend_id=main_id,
            route=f"PathRegexp({_lit('/__' + name + '/.*')})",
            rewrite=_strip_prefix(f"/__{name}"),
        )

        for path_name in sorted(svc.path_prefixes):
            route = f"PathRegexp({_lit(svc.path_prefixes[path_name])})"
            host = svc.path_hosts.get(path_name)
            if host:
                route = f"Host({_lit(host)}) && {route}"
            state.frontends[f"fe:{name}:path:{path_name}"] = Frontend(
                backend_id=main_id,
                route=route,
                failover_predicate=svc.failover_predicate,
            )
    return state
