from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    # etcd
    etcd_peers: tuple[str, ...] = ("http://localhost:2379",)
    socks_proxy: str | None = None
    request_timeout_s: float = 1.0
    watch_retry_s: float = 1.0

    # Key layout
    services_root: str = "/ft/services"
    vulcand_root: str = "/vulcand"

    # Loop
    cooldown_s: float = 10.0

    # Ambient
    db_path: str = "vcb.db"
    log_level: str = "INFO"
    api_port: int = 0


def load_settings() -> Settings:
    """Read settings from the environment once, at startup.

    The result is handed to each component; nothing reads the environment later.
    """
    return Settings(
        etcd_peers=_env_list("VCB_ETCD_PEERS", "http://localhost:2379"),
        socks_proxy=os.getenv("VCB_SOCKS_PROXY") or None,
        request_timeout_s=_env_float("VCB_REQUEST_TIMEOUT_S", 1.0),
        watch_retry_s=_env_float("VCB_WATCH_RETRY_S", 1.0),
        services_root=os.getenv("VCB_SERVICES_ROOT", "/ft/services"),
        vulcand_root=os.getenv("VCB_VULCAND_ROOT", "/vulcand"),
        cooldown_s=_env_float("VCB_COOLDOWN_S", 10.0),
        db_path=os.getenv("VCB_DB_PATH", "vcb.db"),
        log_level=os.getenv("VCB_LOG_LEVEL", "INFO"),
        api_port=_env_int("VCB_API_PORT", 0),
    )
