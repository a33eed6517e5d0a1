from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import signal
import sys
from threading import Event

import requests

from vcb.api import create_app, serve_in_background
from vcb.builder import build
from vcb.etcd import EtcdClient, StoreError
from vcb.events import EventLog
from vcb.orchestrator import Orchestrator
from vcb.reconciler import ManagedLayout, Reconciler, encode
from vcb.registry import RegistryError, ServiceRegistryReader
from vcb.runtime import RuntimeState
from vcb.settings import Settings, load_settings
from vcb.watcher import ChangeSignal, ChangeWatcher


logger = logging.getLogger("vcb")


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _settings_from_args(args: argparse.Namespace) -> Settings:
    s = load_settings()
    overrides = {}
    if args.etcd_peers:
        overrides["etcd_peers"] = tuple(p.strip() for p in args.etcd_peers.split(",") if p.strip())
    if args.socks_proxy:
        overrides["socks_proxy"] = args.socks_proxy
    if args.cooldown is not None:
        overrides["cooldown_s"] = args.cooldown
    if args.services_root:
        overrides["services_root"] = args.services_root
    if args.vulcand_root:
        overrides["vulcand_root"] = args.vulcand_root
    if args.db_path:
        overrides["db_path"] = args.db_path
    if args.api_port is not None:
        overrides["api_port"] = args.api_port
    return dataclasses.replace(s, **overrides)


def _client(s: Settings) -> EtcdClient:
    return EtcdClient(s.etcd_peers, socks_proxy=s.socks_proxy, timeout_s=s.request_timeout_s)


def cmd_run(s: Settings) -> int:
    client = _client(s)
    try:
        client.ping()
    except StoreError as e:
        logger.critical("Cannot reach etcd at %s: %s", ",".join(s.etcd_peers), e)
        return 1

    events = EventLog(s.db_path)
    events.init_db()
    runtime = RuntimeState()
    change = ChangeSignal()

    watcher = ChangeWatcher(client, s.services_root, retry_interval_s=s.watch_retry_s, signal=change)
    orchestrator = Orchestrator(
        ServiceRegistryReader(client, s.services_root),
        Reconciler(client, s.vulcand_root),
        change,
        cooldown_s=s.cooldown_s,
        events=events,
        runtime=runtime,
    )

    stop = Event()

    def _shutdown(signum, frame) -> None:
        logger.info("Signal %s received, stopping at the next idle point", signum)
        stop.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    watcher.start()
    if s.api_port > 0:
        serve_in_background(create_app(runtime, events, change), s.api_port)

    try:
        orchestrator.run(stop)
    except RegistryError as e:
        logger.critical("Stopping: %s", e)
        return 1
    finally:
        watcher.stop()
    return 0


def cmd_once(s: Settings) -> int:
    client = _client(s)
    try:
        services = ServiceRegistryReader(client, s.services_root).read()
        result = Reconciler(client, s.vulcand_root).apply(build(services))
    except (StoreError, RegistryError) as e:
        logger.critical("Reconcile failed: %s", e)
        return 1
    _print({"services": len(services), **result.as_dict()})
    return 0 if result.failures == 0 else 1


def cmd_render(s: Settings) -> int:
    client = _client(s)
    try:
        services = ServiceRegistryReader(client, s.services_root).read()
    except (StoreError, RegistryError) as e:
        logger.critical("Could not read services: %s", e)
        return 1
    _print(encode(build(services), ManagedLayout(s.vulcand_root)))
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Vulcan Config Builder: etcd service declarations -> vulcand config")
    p.add_argument("--etcd-peers", help="Comma-separated list of etcd endpoints (default $VCB_ETCD_PEERS or http://localhost:2379)")
    p.add_argument("--socks-proxy", help="Use specified SOCKS proxy (e.g. localhost:2323)")
    p.add_argument("--cooldown", type=float, help="Seconds to wait after a change before rebuilding")
    p.add_argument("--services-root", help="Where service declarations live (default /ft/services)")
    p.add_argument("--vulcand-root", help="vulcand configuration root (default /vulcand)")
    p.add_argument("--db-path", help="SQLite event journal path")
    p.add_argument("--api-port", type=int, help="Serve the status API on this port (0 disables)")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("run", help="Reconcile now and after every change, until interrupted")
    sub.add_parser("once", help="Run a single reconcile cycle")
    sub.add_parser("render", help="Print the generated vulcand keys without writing them")

    s_status = sub.add_parser("status", help="Show the status of a running instance")
    s_status.add_argument("--api", default="http://localhost:8080", help="API base URL")

    s_ev = sub.add_parser("events", help="Show recent events of a running instance")
    s_ev.add_argument("--api", default="http://localhost:8080", help="API base URL")
    s_ev.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)

    if args.cmd == "status":
        _print(requests.get(f"{args.api.rstrip('/')}/status", timeout=10).json())
        return 0

    if args.cmd == "events":
        _print(requests.get(f"{args.api.rstrip('/')}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    s = _settings_from_args(args)
    logging.basicConfig(
        level=getattr(logging, s.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.cmd == "run":
        return cmd_run(s)
    if args.cmd == "once":
        return cmd_once(s)
    if args.cmd == "render":
        return cmd_render(s)
    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
