from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

from .reconciler import ReconcileResult


logger = logging.getLogger("vcb.events")

_LEVELS = {"DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARN": logging.WARNING, "ERROR": logging.ERROR}


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class EventLog:
    """SQLite journal of lifecycle events and reconcile cycles.

    Every event is also passed on to the standard logger.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    def _resolve_path(self) -> str:
        p = os.path.abspath(self.db_path)
        # A bind-mounted path that does not exist shows up as a directory.
        if os.path.isdir(p):
            p = os.path.join(p, "vcb.db")
        parent = os.path.dirname(p)
        if parent and not os.path.exists(parent):
            os.makedirs(parent, exist_ok=True)
        return p

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._resolve_path(), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist."""
        with self.connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS events (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  ts TEXT NOT NULL,
                  level TEXT NOT NULL,
                  service_name TEXT,
                  message TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS cycles (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  ts TEXT NOT NULL,
                  trigger TEXT NOT NULL, -- startup|change|manual
                  services INTEGER NOT NULL,
                  writes INTEGER NOT NULL,
                  deletes INTEGER NOT NULL,
                  pruned INTEGER NOT NULL,
                  failures INTEGER NOT NULL,
                  error TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
                """
            )

    def log_event(self, level: str, message: str, service_name: str | None = None) -> None:
        level = level.upper()
        logger.log(_LEVELS.get(level, logging.INFO), message)
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, service_name, message) VALUES (?, ?, ?, ?)",
                (utc_now(), level, service_name, message),
            )

    def record_cycle(
        self,
        trigger: str,
        services: int,
        result: ReconcileResult | None,
        error: str | None = None,
    ) -> None:
        result = result or ReconcileResult()
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO cycles (ts, trigger, services, writes, deletes, pruned, failures, error)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    utc_now(),
                    trigger,
                    services,
                    result.writes,
                    result.deletes,
                    result.pruned,
                    result.failures,
                    error,
                ),
            )

    def latest_events(self, limit: int = 100) -> list[dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
            return [dict(r) for r in rows]

    def latest_cycles(self, limit: int = 20) -> list[dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM cycles ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
            return [dict(r) for r in rows]
