from __future__ import annotations

import sqlite3
from typing import Callable

from .errors import ConnectionError
from .utils import now_iso

Migration = Callable[[sqlite3.Connection], None]


def _ensure_schema_migrations(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )


def migration_1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS executions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            created_at TEXT
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS parameters (
            execution_id INTEGER NOT NULL,
            key TEXT NOT NULL,
            value TEXT,
            PRIMARY KEY (execution_id, key),
            FOREIGN KEY (execution_id) REFERENCES executions(id)
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_parameters_key ON parameters(key)")


MIGRATIONS: list[Migration] = [migration_1]


def store_version(conn: sqlite3.Connection) -> int:
    return int(conn.execute("PRAGMA user_version").fetchone()[0])


def run_migrations(conn: sqlite3.Connection) -> None:
    current = store_version(conn)
    if current > len(MIGRATIONS):
        raise ConnectionError(
            f"Incompatible store format: version {current}, "
            f"this library supports up to {len(MIGRATIONS)}"
        )
    _ensure_schema_migrations(conn)
    for version, migration in enumerate(MIGRATIONS, start=1):
        if version <= current:
            continue
        migration(conn)
        conn.execute(
            "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)",
            (version, now_iso()),
        )
        conn.execute(f"PRAGMA user_version = {version}")
