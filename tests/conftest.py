from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from experiment_store.core.database import Database


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "store" / "results.sqlite3"


@pytest.fixture()
def db(db_path: Path):
    database = Database(db_path)
    yield database
    database.close()


def raw_rows(path: Path, sql: str, params: tuple = ()) -> list[tuple]:
    """Query the store file with a separate plain sqlite3 connection."""

    conn = sqlite3.connect(path)
    try:
        return [tuple(row) for row in conn.execute(sql, params).fetchall()]
    finally:
        conn.close()


def raw_columns(path: Path, table: str) -> list[str]:
    return [row[1] for row in raw_rows(path, f'PRAGMA table_info("{table}")')]


def raw_tables(path: Path) -> list[str]:
    return [
        row[0]
        for row in raw_rows(
            path, "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
    ]
