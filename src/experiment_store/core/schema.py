"""Runtime schema management for result tables.

Tables are never declared up front. Each insert reads the current columns of
its table, creates the table or adds the missing columns, then inserts. The
caller holds the Database lock across the whole sequence so that a concurrent
save can never miss a column added in between.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .errors import ColumnTypeError
from .fields import Field, FieldType
from .utils import quote_identifier

TYPE_POLICIES = ("coerce", "reject")

# declared column type -> field types it accepts under the "reject" policy
_COMPATIBLE = {
    "INTEGER": {FieldType.INTEGER},
    "REAL": {FieldType.INTEGER, FieldType.REAL},
    "TEXT": {FieldType.TEXT},
}


@dataclass
class SchemaChange:
    table: str
    created: bool = False
    added: list[Field] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.created or bool(self.added)


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ? COLLATE NOCASE",
        (table,),
    ).fetchone()
    return row is not None


def table_columns(conn: sqlite3.Connection, table: str) -> dict[str, tuple[str, str]]:
    """Map lower-cased column name -> (name, declared type), in table order."""

    cur = conn.execute(f"PRAGMA table_info({quote_identifier(table)})")
    return {str(row[1]).lower(): (str(row[1]), str(row[2] or "").upper()) for row in cur.fetchall()}


def check_types(table: str, existing: dict[str, tuple[str, str]], fields: Iterable[Field]) -> None:
    for item in fields:
        current = existing.get(item.key.lower())
        if current is None:
            continue
        name, declared = current
        accepted = _COMPATIBLE.get(declared)
        if accepted is not None and item.type not in accepted:
            raise ColumnTypeError(
                f"Column {table}.{name} is {declared}, cannot store {item.type.value} value {item.value!r}"
            )


def ensure_columns(
    conn: sqlite3.Connection,
    table: str,
    fields: Sequence[Field],
    preamble: Sequence[str] = (),
    type_policy: str = "coerce",
) -> SchemaChange:
    """Make `table` hold a column per field, creating the table if needed.

    `preamble` holds the column definitions of a new table that precede the
    fields (identity and foreign key columns).
    """

    change = SchemaChange(table)
    safe_table = quote_identifier(table)
    existing = table_columns(conn, table)
    if not existing:
        col_defs = list(preamble) + [
            f"{quote_identifier(item.key)} {item.type.sqlite_type}" for item in fields
        ]
        conn.execute(f"CREATE TABLE {safe_table} ({', '.join(col_defs)})")
        change.created = True
        return change

    if type_policy == "reject":
        check_types(table, existing, fields)
    for item in fields:
        if item.key.lower() in existing:
            continue
        conn.execute(
            f"ALTER TABLE {safe_table} ADD COLUMN {quote_identifier(item.key)} {item.type.sqlite_type}"
        )
        change.added.append(item)
    return change


def insert_row(
    conn: sqlite3.Connection,
    table: str,
    fields: Sequence[Field],
    extra: Sequence[tuple[str, object]] = (),
) -> int:
    columns = [name for name, _ in extra] + [item.key for item in fields]
    values = [value for _, value in extra] + [item.value for item in fields]
    safe_table = quote_identifier(table)
    if not columns:
        cur = conn.execute(f"INSERT INTO {safe_table} DEFAULT VALUES")
    else:
        placeholders = ", ".join(["?"] * len(columns))
        quoted = ", ".join(quote_identifier(name) for name in columns)
        cur = conn.execute(f"INSERT INTO {safe_table} ({quoted}) VALUES ({placeholders})", values)
    return int(cur.lastrowid)


def describe(change: SchemaChange) -> list[str]:
    if change.created:
        return [f"[CREATE] {change.table}"]
    return [
        f"[MIGRATE] {change.table} ADD COLUMN {item.key} {item.type.sqlite_type}"
        for item in change.added
    ]
