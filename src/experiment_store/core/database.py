"""SQLite-backed recording of experiment executions and their outcomes.

Sample usage:

    with Database("path/to/data.sqlite3") as db:
        with db.create_execution()("algorithm", "btree") as builder:
            pass
        execution = builder.execution
        execution.store_parameters([("block_size", "32"), ("leaf_size", "64")])
        execution.add("experiment_aging")("completion_time", 32).save()

The store is a star schema:
  - executions: one row per execution, the fact table;
  - parameters: key/value parameters of each execution;
  - one table per outcome name (experiment_aging above), each row tagged with
    the execution id.
"""

from __future__ import annotations

import dataclasses
import shutil
import sqlite3
import threading
import weakref
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Sequence

from .errors import ClosedConnectionError, ClosedExecutionError, ConnectionError, DatabaseError
from .execution import Execution, ExecutionBuilder
from .fields import Field
from .migrations import run_migrations
from .outcome import OutcomeBuilder
from .schema import describe, ensure_columns, insert_row, table_columns, table_exists
from .settings import StoreSettings
from .utils import (
    RESERVED_TABLES,
    Logger,
    check_identifier,
    ensure_dir,
    file_logger,
    now_iso,
    null_logger,
    quote_identifier,
)

_OUTCOME_PREAMBLE = (
    "\"row_id\" INTEGER PRIMARY KEY AUTOINCREMENT",
    "\"execution_id\" INTEGER NOT NULL REFERENCES executions(id)",
)


@contextmanager
def _transaction(conn: sqlite3.Connection, write: bool) -> Iterator[sqlite3.Connection]:
    if write:
        conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    else:
        if conn.in_transaction:
            conn.execute("COMMIT")


class Database:
    """Owner of the connection to one experiment store.

    All access to the SQLite handle goes through `connection()`, which holds
    the instance lock, so any number of threads may share one Database.
    With `keep_alive` off, a handle is opened for each operation and closed
    right after it; the Database still counts as open until `close()`.
    """

    def __init__(
        self,
        path: str | Path,
        keep_alive: bool | None = None,
        *,
        settings: StoreSettings | None = None,
        logger: Logger | None = None,
    ) -> None:
        if settings is None:
            settings = StoreSettings(path=str(path))
        if keep_alive is None:
            keep_alive = settings.keep_alive
        settings = dataclasses.replace(settings, path=str(path), keep_alive=bool(keep_alive))
        self.settings = settings
        self._path = Path(path)
        self._keep_alive = settings.keep_alive
        self._logger = logger or null_logger
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._open = False
        # bumped by close(): executions of an older generation are stale
        self._generation = 0
        # the current execution is held strongly, the older ones weakly
        self._current: Execution | None = None
        self._executions: list[weakref.ref[Execution]] = []
        self.open()

    @classmethod
    def from_settings(cls, settings: StoreSettings, logger: Logger | None = None) -> Database:
        if logger is None and settings.log_path:
            logger = file_logger(Path(settings.log_path))
        return cls(settings.path, settings.keep_alive, settings=settings, logger=logger)

    # --- connection management ---

    def _connect(self) -> sqlite3.Connection:
        conn: sqlite3.Connection | None = None
        try:
            ensure_dir(self._path.parent)
            conn = sqlite3.connect(
                self._path,
                check_same_thread=False,
                timeout=self.settings.busy_timeout_ms / 1000.0,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute(f"PRAGMA journal_mode = {self.settings.journal_mode}")
            conn.execute(f"PRAGMA synchronous = {self.settings.synchronous}")
            conn.execute(f"PRAGMA busy_timeout = {int(self.settings.busy_timeout_ms)}")
        except (sqlite3.Error, OSError) as exc:
            if conn is not None:
                conn.close()
            raise ConnectionError(f"Cannot open the store {self._path}: {exc}") from exc
        return conn

    def open(self, path: str | Path | None = None) -> None:
        """Connect to the store; a no-op when already connected to `path`."""

        with self._lock:
            if path is not None and Path(path).resolve() != self._path.resolve():
                if self._open:
                    raise ConnectionError(f"Already connected to {self._path}")
                self._path = Path(path)
                self.settings = dataclasses.replace(self.settings, path=str(path))
            if self._open:
                return
            conn = self._connect()
            try:
                with _transaction(conn, write=True):
                    run_migrations(conn)
            except sqlite3.Error as exc:
                conn.close()
                raise ConnectionError(f"Cannot open the store {self._path}: {exc}") from exc
            except BaseException:
                conn.close()
                raise
            if self._keep_alive:
                self._conn = conn
            else:
                conn.close()
            self._open = True
            self._logger(f"[OPEN] {self._path} keep_alive={self._keep_alive}")

    connect = open

    def close(self) -> None:
        with self._lock:
            if not self._open:
                return
            self._open = False
            self._generation += 1
            self._current = None
            self._executions.clear()
            if self._conn is not None:
                conn, self._conn = self._conn, None
                conn.close()
            self._logger(f"[CLOSE] {self._path}")

    disconnect = close

    def is_connected(self) -> bool:
        return self._open

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def path(self) -> Path:
        return self._path

    def db_path(self) -> str:
        return str(self._path)

    def get_connection_handle(self) -> sqlite3.Connection | None:
        return self._conn

    @property
    def keep_alive(self) -> bool:
        return self._keep_alive

    @keep_alive.setter
    def keep_alive(self, value: bool) -> None:
        with self._lock:
            value = bool(value)
            if value == self._keep_alive:
                return
            self._keep_alive = value
            self.settings = dataclasses.replace(self.settings, keep_alive=value)
            if not self._open:
                return
            if value:
                self._conn = self._connect()
            elif self._conn is not None:
                conn, self._conn = self._conn, None
                conn.close()

    def is_keep_alive(self) -> bool:
        return self._keep_alive

    def set_keep_alive(self, value: bool) -> None:
        self.keep_alive = value

    def _check_generation(self, generation: int | None) -> None:
        if not self._open:
            raise ClosedConnectionError(f"The store {self._path} is closed")
        if generation is not None and generation != self._generation:
            raise ClosedConnectionError(f"The store {self._path} was closed since this execution started")

    def is_current(self, generation: int) -> bool:
        return self._open and generation == self._generation

    @contextmanager
    def connection(self, write: bool = False, generation: int | None = None) -> Iterator[sqlite3.Connection]:
        """Hold the lock and a live handle for the duration of the block.

        With `write`, the block runs in one immediate transaction, committed
        on success and rolled back on error. SQLite errors surface as
        DatabaseError.
        """

        with self._lock:
            self._check_generation(generation)
            conn = self._conn if self._conn is not None else self._connect()
            try:
                with _transaction(conn, write):
                    yield conn
            except sqlite3.Error as exc:
                self._logger(f"[ERROR] {type(exc).__name__}: {exc}")
                raise DatabaseError(str(exc)) from exc
            except DatabaseError as exc:
                self._logger(f"[ERROR] {type(exc).__name__}: {exc}")
                raise
            finally:
                if conn is not self._conn:
                    conn.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "open" if self._open else "closed"
        return f"Database({str(self._path)!r}, {state})"

    # --- executions ---

    def create_execution(self) -> ExecutionBuilder:
        return ExecutionBuilder(self)

    def current(self) -> Execution | None:
        """The most recently created execution that is still open."""

        with self._lock:
            if self._current is not None and not self._current.closed:
                return self._current
            self._current = None
            self._prune()
            for ref in reversed(self._executions):
                execution = ref()
                if execution is not None and not execution.closed:
                    return execution
            return None

    def _current_or_raise(self) -> Execution:
        execution = self.current()
        if execution is None:
            raise ClosedExecutionError("No current execution")
        return execution

    def store_parameters(self, params: Iterable[tuple[str, Any]] | Mapping[str, Any]) -> None:
        self._current_or_raise().store_parameters(params)

    def add(self, table_name: str) -> OutcomeBuilder:
        return self._current_or_raise().add(table_name)

    def _prune(self) -> None:
        self._executions = [ref for ref in self._executions if ref() is not None]

    def _register(self, execution: Execution) -> None:
        self._executions.append(weakref.ref(execution))
        self._current = execution
        self._prune()

    def _unregister(self, execution: Execution) -> None:
        with self._lock:
            if self._current is execution:
                self._current = None
            self._executions = [
                ref for ref in self._executions if ref() is not None and ref() is not execution
            ]

    # --- writes, called by the builders with the lock held ---

    def _log_change(self, change) -> None:
        for line in describe(change):
            self._logger(line)

    def insert_execution(self, fields: Sequence[Field]) -> Execution:
        with self.connection(write=True) as conn:
            change = ensure_columns(conn, "executions", fields, type_policy=self.settings.type_policy)
            execution_id = insert_row(conn, "executions", fields, extra=[("created_at", now_iso())])
            generation = self._generation
        execution = Execution(self, execution_id, generation)
        self._log_change(change)
        self._register(execution)
        self._logger(f"[EXECUTION] id={execution_id} " + ", ".join(str(f) for f in fields))
        return execution

    def insert_parameters(
        self, generation: int, execution_id: int, pairs: Sequence[tuple[str, str]]
    ) -> None:
        if not pairs:
            return
        with self.connection(write=True, generation=generation) as conn:
            conn.executemany(
                """
                INSERT INTO parameters (execution_id, key, value) VALUES (?, ?, ?)
                ON CONFLICT (execution_id, key) DO UPDATE SET value = excluded.value
                """,
                [(execution_id, key, value) for key, value in pairs],
            )
        self._logger(f"[PARAMETERS] id={execution_id} " + ", ".join(f"{k}={v}" for k, v in pairs))

    def insert_outcome(
        self, generation: int, execution_id: int, table: str, fields: Sequence[Field]
    ) -> int:
        with self.connection(write=True, generation=generation) as conn:
            change = ensure_columns(
                conn,
                table,
                fields,
                preamble=_OUTCOME_PREAMBLE,
                type_policy=self.settings.type_policy,
            )
            row_id = insert_row(conn, table, fields, extra=[("execution_id", execution_id)])
        self._log_change(change)
        self._logger(f"[OUTCOME] {table} id={execution_id} row_id={row_id}")
        return row_id

    # --- read back ---

    def list_tables(self) -> list[str]:
        with self.connection() as conn:
            cur = conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' "
                "AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
            return [str(row[0]) for row in cur.fetchall()]

    def list_outcome_tables(self) -> list[str]:
        return [name for name in self.list_tables() if name.lower() not in RESERVED_TABLES]

    def table_columns(self, table: str) -> list[tuple[str, str]]:
        check_identifier(table)
        with self.connection() as conn:
            return list(table_columns(conn, table).values())

    def list_executions(self) -> list[dict[str, Any]]:
        with self.connection() as conn:
            cur = conn.execute("SELECT * FROM executions ORDER BY id")
            return [dict(row) for row in cur.fetchall()]

    def fetch_execution(self, execution_id: int) -> dict[str, Any] | None:
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM executions WHERE id = ?", (int(execution_id),)).fetchone()
        return dict(row) if row else None

    def fetch_parameters(self, execution_id: int) -> dict[str, str]:
        with self.connection() as conn:
            cur = conn.execute(
                "SELECT key, value FROM parameters WHERE execution_id = ? ORDER BY rowid",
                (int(execution_id),),
            )
            return {str(row["key"]): row["value"] for row in cur.fetchall()}

    def fetch_rows(self, table: str, execution_id: int | None = None) -> list[dict[str, Any]]:
        """Rows of an outcome table in insertion order; empty if the table is absent."""

        safe_table = quote_identifier(table)
        with self.connection() as conn:
            if not table_exists(conn, table):
                return []
            if execution_id is None:
                cur = conn.execute(f"SELECT * FROM {safe_table} ORDER BY rowid")
            else:
                cur = conn.execute(
                    f"SELECT * FROM {safe_table} WHERE execution_id = ? ORDER BY rowid",
                    (int(execution_id),),
                )
            return [dict(row) for row in cur.fetchall()]

    def integrity_check(self, full: bool = False) -> tuple[bool, str]:
        pragma = "integrity_check" if full else "quick_check"
        with self.connection() as conn:
            row = conn.execute(f"PRAGMA {pragma}").fetchone()
        msg = str(row[0]) if row else "unknown"
        return msg.lower() == "ok", msg

    def backup_to(self, dest_path: Path) -> None:
        dest_path = Path(dest_path)
        ensure_dir(dest_path.parent)
        tmp_path = dest_path.with_suffix(dest_path.suffix + ".tmp")
        with self.connection() as conn:
            dest = sqlite3.connect(tmp_path)
            try:
                conn.backup(dest)
            finally:
                dest.close()
        shutil.move(str(tmp_path), str(dest_path))
        self._logger(f"[BACKUP] {dest_path}")
