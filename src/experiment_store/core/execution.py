from __future__ import annotations

import warnings
import weakref
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from .errors import ClosedConnectionError, ClosedExecutionError, ExperimentStoreError
from .fields import FieldAccumulator
from .outcome import OutcomeBuilder

if TYPE_CHECKING:
    from .database import Database


def _parameter_pairs(params: Iterable[tuple[str, Any]] | Mapping[str, Any]) -> list[tuple[str, str]]:
    items = params.items() if isinstance(params, Mapping) else params
    pairs: list[tuple[str, str]] = []
    for key, value in items:
        if not isinstance(key, str) or not key:
            raise ValueError(f"Parameter keys must be non-empty strings, got {key!r}")
        pairs.append((key, value if isinstance(value, str) else str(value)))
    return pairs


class ExecutionBuilder(FieldAccumulator):
    """Fields of a new execution; `save()` inserts the fact row.

    Use it as a context manager to save on scope exit:

        with db.create_execution() as builder:
            builder("algorithm", "btree")("threads", 8)
        execution = builder.execution
    """

    reserved_keys = frozenset({"id", "created_at"})

    def __init__(self, database: Database) -> None:
        super().__init__()
        self._database = database
        self._execution: Execution | None = None

    @property
    def execution(self) -> Execution | None:
        return self._execution

    @property
    def saved(self) -> bool:
        return self._execution is not None

    def _check_pending(self) -> None:
        if self._execution is not None:
            raise ExperimentStoreError(f"Execution {self._execution.id} already saved")

    def save(self) -> Execution:
        if self._execution is not None:
            return self._execution
        with self._database.lock:
            if self._execution is None:
                self._execution = self._database.insert_execution(self.fields)
        return self._execution

    def __enter__(self) -> ExecutionBuilder:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.save()

    def __del__(self) -> None:
        if getattr(self, "_execution", True) is None:
            warnings.warn("Execution builder discarded without save()", ResourceWarning, stacklevel=2)


class Execution:
    """A live handle on one row of `executions`.

    It references its Database weakly: the handle never keeps the store open,
    and it turns invalid once the Database is closed or collected.
    """

    def __init__(self, database: Database, execution_id: int, generation: int) -> None:
        self._database = weakref.ref(database)
        self._id = int(execution_id)
        self._generation = generation
        self._closed = False

    @property
    def id(self) -> int:
        return self._id

    @property
    def database(self) -> Database | None:
        return self._database()

    @property
    def closed(self) -> bool:
        return self._closed

    def _require_database(self) -> Database:
        if self._closed:
            raise ClosedExecutionError(f"Execution {self._id} is closed")
        database = self._database()
        if database is None or not database.is_current(self._generation):
            raise ClosedConnectionError(f"The store of execution {self._id} was closed")
        return database

    def valid(self) -> bool:
        if self._closed:
            return False
        database = self._database()
        return database is not None and database.is_current(self._generation)

    def store_parameters(self, params: Iterable[tuple[str, Any]] | Mapping[str, Any]) -> None:
        """Save key/value pairs into `parameters`; the last value of a key wins."""

        database = self._require_database()
        pairs = _parameter_pairs(params)
        with database.lock:
            self._require_database()
            database.insert_parameters(self._generation, self._id, pairs)

    def parameters(self) -> dict[str, str]:
        return self._require_database().fetch_parameters(self._id)

    def add(self, table_name: str) -> OutcomeBuilder:
        """Start a row of `table_name`; the table is created on the first save."""

        self._require_database()
        return OutcomeBuilder(self, table_name)

    def close(self) -> None:
        if self._closed:
            return
        database = self._database()
        if database is None:
            self._closed = True
            return
        with database.lock:
            self._closed = True
        database._unregister(self)

    def __enter__(self) -> Execution:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else ("open" if self.valid() else "stale")
        return f"Execution(id={self._id}, {state})"
