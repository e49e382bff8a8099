from __future__ import annotations

import warnings
from typing import TYPE_CHECKING

from .errors import ExperimentStoreError
from .fields import FieldAccumulator
from .utils import check_table_name

if TYPE_CHECKING:
    from .execution import Execution


class OutcomeBuilder(FieldAccumulator):
    """One row of results for the table `table_name`.

    `save()` runs at most once: it creates or widens the table as needed and
    inserts the row tagged with the execution id. Used as a context manager,
    the row is saved when the block exits, also when the block raised.
    """

    reserved_keys = frozenset({"row_id", "execution_id"})

    def __init__(self, execution: Execution, table_name: str) -> None:
        super().__init__()
        self._execution = execution
        self._table_name = check_table_name(table_name)
        self._row_id: int | None = None

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def execution(self) -> Execution:
        return self._execution

    @property
    def saved(self) -> bool:
        return self._row_id is not None

    @property
    def row_id(self) -> int | None:
        return self._row_id

    def _check_pending(self) -> None:
        if self._row_id is not None:
            raise ExperimentStoreError(f"Outcome {self._table_name}#{self._row_id} already saved")

    def save(self) -> int:
        if self._row_id is not None:
            return self._row_id
        execution = self._execution
        database = execution._require_database()
        with database.lock:
            if self._row_id is None:
                # the execution may have been closed while waiting for the lock
                execution._require_database()
                self._row_id = database.insert_outcome(
                    execution._generation, execution.id, self._table_name, self.fields
                )
        return self._row_id

    def dump(self) -> str:
        return f"{self._table_name}({', '.join(str(item) for item in self.fields)})"

    def __str__(self) -> str:
        return self.dump()

    def __enter__(self) -> OutcomeBuilder:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.save()

    def __del__(self) -> None:
        if getattr(self, "_row_id", 0) is None:
            warnings.warn(
                f"Outcome for {self._table_name!r} discarded without save()",
                ResourceWarning,
                stacklevel=2,
            )
