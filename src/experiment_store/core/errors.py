from __future__ import annotations


class ExperimentStoreError(Exception):
    """Base class of every error raised by experiment_store."""


class ConnectionError(ExperimentStoreError):  # noqa: A001 - mirrors DB-API naming
    """The store cannot be opened or reached."""


class ClosedConnectionError(ConnectionError):
    """The Database was closed after the handle in use was created."""


class ClosedExecutionError(ExperimentStoreError):
    """An operation was attempted on a closed (or missing) execution."""


class InvalidIdentifierError(ExperimentStoreError, ValueError):
    """A table or column name is unsafe for DDL or reserved."""


class DuplicateFieldError(ExperimentStoreError, ValueError):
    """The same key was supplied twice to one builder."""


class DatabaseError(ExperimentStoreError):
    """SQLite reported a failure during a migration or an insert."""


class ColumnTypeError(DatabaseError):
    """A value does not fit the declared type of an existing column."""


class SettingsError(ExperimentStoreError, ValueError):
    pass


class QuantityError(ExperimentStoreError, ValueError):
    pass


class ProfilerError(ExperimentStoreError):
    pass
