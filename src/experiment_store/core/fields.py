from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Iterator

import numpy as np

from .errors import DuplicateFieldError, InvalidIdentifierError
from .quantity import Quantity
from .utils import check_identifier

_INT64 = np.iinfo(np.int64)


class FieldType(Enum):
    TEXT = "TEXT"
    INTEGER = "INTEGER"
    REAL = "REAL"

    @property
    def sqlite_type(self) -> str:
        return self.value


def infer_type(value: Any) -> FieldType:
    # bool must be tested before int, np.bool_ is not an np.integer
    if isinstance(value, (bool, np.bool_)):
        return FieldType.INTEGER
    if isinstance(value, (int, np.integer, Quantity)):
        return FieldType.INTEGER
    if isinstance(value, (float, np.floating)):
        return FieldType.REAL
    if isinstance(value, str):
        return FieldType.TEXT
    raise TypeError(f"Unsupported value type {type(value).__name__}: {value!r}")


def _to_int64(value: Any) -> int:
    result = int(value)
    if result < _INT64.min or result > _INT64.max:
        raise ValueError(f"Integer out of the 64-bit range: {result}")
    return result


@dataclass(frozen=True)
class Field:
    """A named, typed value: one cell of a row."""

    key: str
    type: FieldType
    value: str | int | float

    @classmethod
    def of(cls, key: str, value: Any, field_type: FieldType | None = None) -> Field:
        check_identifier(key)
        if field_type is None:
            field_type = infer_type(value)
        elif isinstance(value, str) and field_type is not FieldType.TEXT:
            raise TypeError(f"Cannot store text {value!r} as {field_type.value}")
        if field_type is FieldType.INTEGER:
            if isinstance(value, (float, np.floating)) and not float(value).is_integer():
                raise ValueError(f"Cannot store {value!r} as INTEGER without truncation")
            return cls(key, field_type, _to_int64(value))
        if field_type is FieldType.REAL:
            return cls(key, field_type, float(value))
        return cls(key, field_type, str(value))

    def __str__(self) -> str:
        if self.type is FieldType.TEXT:
            return f"{self.key}={self.value!r}"
        return f"{self.key}={self.value}"


def as_fields(items: Iterable[Any]) -> Iterator[Field]:
    for item in items:
        if isinstance(item, Field):
            yield item
        else:
            key, value = item
            yield Field.of(key, value)


class FieldAccumulator:
    """Collects uniquely-keyed fields; base of the execution and outcome builders.

    Keys compare case-insensitively since SQLite column names do.
    """

    reserved_keys: frozenset[str] = frozenset()

    def __init__(self) -> None:
        self._fields: dict[str, Field] = {}

    def with_field(self, key: str, value: Any, field_type: FieldType | None = None):
        return self.add_field(Field.of(key, value, field_type))

    def __call__(self, key: str, value: Any, field_type: FieldType | None = None):
        return self.with_field(key, value, field_type)

    def with_fields(self, items: Iterable[Any]):
        for field in as_fields(items):
            self.add_field(field)
        return self

    def add_field(self, field: Field):
        self._check_pending()
        normalized = field.key.lower()
        if normalized in self.reserved_keys:
            raise InvalidIdentifierError(f"Reserved column name: {field.key!r}")
        if normalized in self._fields:
            raise DuplicateFieldError(f"Field {field.key!r} already set")
        self._fields[normalized] = field
        return self

    def _check_pending(self) -> None:
        pass

    @property
    def fields(self) -> tuple[Field, ...]:
        return tuple(self._fields.values())

    def __len__(self) -> int:
        return len(self._fields)
