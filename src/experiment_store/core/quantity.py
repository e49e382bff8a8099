from __future__ import annotations

import math
import re
from enum import Enum

from .errors import QuantityError

_UNITS = {"": 1, "k": 1 << 10, "m": 1 << 20, "g": 1 << 30, "t": 1 << 40}


class ByteSuffix(Enum):
    MISSING = "missing"
    OPTIONAL = "optional"
    MANDATORY = "mandatory"


class Unit(Enum):
    AUTO = ""
    BASIC = "basic"
    KILO = "K"
    MEGA = "M"
    GIGA = "G"
    TERA = "T"


_UNIT_MULT = {
    Unit.BASIC: 1,
    Unit.KILO: 1 << 10,
    Unit.MEGA: 1 << 20,
    Unit.GIGA: 1 << 30,
    Unit.TERA: 1 << 40,
}


def _pattern(byte_suffix: ByteSuffix) -> re.Pattern[str]:
    suffix = ""
    if byte_suffix is ByteSuffix.OPTIONAL:
        suffix = "B?"
    elif byte_suffix is ByteSuffix.MANDATORY:
        suffix = "B"
    return re.compile(
        r"^\s*(?P<int>\d+)?(?P<frac>\.\d+)?\s*(?P<unit>[KMGT]?)(?P<bytes>" + suffix + r")\s*$",
        flags=re.IGNORECASE,
    )


_PATTERNS = {suffix: _pattern(suffix) for suffix in ByteSuffix}


class Quantity:
    """A computer quantity such as `4K` or `8 GB`, where 1K = 1024."""

    __slots__ = ("_magnitude", "byte_quantity")

    def __init__(self, value: int | str = 0, byte_suffix: bool = False) -> None:
        if isinstance(value, str):
            mode = ByteSuffix.OPTIONAL if byte_suffix else ByteSuffix.MISSING
            magnitude = self.parse(value, mode)
        else:
            magnitude = int(value)
        if magnitude < 0:
            raise QuantityError(f"Negative quantity: {magnitude}")
        self._magnitude = magnitude
        self.byte_quantity = bool(byte_suffix)

    @staticmethod
    def parse(text: str, byte_suffix: ByteSuffix = ByteSuffix.MISSING) -> int:
        """Return the magnitude of `text` in its basic unit (bytes or units)."""

        match = _PATTERNS[byte_suffix].match(text)
        if not match:
            raise QuantityError(f"Invalid quantity: {text}")
        if byte_suffix is ByteSuffix.MANDATORY and not match.group("bytes"):
            raise QuantityError(f"Invalid quantity: {text}. The byte (b) suffix is required.")

        mult = _UNITS[match.group("unit").lower()]
        int_part = match.group("int") or ""
        frac_part = match.group("frac") or ""
        if not int_part and not frac_part:
            raise QuantityError(f"Magnitude missing: {text}")
        if frac_part:
            value = float(int_part + frac_part) * mult
            fraction, whole = math.modf(value)
            if fraction != 0.0:
                raise QuantityError(
                    f"Cannot cast to an integer value: {text}. Absolute value: {value}"
                )
            return int(whole)
        return int(int_part) * mult

    @property
    def magnitude(self) -> int:
        return self._magnitude

    def to_string(self, unit: Unit = Unit.AUTO) -> str:
        if unit is Unit.AUTO:
            for candidate in (Unit.TERA, Unit.GIGA, Unit.MEGA, Unit.KILO):
                if self._magnitude >= _UNIT_MULT[candidate]:
                    return self.to_string(candidate)
            return self.to_string(Unit.BASIC)

        mult = _UNIT_MULT[unit]
        suffix = "" if unit is Unit.BASIC else unit.value
        if self.byte_quantity:
            suffix += "bytes" if mult == 1 else "B"

        if self._magnitude % mult == 0:
            text = str(self._magnitude // mult)
        else:
            text = f"{self._magnitude / mult:.2f}"
        if suffix:
            text += (" " if self.byte_quantity else "") + suffix
        return text

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"Quantity({self._magnitude}, byte_suffix={self.byte_quantity})"

    def __int__(self) -> int:
        return self._magnitude

    def __index__(self) -> int:
        return self._magnitude

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Quantity):
            return self._magnitude == other._magnitude
        if isinstance(other, int):
            return self._magnitude == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._magnitude)

    def _derive(self, value: int, expr: str) -> Quantity:
        if value < 0:
            raise QuantityError(f"Negative quantity: {expr}")
        return Quantity(value, self.byte_quantity)

    def __add__(self, other: int) -> Quantity:
        return self._derive(self._magnitude + int(other), f"{self._magnitude} + {int(other)}")

    def __sub__(self, other: int) -> Quantity:
        return self._derive(self._magnitude - int(other), f"{self._magnitude} - {int(other)}")

    def __mul__(self, other: int) -> Quantity:
        return self._derive(self._magnitude * int(other), f"{self._magnitude} * {int(other)}")

    def __truediv__(self, other: int) -> Quantity:
        divisor = int(other)
        if divisor > 0:
            value = self._magnitude // divisor
        else:
            value = -(self._magnitude // -divisor)
        return self._derive(value, f"{self._magnitude} / {divisor}")

    __floordiv__ = __truediv__
