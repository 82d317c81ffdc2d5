"""Resource quantities as written in cluster manifests ("100m", "2Gi", "1e3")."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from fractions import Fraction

_BINARY_SUFFIXES = {
    "Ki": 2**10,
    "Mi": 2**20,
    "Gi": 2**30,
    "Ti": 2**40,
    "Pi": 2**50,
    "Ei": 2**60,
}

_DECIMAL_SUFFIXES = {
    "n": Fraction(1, 10**9),
    "u": Fraction(1, 10**6),
    "m": Fraction(1, 10**3),
    "": Fraction(1),
    "k": Fraction(10**3),
    "M": Fraction(10**6),
    "G": Fraction(10**9),
    "T": Fraction(10**12),
    "P": Fraction(10**15),
    "E": Fraction(10**18),
}

_QUANTITY_RE = re.compile(
    r"(?P<number>[+-]?(?:\d+(?:\.\d*)?|\.\d+))"
    r"(?P<suffix>Ki|Mi|Gi|Ti|Pi|Ei|[eE][+-]?\d+|[numkMGTPE])?"
)


@dataclass(frozen=True, order=True)
class Quantity:
    """An exact resource amount, stored as a rational number of base units."""

    amount: Fraction = Fraction(0)

    def value(self) -> int:
        """Return the amount in base units, rounded up."""
        return math.ceil(self.amount)

    def milli_value(self) -> int:
        """Return the amount in thousandths of a base unit, rounded up."""
        return math.ceil(self.amount * 1000)

    def is_zero(self) -> bool:
        return self.amount == 0

    def __add__(self, other: Quantity) -> Quantity:
        if not isinstance(other, Quantity):
            return NotImplemented
        return Quantity(self.amount + other.amount)

    def __sub__(self, other: Quantity) -> Quantity:
        if not isinstance(other, Quantity):
            return NotImplemented
        return Quantity(self.amount - other.amount)

    def __str__(self) -> str:
        if self.amount.denominator == 1:
            return str(self.amount.numerator)
        if (self.amount * 1000).denominator == 1:
            return f"{(self.amount * 1000).numerator}m"
        return str(float(self.amount))


ZERO = Quantity()


def parse_quantity(text: str) -> Quantity:
    """Parse a quantity string; raise ValueError if it is malformed."""
    if not isinstance(text, str):
        raise TypeError(f"quantity must be a string, got {type(text).__name__}")
    match = _QUANTITY_RE.fullmatch(text.strip())
    if match is None:
        raise ValueError(f"quantities must match the regular expression: {text!r}")
    number = Fraction(match.group("number"))
    suffix = match.group("suffix") or ""
    if suffix in _BINARY_SUFFIXES:
        multiplier = Fraction(_BINARY_SUFFIXES[suffix])
    elif suffix in _DECIMAL_SUFFIXES:
        multiplier = _DECIMAL_SUFFIXES[suffix]
    else:
        multiplier = Fraction(10) ** int(suffix[1:])
    return Quantity(number * multiplier)


def from_int(value: int) -> Quantity:
    """Build a quantity of whole base units."""
    return Quantity(Fraction(value))


def from_milli(value: int) -> Quantity:
    """Build a quantity from thousandths of a base unit."""
    return Quantity(Fraction(value, 1000))