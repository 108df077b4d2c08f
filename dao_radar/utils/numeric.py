"""
Arbitrary-precision token amounts.

On-chain deposit amounts and vote weights are unsigned 64-bit integers, which
can exceed the signed 64-bit range that downstream consumers (JSON clients,
spreadsheets, charting code) treat as a safe integer. ``TokenAmount`` keeps the
exact value and exposes exactly two conversions; ``safe_to_number`` picks the
exact one when it fits and the lossy decimal-string parse when it doesn't.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

Number = Union[int, float]


@dataclass(frozen=True, order=True)
class TokenAmount:
    """Exact integer quantity read from an account."""

    raw: int

    def __post_init__(self):
        if not isinstance(self.raw, int) or isinstance(self.raw, bool):
            raise TypeError(f"TokenAmount requires an int, got {type(self.raw).__name__}")

    @classmethod
    def zero(cls) -> "TokenAmount":
        return cls(0)

    @classmethod
    def coerce(cls, value: Any) -> "TokenAmount":
        """Build from an int, a decimal string or another TokenAmount."""
        if isinstance(value, TokenAmount):
            return value
        if isinstance(value, str):
            return cls(int(value.strip()))
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        raise TypeError(f"Cannot build TokenAmount from {type(value).__name__}")

    def try_to_int64(self) -> int:
        """Return the value as a signed 64-bit integer or raise OverflowError."""
        if self.raw < INT64_MIN or self.raw > INT64_MAX:
            raise OverflowError(f"{self.raw} does not fit in a signed 64-bit integer")
        return self.raw

    def to_decimal_string(self) -> str:
        return str(self.raw)

    def __add__(self, other: "TokenAmount") -> "TokenAmount":
        if not isinstance(other, TokenAmount):
            return NotImplemented
        return TokenAmount(self.raw + other.raw)

    def __str__(self) -> str:
        return self.to_decimal_string()


def safe_to_number(amount: TokenAmount) -> Number:
    """
    Convert a TokenAmount to a plain number without ever raising.

    Tries the exact int64 conversion first; on overflow, parses the decimal
    string representation as a float and accepts the precision loss.
    """
    try:
        return amount.try_to_int64()
    except OverflowError:
        return float(amount.to_decimal_string())
