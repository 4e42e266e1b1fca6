from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import InvalidValue

# Maximum amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999
MAX_SKU_LENGTH = 64
SKU_PREFIX_LENGTH = 3

_CENT = Decimal("0.01")


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for request input.

    Rejects bools, floats, decimals, scientific notation and blank strings.
    """
    if isinstance(value, bool):
        raise InvalidValue(f"{field} must be an integer", details={"field": field})
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise InvalidValue(f"{field} must be an integer", details={"field": field})
        if "e" in stripped.lower():
            raise InvalidValue(
                f"{field} must be a plain integer (scientific notation not allowed)",
                details={"field": field},
            )
        if "." in stripped:
            raise InvalidValue(f"{field} must be an integer (no decimals)", details={"field": field})
        try:
            return int(stripped)
        except ValueError:
            raise InvalidValue(f"{field} must be an integer", details={"field": field})
    if isinstance(value, float):
        raise InvalidValue(f"{field} must be an integer, not a decimal", details={"field": field})
    raise InvalidValue(f"{field} must be an integer", details={"field": field})


@dataclass(frozen=True, order=True)
class Money:
    """An amount in integer cents. May be negative (e.g. a loss-making line)."""

    cents: int

    def __post_init__(self):
        if isinstance(self.cents, bool) or not isinstance(self.cents, int):
            raise InvalidValue("money must be an integer number of cents")

    @classmethod
    def zero(cls) -> "Money":
        return cls(0)

    @classmethod
    def from_cents(cls, value: Any, field: str = "amount") -> "Money":
        cents = coerce_int(value, field)
        if abs(cents) > MAX_AMOUNT_CENTS:
            raise InvalidValue(f"{field} exceeds maximum", details={"field": field, "max_cents": MAX_AMOUNT_CENTS})
        return cls(cents)

    @classmethod
    def from_decimal(cls, value: Any, field: str = "amount") -> "Money":
        """Parse a major-unit amount ("150", 150, "149.995") rounding half-up to the cent."""
        if isinstance(value, bool):
            raise InvalidValue(f"{field} must be a number", details={"field": field})
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidValue(f"{field} must be a number", details={"field": field})
        if not amount.is_finite():
            raise InvalidValue(f"{field} must be a number", details={"field": field})
        cents = int((amount.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())
        return cls.from_cents(cents, field)

    def apply_rate_bps(self, rate_bps: int) -> "Money":
        """Rate in basis points (500 = 5%), rounded half-up to the cent."""
        scaled = Decimal(self.cents) * Decimal(rate_bps) / Decimal(10_000)
        return Money(int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP)))

    def __add__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.cents + other.cents)

    def __sub__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.cents - other.cents)

    def __mul__(self, factor: int) -> "Money":
        if isinstance(factor, bool) or not isinstance(factor, int):
            return NotImplemented
        return Money(self.cents * factor)

    __rmul__ = __mul__

    def __neg__(self) -> "Money":
        return Money(-self.cents)

    @property
    def is_negative(self) -> bool:
        return self.cents < 0

    def to_decimal(self) -> Decimal:
        return (Decimal(self.cents) / 100).quantize(_CENT)

    def __str__(self) -> str:
        return f"{self.to_decimal():.2f}"


@dataclass(frozen=True, order=True)
class Quantity:
    """A strictly positive number of units moved by a sale or transfer."""

    value: int

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise InvalidValue("quantity must be an integer")
        if self.value <= 0:
            raise InvalidValue("quantity must be positive", details={"quantity": self.value})

    @classmethod
    def parse(cls, value: Any, field: str = "quantity") -> "Quantity":
        n = coerce_int(value, field)
        if n <= 0:
            raise InvalidValue(f"{field} must be positive", details={"field": field, "value": n})
        return cls(n)

    def __int__(self) -> int:
        return self.value

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class Sku:
    """
    Stock-keeping unit code, unique within a branch.

    The first 3 characters are the category prefix; trailing digits after the
    prefix form the per-branch sequence ("101005" -> prefix "101", sequence 5).
    """

    code: str

    def __post_init__(self):
        if not isinstance(self.code, str):
            raise InvalidValue("sku must be a string")
        code = self.code.strip()
        if len(code) < SKU_PREFIX_LENGTH:
            raise InvalidValue(
                f"sku must be at least {SKU_PREFIX_LENGTH} characters", details={"sku": self.code}
            )
        if len(code) > MAX_SKU_LENGTH:
            raise InvalidValue("sku is too long", details={"sku": self.code})
        if any(ch.isspace() for ch in code):
            raise InvalidValue("sku must not contain whitespace", details={"sku": self.code})
        object.__setattr__(self, "code", code)

    @property
    def prefix(self) -> str:
        return self.code[:SKU_PREFIX_LENGTH]

    @property
    def sequence(self) -> int | None:
        suffix = self.code[SKU_PREFIX_LENGTH:]
        if suffix and suffix.isascii() and suffix.isdigit():
            return int(suffix)
        return None

    @classmethod
    def compose(cls, prefix: str, sequence: int) -> "Sku":
        return cls(f"{prefix}{sequence:03d}")

    def __str__(self) -> str:
        return self.code


def optional_str(value: Any) -> str | None:
    """Strip request text; blank or missing becomes None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None
