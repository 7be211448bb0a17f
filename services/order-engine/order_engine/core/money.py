"""
Order Engine — Monetary helpers

Every monetary value is a Decimal with exactly two fractional digits.
Floats are refused at the boundary so binary rounding never reaches a total.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal(100)

# NUMERIC(12,2): ten integer digits
MONEY_LIMIT = Decimal("1e10")


def quantize(value: Decimal) -> Decimal:
    """Round to two places, half away from zero."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_money(value: str | int | Decimal) -> Decimal:
    """
    Parse a monetary input into a two-place Decimal.

    Raises ValueError for floats, blanks, NaN/Infinity, magnitudes the
    NUMERIC(12,2) columns cannot hold and anything that is not a decimal
    literal; callers turn that into their own typed error.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"refusing non-decimal monetary value {value!r}")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError("empty monetary value")
    try:
        d = Decimal(value)
        if not d.is_finite():
            raise ValueError(f"invalid monetary value {value!r}")
        amount = quantize(d) if abs(d) < MONEY_LIMIT else d
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"invalid monetary value {value!r}") from exc
    if abs(amount) >= MONEY_LIMIT:
        raise ValueError(f"monetary value {value!r} out of range")
    return amount


def to_money(value: Decimal | int | None) -> Decimal:
    """Normalise a value read back from the store (None means zero)."""
    if value is None:
        return ZERO
    return quantize(Decimal(value))


def clamp_zero(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO
