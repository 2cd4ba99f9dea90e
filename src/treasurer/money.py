"""Money helpers using fixed micro-unit Decimal precision."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_FLOOR


_QUANT = Decimal("0.000001")
ZERO = Decimal("0")


def to_decimal(value: Decimal | float | int | str) -> Decimal:
    """Parse a value into a Decimal, raising ValueError on garbage."""
    try:
        dec = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount: {value!r}") from e
    if not dec.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return dec


def _quantize(value: Decimal | float | int | str, rounding: str) -> Decimal:
    dec = to_decimal(value)
    try:
        return dec.quantize(_QUANT, rounding=rounding)
    except InvalidOperation as e:
        # Beyond the context precision once scaled to micro-units.
        raise ValueError(f"Amount out of range: {value!r}") from e


def spend_amount(value: Decimal | float | int | str) -> Decimal:
    """Normalize a spend amount, rounding up (conservative)."""
    return _quantize(value, ROUND_CEILING)


def limit_amount(value: Decimal | float | int | str) -> Decimal:
    """Normalize a budget limit, rounding down (conservative)."""
    return _quantize(value, ROUND_FLOOR)


def format_usd(value: Decimal) -> str:
    """Format an amount as a dollar string."""
    return f"${value:.2f}"


def format_amount(value: Decimal) -> str:
    """Format an amount with two decimals, no currency sign."""
    return f"{value:.2f}"
