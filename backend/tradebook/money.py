# Overview: Integer-cents and basis-point arithmetic shared by the calculator and postings.

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

# 10000 bps = 100%
BPS_SCALE = 10_000
MAX_AMOUNT_CENTS = 999_999_999_999


def round_cents(value: Decimal) -> int:
    """Round a Decimal amount of cents half-up to a whole cent."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def bps_to_rate(bps: int) -> Decimal:
    return Decimal(bps) / Decimal(BPS_SCALE)


def percent_of(amount_cents: int, bps: int) -> int:
    """bps share of amount_cents, rounded half-up."""
    return round_cents(Decimal(amount_cents) * bps_to_rate(bps))


def prorate(amount_cents: int, part: int, whole: int) -> int:
    """amount_cents * part / whole, rounded half-up. whole must be > 0."""
    return round_cents(Decimal(amount_cents) * Decimal(part) / Decimal(whole))


def format_cents(amount_cents: int) -> str:
    sign = "-" if amount_cents < 0 else ""
    amount_cents = abs(amount_cents)
    return f"{sign}{amount_cents // 100}.{amount_cents % 100:02d}"


def percent_to_bps(value) -> int:
    """
    Convert a human percentage (10, "2.5", 12.75) to basis points.

    Raises ValueError for values that are not numbers or that carry more
    precision than one basis point.
    """
    if isinstance(value, bool):
        raise ValueError("percentage must be a number")
    try:
        bps = Decimal(str(value)) * 100
    except ArithmeticError:
        raise ValueError("percentage must be a number")
    if not bps.is_finite() or bps != bps.to_integral_value():
        raise ValueError("percentage supports at most two decimal places")
    return int(bps)
