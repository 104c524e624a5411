# Overview: Pure tax and layered-discount arithmetic for invoice lines and document totals.

"""
Tax & Discount Calculator

No database access and no Flask context: everything here is a function of
its arguments, so confirmation, draft editing and return pricing all produce
the same numbers for the same inputs.

Conventions:
- Money is integer cents; rates and percentages are basis points.
- Discount-1 applies to quantity * unit price; discount-2 applies to what is
  left after discount-1.
- Tax applies to the amount left after both discounts.
- Every discount and every tax component is rounded half-up to a cent.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Callable, Iterable, Optional, Sequence

from ..errors import ValidationFailedError
from ..money import BPS_SCALE, MAX_AMOUNT_CENTS, bps_to_rate, percent_of, round_cents


@dataclass(frozen=True)
class TaxRule:
    """Immutable snapshot of a tax code as the calculator needs it."""
    code: str
    rate_bps: int
    is_compound: bool = False
    applies_to: str = "both"
    tax_type: str = "GST"

    def applies_on(self, side: str) -> bool:
        return self.applies_to == "both" or self.applies_to == side


@dataclass(frozen=True)
class Discount:
    """One discount tier: a percentage (bps) or a fixed amount (cents), never both."""
    percent_bps: Optional[int] = None
    amount_cents: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not self.percent_bps and not self.amount_cents

    def validate(self, tier: str) -> None:
        if self.percent_bps is not None and self.amount_cents is not None:
            raise ValidationFailedError(
                f"{tier} accepts a percentage or an amount, not both",
                details={"tier": tier},
            )
        if self.percent_bps is not None:
            if not _is_int(self.percent_bps) or not 0 <= self.percent_bps <= BPS_SCALE:
                raise ValidationFailedError(
                    f"{tier} percentage must be between 0 and 100",
                    details={"tier": tier, "percent_bps": self.percent_bps},
                )
        if self.amount_cents is not None:
            if not _is_int(self.amount_cents) or self.amount_cents < 0:
                raise ValidationFailedError(
                    f"{tier} amount must be a non-negative integer",
                    details={"tier": tier, "amount_cents": self.amount_cents},
                )

    def resolve(self, base_cents: int, tier: str) -> int:
        if self.amount_cents is not None:
            if self.amount_cents > base_cents:
                raise ValidationFailedError(
                    f"{tier} amount exceeds the amount it applies to",
                    details={"tier": tier, "amount_cents": self.amount_cents, "base_cents": base_cents},
                )
            return self.amount_cents
        if self.percent_bps:
            return percent_of(base_cents, self.percent_bps)
        return 0


NO_DISCOUNT = Discount()


@dataclass(frozen=True)
class LineInput:
    quantity: int
    unit_price_cents: int
    discount1: Discount = NO_DISCOUNT
    discount2: Discount = NO_DISCOUNT
    tax_rules: tuple[TaxRule, ...] = ()
    tax_inclusive: bool = False


@dataclass(frozen=True)
class TaxComponent:
    code: str
    rate_bps: int
    is_compound: bool
    base_cents: int
    amount_cents: int


@dataclass(frozen=True)
class LineBreakdown:
    subtotal_cents: int
    discount1_cents: int
    discount2_cents: int
    taxable_cents: int
    tax_cents: int
    line_total_cents: int
    taxes: tuple[TaxComponent, ...] = ()

    @property
    def total_discount_cents(self) -> int:
        return self.discount1_cents + self.discount2_cents

    def negated(self) -> "LineBreakdown":
        """Mirror image used for return documents."""
        return LineBreakdown(
            subtotal_cents=-self.subtotal_cents,
            discount1_cents=-self.discount1_cents,
            discount2_cents=-self.discount2_cents,
            taxable_cents=-self.taxable_cents,
            tax_cents=-self.tax_cents,
            line_total_cents=-self.line_total_cents,
            taxes=tuple(
                replace(t, base_cents=-t.base_cents, amount_cents=-t.amount_cents)
                for t in self.taxes
            ),
        )


@dataclass(frozen=True)
class DocumentTotals:
    subtotal_cents: int = 0
    discount1_cents: int = 0
    discount2_cents: int = 0
    total_tax_cents: int = 0
    tax_buckets: tuple[dict, ...] = field(default_factory=tuple)

    @property
    def total_discount_cents(self) -> int:
        return self.discount1_cents + self.discount2_cents

    @property
    def grand_total_cents(self) -> int:
        return self.subtotal_cents - self.total_discount_cents + self.total_tax_cents


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_line_input(line: LineInput) -> None:
    if not _is_int(line.quantity):
        raise ValidationFailedError("quantity must be an integer", details={"quantity": line.quantity})
    if line.quantity <= 0:
        raise ValidationFailedError("quantity must be > 0", details={"quantity": line.quantity})
    if not _is_int(line.unit_price_cents):
        raise ValidationFailedError(
            "unit_price_cents must be an integer",
            details={"unit_price_cents": line.unit_price_cents},
        )
    if line.unit_price_cents < 0:
        raise ValidationFailedError(
            "unit_price_cents must be >= 0",
            details={"unit_price_cents": line.unit_price_cents},
        )
    if line.quantity * line.unit_price_cents > MAX_AMOUNT_CENTS:
        raise ValidationFailedError(
            "Line amount exceeds the maximum supported amount",
            details={"quantity": line.quantity, "unit_price_cents": line.unit_price_cents},
        )
    line.discount1.validate("discount1")
    line.discount2.validate("discount2")


def _inclusive_tax_factor(rules: Sequence[TaxRule]) -> Decimal:
    """Total tax per 1 unit of tax-exclusive amount, compounding applied."""
    accumulated = Decimal(0)
    for rule in rules:
        base = Decimal(1) + accumulated if rule.is_compound else Decimal(1)
        accumulated += base * bps_to_rate(rule.rate_bps)
    return accumulated


def _exclusive_taxes(net_cents: int, rules: Sequence[TaxRule]) -> tuple[TaxComponent, ...]:
    components = []
    accumulated = 0
    for rule in rules:
        base = net_cents + accumulated if rule.is_compound else net_cents
        amount = percent_of(base, rule.rate_bps)
        components.append(TaxComponent(rule.code, rule.rate_bps, rule.is_compound, base, amount))
        accumulated += amount
    return tuple(components)


def _inclusive_taxes(gross_cents: int, rules: Sequence[TaxRule]) -> tuple[TaxComponent, ...]:
    net = Decimal(gross_cents) / (Decimal(1) + _inclusive_tax_factor(rules))
    components = []
    accumulated = Decimal(0)
    for rule in rules:
        base = net + accumulated if rule.is_compound else net
        exact = base * bps_to_rate(rule.rate_bps)
        components.append(
            TaxComponent(rule.code, rule.rate_bps, rule.is_compound, round_cents(base), round_cents(exact))
        )
        accumulated += exact
    return tuple(components)


def compute_line(line: LineInput) -> LineBreakdown:
    """
    Deterministic breakdown of a single line.

    Exclusive pricing adds tax on top of the discounted amount. Inclusive
    pricing extracts tax from it (amount * rate / (1 + rate) for one code);
    the reported subtotal is then the tax-exclusive share so that
    line_total == subtotal - discounts + tax holds in both modes.
    """
    validate_line_input(line)

    gross = line.quantity * line.unit_price_cents
    d1 = line.discount1.resolve(gross, "discount1")
    after_d1 = gross - d1
    d2 = line.discount2.resolve(after_d1, "discount2")
    after_d2 = after_d1 - d2

    if line.tax_inclusive and line.tax_rules:
        taxes = _inclusive_taxes(after_d2, line.tax_rules)
        tax = sum(t.amount_cents for t in taxes)
        return LineBreakdown(
            subtotal_cents=gross - tax,
            discount1_cents=d1,
            discount2_cents=d2,
            taxable_cents=after_d2 - tax,
            tax_cents=tax,
            line_total_cents=after_d2,
            taxes=taxes,
        )

    taxes = _exclusive_taxes(after_d2, line.tax_rules)
    tax = sum(t.amount_cents for t in taxes)
    return LineBreakdown(
        subtotal_cents=gross,
        discount1_cents=d1,
        discount2_cents=d2,
        taxable_cents=after_d2,
        tax_cents=tax,
        line_total_cents=after_d2 + tax,
        taxes=taxes,
    )


def compute_totals(breakdowns: Iterable[LineBreakdown]) -> DocumentTotals:
    """Aggregate line breakdowns; an empty iterable gives all zeros."""
    subtotal = d1 = d2 = tax = 0
    buckets: dict[tuple[str, int], dict] = {}
    for b in breakdowns:
        subtotal += b.subtotal_cents
        d1 += b.discount1_cents
        d2 += b.discount2_cents
        tax += b.tax_cents
        for t in b.taxes:
            bucket = buckets.setdefault(
                (t.code, t.rate_bps),
                {"tax_code": t.code, "rate_bps": t.rate_bps, "base_cents": 0, "tax_cents": 0},
            )
            bucket["base_cents"] += t.base_cents
            bucket["tax_cents"] += t.amount_cents
    return DocumentTotals(
        subtotal_cents=subtotal,
        discount1_cents=d1,
        discount2_cents=d2,
        total_tax_cents=tax,
        tax_buckets=tuple(buckets[k] for k in sorted(buckets)),
    )


def resolve_tax_rules(
    codes: Sequence[str],
    lookup: Callable[[str], Optional[TaxRule]],
    *,
    side: str,
) -> tuple[TaxRule, ...]:
    """
    Turn an ordered list of tax codes into rules, preserving order.

    side is "sale" or "purchase"; a code restricted to the other side is
    rejected, as are unknown codes and repeats.
    """
    rules = []
    seen = set()
    for code in codes:
        if code in seen:
            raise ValidationFailedError(f"Tax code {code} listed twice", details={"tax_code": code})
        seen.add(code)
        rule = lookup(code)
        if rule is None:
            raise ValidationFailedError(f"Unknown tax code: {code}", details={"tax_code": code})
        if not rule.applies_on(side):
            raise ValidationFailedError(
                f"Tax code {code} does not apply to {side} documents",
                details={"tax_code": code, "applies_to": rule.applies_to},
            )
        rules.append(rule)
    return tuple(rules)
