# Overview: Return documents; returnable quantities and exact partial/full reversal of a confirmation.

"""
Return/Cancellation Reversal Engine

WHY: A return must undo exactly what the original confirmation did for the
returned quantities: stock moves back, and every ledger posting is mirrored
with debit and credit swapped. Amounts on a return document are negative.

DESIGN:
- Returnable quantity per original line = original quantity minus quantity
  on non-cancelled return lines referencing it.
- The original invoice row is locked for the whole unit, so two concurrent
  returns of the same invoice serialize and the second one validates
  against the quantities the first one committed.
- Partial returns are priced by recomputing the line for the returned
  quantity with the original price, discounts and tax rates. The return
  that consumes a line's last remaining units takes the exact residual of
  every amount, so a full return always nets the original to zero.
- A return document is created already confirmed. Cancelling it (through
  the lifecycle manager) reverses its effects and frees its quantities.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Sequence

from flask import current_app
from sqlalchemy import func

from ..errors import (
    InvalidStateError,
    NotFoundError,
    ReturnQuantityExceededError,
    ValidationFailedError,
)
from ..extensions import db
from ..models import Invoice, InvoiceLine
from ..models.invoices import RETURN_KINDS, STATUS_CANCELLED, STATUS_CONFIRMED
from ..money import prorate
from tradebook.time_utils import utcnow
from .account_service import PostingAccounts
from .accounting_ledger import AccountingLedger
from .calculator import Discount, LineBreakdown, LineInput, TaxComponent, TaxRule, compute_line
from .concurrency import atomic, lock_for_update
from .invoice_service import apply_breakdown, apply_totals, stock_requests_for
from .numbering_service import NumberingService
from .options import ReturnLineOptions, ReturnOptions
from .party_service import PARTY_CUSTOMER, PARTY_SUPPLIER, PartyService
from .posting_rules import (
    SIDE_BY_KIND,
    STOCK_DIRECTION_BY_KIND,
    PostingAmounts,
    build_plan,
    income_tax_for,
    swap_plan,
)
from .stock_ledger import StockLedger


@dataclass(frozen=True)
class ReturnableLine:
    line_id: int
    line_number: int
    item_id: int
    warehouse_id: int
    original_quantity: int
    returned_quantity: int

    @property
    def remaining_quantity(self) -> int:
        return self.original_quantity - self.returned_quantity

    def to_dict(self) -> dict:
        return {
            "line_id": self.line_id,
            "line_number": self.line_number,
            "item_id": self.item_id,
            "warehouse_id": self.warehouse_id,
            "original_quantity": self.original_quantity,
            "returned_quantity": self.returned_quantity,
            "remaining_quantity": self.remaining_quantity,
        }


class ReturnEngine:
    def __init__(
        self,
        *,
        stock: StockLedger,
        ledger: AccountingLedger,
        parties: PartyService,
        numbering: NumberingService,
        accounts: PostingAccounts,
        income_tax_rate_bps: int,
    ):
        self.stock = stock
        self.ledger = ledger
        self.parties = parties
        self.numbering = numbering
        self.accounts = accounts
        self.income_tax_rate_bps = income_tax_rate_bps

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_returnable(self, original_id: int) -> list[ReturnableLine]:
        original = db.session.get(Invoice, original_id)
        if original is None:
            raise NotFoundError(f"Invoice {original_id} not found", details={"invoice_id": original_id})
        return self._returnable(original)

    def returns_for(self, original_id: int, *, include_cancelled: bool = False) -> list[Invoice]:
        q = db.session.query(Invoice).filter(Invoice.original_invoice_id == original_id)
        if not include_cancelled:
            q = q.filter(Invoice.status != STATUS_CANCELLED)
        return q.order_by(Invoice.id.asc()).all()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_return(self, original_id: int, options: ReturnOptions) -> Invoice:
        if not options.lines:
            raise ValidationFailedError("At least one return line is required")
        for requested in options.lines:
            if isinstance(requested.quantity, bool) or not isinstance(requested.quantity, int) or requested.quantity <= 0:
                raise ValidationFailedError(
                    "Return quantity must be a positive integer",
                    details={"quantity": requested.quantity, "item_id": requested.item_id},
                )

        def _op() -> Invoice:
            original = lock_for_update(db.session.query(Invoice).filter_by(id=original_id)).first()
            if original is None:
                raise NotFoundError(f"Invoice {original_id} not found", details={"invoice_id": original_id})
            if original.is_return:
                raise InvalidStateError(
                    "A return document cannot itself be returned",
                    details={"invoice_id": original.id, "kind": original.kind},
                )
            if original.status != STATUS_CONFIRMED:
                raise InvalidStateError(
                    f"Only confirmed invoices can be returned (invoice is {original.status})",
                    details={"invoice_id": original.id, "status": original.status},
                )

            returnable = {r.line_id: r for r in self._returnable(original)}
            allocation = self._allocate(original, returnable, options.lines)

            return_kind = RETURN_KINDS[original.kind]
            side = SIDE_BY_KIND[return_kind]
            party_kind = PARTY_CUSTOMER if side == "sale" else PARTY_SUPPLIER
            party = self.parties.get_account(party_kind, original.party_id)

            return_date = options.return_date or utcnow().date()
            if options.document_number:
                number = self.numbering.validate(return_kind, options.document_number)
            else:
                number = self.numbering.issue(return_kind, return_date.year)

            now = utcnow()
            doc = Invoice(
                document_number=number,
                kind=return_kind,
                original_invoice_id=original.id,
                customer_id=original.customer_id,
                supplier_id=original.supplier_id,
                warehouse_id=original.warehouse_id,
                adjustment_account_id=original.adjustment_account_id,
                status=STATUS_CONFIRMED,
                apply_income_tax=original.apply_income_tax,
                invoice_date=return_date,
                due_date=return_date,
                return_reason=options.reason,
                created_by_user_id=options.actor_user_id,
                confirmed_by_user_id=options.actor_user_id,
                confirmed_at=now,
            )

            lines_by_id = {line.id: line for line in original.lines}
            breakdowns = []
            for number_on_doc, (line_id, quantity) in enumerate(allocation.items(), start=1):
                orig_line = lines_by_id[line_id]
                remaining = returnable[line_id].remaining_quantity
                forward = self._forward_breakdown(orig_line, quantity, final=(quantity == remaining))
                breakdown = forward.negated()
                line = InvoiceLine(
                    line_number=number_on_doc,
                    item_id=orig_line.item_id,
                    warehouse_id=orig_line.warehouse_id or original.warehouse_id,
                    batch_number=orig_line.batch_number,
                    original_line_id=orig_line.id,
                    quantity=quantity,
                    unit_price_cents=orig_line.unit_price_cents,
                    discount1_bps=orig_line.discount1_bps,
                    discount1_amount_cents=orig_line.discount1_amount_cents,
                    discount2_bps=orig_line.discount2_bps,
                    discount2_amount_cents=orig_line.discount2_amount_cents,
                    tax_codes=orig_line.tax_codes,
                    tax_inclusive=orig_line.tax_inclusive,
                )
                apply_breakdown(line, breakdown)
                doc.lines.append(line)
                breakdowns.append(breakdown)
            apply_totals(doc, breakdowns)

            fully_returned = all(
                allocation.get(line_id, 0) == r.remaining_quantity for line_id, r in returnable.items()
            )
            doc.income_tax_cents = -self._return_income_tax(original, doc, fully_returned)

            db.session.add(doc)
            db.session.flush()

            self.stock.apply(
                stock_requests_for(doc),
                STOCK_DIRECTION_BY_KIND[return_kind],
                movement_type=return_kind,
                reference_kind=return_kind,
                reference_id=doc.id,
                actor_user_id=options.actor_user_id,
                note=f"Return {doc.document_number} of {original.document_number}",
            )

            plan = build_plan(
                ledger=self.ledger,
                accounts=self.accounts,
                side=side,
                party_account_id=party.account_id,
                amounts=PostingAmounts.from_invoice(doc),
                adjustment_account_id=doc.adjustment_account_id,
                document_number=f"{doc.document_number} (return of {original.document_number})",
            )
            self.ledger.post_plan(
                swap_plan(plan),
                reference_kind=return_kind,
                reference_id=doc.id,
                actor_user_id=options.actor_user_id,
            )
            db.session.flush()
            return doc

        doc = atomic(_op)
        current_app.logger.info(
            "Return %s created against invoice %s by user %s",
            doc.document_number,
            original_id,
            options.actor_user_id,
        )
        return doc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _returned_quantities(self, original_id: int) -> dict[int, int]:
        rows = (
            db.session.query(InvoiceLine.original_line_id, func.coalesce(func.sum(InvoiceLine.quantity), 0))
            .join(Invoice, Invoice.id == InvoiceLine.invoice_id)
            .filter(
                Invoice.original_invoice_id == original_id,
                Invoice.status != STATUS_CANCELLED,
                InvoiceLine.original_line_id.isnot(None),
            )
            .group_by(InvoiceLine.original_line_id)
            .all()
        )
        return {line_id: int(qty) for line_id, qty in rows}

    def _returnable(self, original: Invoice) -> list[ReturnableLine]:
        returned = self._returned_quantities(original.id)
        return [
            ReturnableLine(
                line_id=line.id,
                line_number=line.line_number,
                item_id=line.item_id,
                warehouse_id=line.warehouse_id or original.warehouse_id,
                original_quantity=line.quantity,
                returned_quantity=returned.get(line.id, 0),
            )
            for line in original.lines
        ]

    def _allocate(
        self,
        original: Invoice,
        returnable: dict[int, ReturnableLine],
        requested: Sequence[ReturnLineOptions],
    ) -> dict[int, int]:
        """
        Map requested quantities onto original line ids.

        Requests by item id fill that item's lines in line order. Every
        shortfall is collected so the caller sees all offending items at once.
        """
        allocation: dict[int, int] = {}
        exceeded = []

        def _left(line_id: int) -> int:
            return returnable[line_id].remaining_quantity - allocation.get(line_id, 0)

        for req in requested:
            if req.original_line_id is not None:
                r = returnable.get(req.original_line_id)
                if r is None:
                    raise ValidationFailedError(
                        f"Line {req.original_line_id} is not part of invoice {original.document_number}",
                        details={"original_line_id": req.original_line_id},
                    )
                if req.item_id is not None and req.item_id != r.item_id:
                    raise ValidationFailedError(
                        f"Line {r.line_id} is for item {r.item_id}, not item {req.item_id}",
                        details={"original_line_id": r.line_id, "item_id": req.item_id},
                    )
                available = _left(r.line_id)
                if req.quantity > available:
                    exceeded.append(
                        {
                            "item_id": r.item_id,
                            "line_id": r.line_id,
                            "requested": req.quantity,
                            "available": max(available, 0),
                        }
                    )
                    continue
                allocation[r.line_id] = allocation.get(r.line_id, 0) + req.quantity
                continue

            candidates = [r for r in returnable.values() if r.item_id == req.item_id]
            if not candidates:
                raise ValidationFailedError(
                    f"Item {req.item_id} is not part of invoice {original.document_number}",
                    details={"item_id": req.item_id},
                )
            candidates.sort(key=lambda r: r.line_number)
            available = sum(max(_left(r.line_id), 0) for r in candidates)
            if req.quantity > available:
                exceeded.append(
                    {
                        "item_id": req.item_id,
                        "line_id": None,
                        "requested": req.quantity,
                        "available": available,
                    }
                )
                continue
            still = req.quantity
            for r in candidates:
                take = min(still, max(_left(r.line_id), 0))
                if take:
                    allocation[r.line_id] = allocation.get(r.line_id, 0) + take
                    still -= take
                if not still:
                    break

        if exceeded:
            raise ReturnQuantityExceededError(exceeded)
        return allocation

    def _prior_return_lines(self, original_line_id: int) -> list[InvoiceLine]:
        return (
            db.session.query(InvoiceLine)
            .join(Invoice, Invoice.id == InvoiceLine.invoice_id)
            .filter(InvoiceLine.original_line_id == original_line_id, Invoice.status != STATUS_CANCELLED)
            .all()
        )

    def _forward_breakdown(self, orig: InvoiceLine, quantity: int, *, final: bool) -> LineBreakdown:
        """
        Positive breakdown for `quantity` more units of an original line.

        Partial returns are priced cumulatively: the line is recomputed for
        every unit returned so far plus these, minus what live returns have
        already reversed. Live returns of a line therefore always add up to
        the price of the total returned quantity, and no component may
        exceed what is left of the original.

        final=True: these are the last remaining units, so take the residual
        of the original amounts after all live prior returns.
        """
        prior = self._prior_return_lines(orig.id)
        # return lines store negative amounts
        residual = _stored_breakdown(orig)
        for line in prior:
            residual = _add(residual, _stored_breakdown(line))
        if final:
            return residual

        already = sum(line.quantity for line in prior)
        cumulative = self._priced(orig, already + quantity)
        for line in prior:
            cumulative = _add(cumulative, _stored_breakdown(line))
        return _clamped(cumulative, residual)

    def _priced(self, orig: InvoiceLine, quantity: int) -> LineBreakdown:
        """Forward computation of `quantity` units at the original line's price, discounts and tax rates."""
        def _scaled(amount: int | None) -> int | None:
            return prorate(amount, quantity, orig.quantity) if amount is not None else None

        rules = tuple(
            TaxRule(code=t.tax_code, rate_bps=t.rate_bps, is_compound=t.is_compound) for t in orig.taxes
        )
        return compute_line(
            LineInput(
                quantity=quantity,
                unit_price_cents=orig.unit_price_cents,
                discount1=Discount(percent_bps=orig.discount1_bps, amount_cents=_scaled(orig.discount1_amount_cents)),
                discount2=Discount(percent_bps=orig.discount2_bps, amount_cents=_scaled(orig.discount2_amount_cents)),
                tax_rules=rules,
                tax_inclusive=orig.tax_inclusive,
            )
        )

    def _return_income_tax(self, original: Invoice, doc: Invoice, fully_returned: bool) -> int:
        """Positive income tax to reverse for this return."""
        if not original.income_tax_cents:
            return 0
        if fully_returned:
            already = sum(-r.income_tax_cents for r in self.returns_for(original.id))
            return original.income_tax_cents - already
        return min(
            income_tax_for(doc.grand_total_cents, self.income_tax_rate_bps),
            original.income_tax_cents - sum(-r.income_tax_cents for r in self.returns_for(original.id)),
        )


def _stored_breakdown(line: InvoiceLine) -> LineBreakdown:
    return LineBreakdown(
        subtotal_cents=line.subtotal_cents,
        discount1_cents=line.discount1_cents,
        discount2_cents=line.discount2_cents,
        taxable_cents=line.taxable_cents,
        tax_cents=line.tax_cents,
        line_total_cents=line.line_total_cents,
        taxes=tuple(
            TaxComponent(t.tax_code, t.rate_bps, t.is_compound, t.base_cents, t.amount_cents) for t in line.taxes
        ),
    )


def _add(a: LineBreakdown, b: LineBreakdown) -> LineBreakdown:
    """Component-wise sum; tax components are matched by position."""
    return LineBreakdown(
        subtotal_cents=a.subtotal_cents + b.subtotal_cents,
        discount1_cents=a.discount1_cents + b.discount1_cents,
        discount2_cents=a.discount2_cents + b.discount2_cents,
        taxable_cents=a.taxable_cents + b.taxable_cents,
        tax_cents=a.tax_cents + b.tax_cents,
        line_total_cents=a.line_total_cents + b.line_total_cents,
        taxes=tuple(
            replace(ta, base_cents=ta.base_cents + tb.base_cents, amount_cents=ta.amount_cents + tb.amount_cents)
            for ta, tb in zip(a.taxes, b.taxes)
        ),
    )


def _clamped(candidate: LineBreakdown, limit: LineBreakdown) -> LineBreakdown:
    """Bound every component to [0, limit]; derived totals are recomputed."""
    def _bound(value: int, ceiling: int) -> int:
        return max(0, min(value, ceiling))

    taxes = tuple(
        replace(
            t,
            base_cents=_bound(t.base_cents, cap.base_cents),
            amount_cents=_bound(t.amount_cents, cap.amount_cents),
        )
        for t, cap in zip(candidate.taxes, limit.taxes)
    )
    subtotal = _bound(candidate.subtotal_cents, limit.subtotal_cents)
    d1 = _bound(candidate.discount1_cents, limit.discount1_cents)
    d2 = _bound(candidate.discount2_cents, limit.discount2_cents)
    tax = sum(t.amount_cents for t in taxes)
    taxable = subtotal - d1 - d2
    return LineBreakdown(
        subtotal_cents=subtotal,
        discount1_cents=d1,
        discount2_cents=d2,
        taxable_cents=taxable,
        tax_cents=tax,
        line_total_cents=taxable + tax,
        taxes=taxes,
    )
