# Overview: Invoice lifecycle manager; drafts, confirmation, payment status and cancellation.

"""
Invoice Lifecycle Manager

State machine:
    draft --confirm--> confirmed --cancel (not paid)--> cancelled
    draft --cancel--> cancelled            (nothing to reverse)
cancelled is terminal.

Each transition runs as one atomic unit (services.concurrency.atomic): the
invoice row is locked, the status guard is checked, and every side effect
(stock movements, ledger entries, status flip) commits together or not at
all. Because the guard is re-checked inside the unit, a retried or
concurrent second confirm/cancel sees the committed status and fails with
InvalidStateError instead of applying effects twice.

Collaborators are injected (see services.engine.build_engine) so tests can
substitute any of them.
"""

from __future__ import annotations

from typing import Sequence

from flask import current_app

from ..errors import (
    CreditLimitExceededError,
    InvalidStateError,
    NotFoundError,
    ValidationFailedError,
)
from ..extensions import db
from ..models import Invoice, InvoiceLine, InvoiceLineTax
from ..models.invoices import (
    KIND_PURCHASE,
    KIND_SALE,
    PAYMENT_PAID,
    PAYMENT_PARTIAL,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_DRAFT,
)
from tradebook.time_utils import add_days, utcnow
from .account_service import PostingAccounts
from .accounting_ledger import AccountingLedger
from .calculator import (
    LineBreakdown,
    LineInput,
    compute_line,
    compute_totals,
    resolve_tax_rules,
)
from .concurrency import atomic, lock_for_update
from .item_service import ItemService
from .numbering_service import NumberingService
from .options import CreateInvoiceOptions, InvoiceFilter, LineOptions, PaymentOptions
from .party_service import PARTY_CUSTOMER, PARTY_SUPPLIER, PartyService
from .posting_rules import (
    SIDE_BY_KIND,
    STOCK_DIRECTION_BY_KIND,
    PostingAmounts,
    build_plan,
    income_tax_for,
)
from .stock_ledger import StockLedger, StockRequest


PARTY_KIND_BY_SIDE = {"sale": PARTY_CUSTOMER, "purchase": PARTY_SUPPLIER}


def apply_breakdown(line: InvoiceLine, breakdown: LineBreakdown) -> None:
    """Copy computed amounts and tax rows onto a line."""
    line.subtotal_cents = breakdown.subtotal_cents
    line.discount1_cents = breakdown.discount1_cents
    line.discount2_cents = breakdown.discount2_cents
    line.taxable_cents = breakdown.taxable_cents
    line.tax_cents = breakdown.tax_cents
    line.line_total_cents = breakdown.line_total_cents
    line.taxes = [
        InvoiceLineTax(
            sequence=i,
            tax_code=t.code,
            rate_bps=t.rate_bps,
            is_compound=t.is_compound,
            base_cents=t.base_cents,
            amount_cents=t.amount_cents,
        )
        for i, t in enumerate(breakdown.taxes, start=1)
    ]


def apply_totals(invoice: Invoice, breakdowns: Sequence[LineBreakdown]) -> None:
    """Totals are always recomputed from the full set of line breakdowns."""
    totals = compute_totals(breakdowns)
    invoice.subtotal_cents = totals.subtotal_cents
    invoice.discount1_cents = totals.discount1_cents
    invoice.discount2_cents = totals.discount2_cents
    invoice.total_discount_cents = totals.total_discount_cents
    invoice.total_tax_cents = totals.total_tax_cents
    invoice.grand_total_cents = totals.grand_total_cents


def stock_requests_for(invoice: Invoice) -> list[StockRequest]:
    return [
        StockRequest(
            item_id=line.item_id,
            warehouse_id=line.warehouse_id or invoice.warehouse_id,
            quantity=line.quantity,
            line_id=line.id,
            batch_number=line.batch_number,
        )
        for line in invoice.lines
    ]


class InvoiceLifecycle:
    def __init__(
        self,
        *,
        stock: StockLedger,
        ledger: AccountingLedger,
        parties: PartyService,
        items: ItemService,
        tax_rules,
        numbering: NumberingService,
        accounts: PostingAccounts,
        income_tax_rate_bps: int,
    ):
        # tax_rules: anything with get(code) -> TaxRule | None (TaxCodeCache)
        self.stock = stock
        self.ledger = ledger
        self.parties = parties
        self.items = items
        self.tax_rules = tax_rules
        self.numbering = numbering
        self.accounts = accounts
        self.income_tax_rate_bps = income_tax_rate_bps

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, invoice_id: int) -> Invoice:
        invoice = db.session.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})
        return invoice

    def list_invoices(self, filters: InvoiceFilter | None = None) -> list[Invoice]:
        filters = filters or InvoiceFilter()
        q = db.session.query(Invoice)
        if filters.kind:
            q = q.filter(Invoice.kind == filters.kind)
        if filters.status:
            q = q.filter(Invoice.status == filters.status)
        if filters.payment_status:
            q = q.filter(Invoice.payment_status == filters.payment_status)
        if filters.customer_id is not None:
            q = q.filter(Invoice.customer_id == filters.customer_id)
        if filters.supplier_id is not None:
            q = q.filter(Invoice.supplier_id == filters.supplier_id)
        if filters.original_invoice_id is not None:
            q = q.filter(Invoice.original_invoice_id == filters.original_invoice_id)
        if filters.date_from is not None:
            q = q.filter(Invoice.invoice_date >= filters.date_from)
        if filters.date_to is not None:
            q = q.filter(Invoice.invoice_date <= filters.date_to)
        return (
            q.order_by(Invoice.invoice_date.desc(), Invoice.id.desc())
            .limit(filters.limit)
            .offset(filters.offset)
            .all()
        )

    def postings(self, invoice_id: int) -> dict:
        """Everything a document wrote: movements, entries and ledger totals."""
        invoice = self.get(invoice_id)
        return {
            "invoice_id": invoice.id,
            "document_number": invoice.document_number,
            "stock_movements": [m.to_dict() for m in self.stock.movements_for(invoice.kind, invoice.id)],
            "ledger_entries": [e.to_dict() for e in self.ledger.entries_for(invoice.kind, invoice.id)],
            "ledger_totals": self.ledger.totals_for(invoice.kind, invoice.id),
        }

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def create_draft(self, options: CreateInvoiceOptions) -> Invoice:
        if options.kind not in (KIND_SALE, KIND_PURCHASE):
            raise ValidationFailedError(
                "Only sale and purchase invoices can be created directly; use returns for return documents",
                details={"kind": options.kind},
            )
        side = SIDE_BY_KIND[options.kind]

        def _op() -> Invoice:
            party = self.parties.get_account(PARTY_KIND_BY_SIDE[side], options.party_id)
            if not party.is_active:
                raise ValidationFailedError(
                    f"{party.party_kind.capitalize()} {party.name} is inactive",
                    details={f"{party.party_kind}_id": party.party_id},
                )
            self.items.get_warehouse(options.warehouse_id)
            if options.adjustment_account_id is not None:
                self.ledger.require_active_accounts([options.adjustment_account_id])

            invoice_date = options.invoice_date or utcnow().date()
            if options.document_number:
                number = self.numbering.validate(options.kind, options.document_number)
            else:
                number = self.numbering.issue(options.kind, invoice_date.year)

            invoice = Invoice(
                document_number=number,
                kind=options.kind,
                customer_id=party.party_id if side == "sale" else None,
                supplier_id=party.party_id if side == "purchase" else None,
                warehouse_id=options.warehouse_id,
                adjustment_account_id=options.adjustment_account_id,
                status=STATUS_DRAFT,
                apply_income_tax=options.apply_income_tax,
                invoice_date=invoice_date,
                due_date=add_days(invoice_date, party.payment_terms_days),
                notes=options.notes,
                created_by_user_id=options.actor_user_id,
            )
            self._replace_lines(invoice, options.lines)
            db.session.add(invoice)
            db.session.flush()
            current_app.logger.info(
                "Draft %s %s created by user %s", invoice.kind, invoice.document_number, options.actor_user_id
            )
            return invoice

        return atomic(_op)

    def update_lines(self, invoice_id: int, lines: Sequence[LineOptions], *, actor_user_id: int) -> Invoice:
        def _op() -> Invoice:
            invoice = self._load_for_update(invoice_id)
            if invoice.status != STATUS_DRAFT:
                raise InvalidStateError(
                    f"Cannot edit lines of a {invoice.status} invoice",
                    details={"invoice_id": invoice.id, "status": invoice.status},
                )
            invoice.lines.clear()
            db.session.flush()
            self._replace_lines(invoice, lines)
            db.session.flush()
            current_app.logger.info("Draft %s lines updated by user %s", invoice.document_number, actor_user_id)
            return invoice

        return atomic(_op)

    def delete_draft(self, invoice_id: int) -> None:
        def _op() -> None:
            invoice = self._load_for_update(invoice_id)
            if invoice.status != STATUS_DRAFT:
                raise InvalidStateError(
                    f"Cannot delete a {invoice.status} invoice",
                    details={"invoice_id": invoice.id, "status": invoice.status},
                )
            db.session.delete(invoice)

        atomic(_op)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def confirm(self, invoice_id: int, *, actor_user_id: int) -> Invoice:
        """
        draft -> confirmed.

        Validation (status, credit limit, posting accounts, stock under lock)
        happens before anything is written; stock movements, ledger entries
        and the status flip then commit as one unit.
        """
        def _op() -> Invoice:
            invoice = self._load_for_update(invoice_id)
            if invoice.status != STATUS_DRAFT:
                raise InvalidStateError(
                    f"Invoice {invoice.document_number} is already {invoice.status}",
                    details={"invoice_id": invoice.id, "status": invoice.status},
                )
            if not invoice.lines:
                raise ValidationFailedError(
                    "An invoice needs at least one line", details={"invoice_id": invoice.id}
                )

            side = SIDE_BY_KIND[invoice.kind]
            party = self.parties.get_account(PARTY_KIND_BY_SIDE[side], invoice.party_id)
            if not party.is_active:
                raise ValidationFailedError(
                    f"{party.party_kind.capitalize()} {party.name} is inactive",
                    details={f"{party.party_kind}_id": party.party_id},
                )
            if side == "sale" and party.has_credit_limit and invoice.grand_total_cents > party.credit_limit_cents:
                raise CreditLimitExceededError(
                    customer_id=party.party_id,
                    amount_cents=invoice.grand_total_cents,
                    limit_cents=party.credit_limit_cents,
                )

            income_tax = income_tax_for(invoice.grand_total_cents, self.income_tax_rate_bps) if invoice.apply_income_tax else 0
            amounts = PostingAmounts(
                subtotal_cents=invoice.subtotal_cents,
                tax_cents=invoice.total_tax_cents,
                discount_cents=invoice.total_discount_cents,
                income_tax_cents=income_tax,
            )
            plan = build_plan(
                ledger=self.ledger,
                accounts=self.accounts,
                side=side,
                party_account_id=party.account_id,
                amounts=amounts,
                adjustment_account_id=invoice.adjustment_account_id,
                document_number=invoice.document_number,
            )

            self.stock.apply(
                stock_requests_for(invoice),
                STOCK_DIRECTION_BY_KIND[invoice.kind],
                movement_type=invoice.kind,
                reference_kind=invoice.kind,
                reference_id=invoice.id,
                actor_user_id=actor_user_id,
                note=f"{invoice.kind.capitalize()} {invoice.document_number} confirmed",
            )
            self.ledger.post_plan(
                plan,
                reference_kind=invoice.kind,
                reference_id=invoice.id,
                actor_user_id=actor_user_id,
            )

            invoice.income_tax_cents = income_tax
            invoice.status = STATUS_CONFIRMED
            invoice.confirmed_by_user_id = actor_user_id
            invoice.confirmed_at = utcnow()
            db.session.flush()
            return invoice

        invoice = atomic(_op)
        current_app.logger.info("Invoice %s confirmed by user %s", invoice.document_number, actor_user_id)
        return invoice

    def mark_paid(self, invoice_id: int, options: PaymentOptions) -> Invoice:
        def _op() -> Invoice:
            invoice = self._load_for_update(invoice_id)
            self._require_payable(invoice)
            invoice.payment_status = PAYMENT_PAID
            invoice.amount_paid_cents = abs(invoice.grand_total_cents)
            invoice.paid_at = options.paid_at or utcnow()
            return invoice

        invoice = atomic(_op)
        current_app.logger.info("Invoice %s marked paid by user %s", invoice.document_number, options.actor_user_id)
        return invoice

    def mark_partially_paid(self, invoice_id: int, options: PaymentOptions) -> Invoice:
        amount = options.amount_cents
        if amount is None or isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationFailedError(
                "Partial payment amount must be a positive integer",
                details={"amount_cents": amount},
            )

        def _op() -> Invoice:
            invoice = self._load_for_update(invoice_id)
            self._require_payable(invoice)
            invoice.amount_paid_cents += amount
            if invoice.amount_paid_cents >= abs(invoice.grand_total_cents):
                invoice.payment_status = PAYMENT_PAID
                invoice.paid_at = options.paid_at or utcnow()
            else:
                invoice.payment_status = PAYMENT_PARTIAL
            return invoice

        invoice = atomic(_op)
        current_app.logger.info(
            "Invoice %s payment of %s cents recorded by user %s (status %s)",
            invoice.document_number,
            amount,
            options.actor_user_id,
            invoice.payment_status,
        )
        return invoice

    def cancel(self, invoice_id: int, *, actor_user_id: int, reason: str | None = None) -> Invoice:
        """
        draft|confirmed -> cancelled.

        A confirmed document is reversed first: stock movements with the
        opposite sign and ledger entries with debit/credit swapped, all under
        the same reference so the document nets to zero.
        """
        def _op() -> Invoice:
            invoice = self._load_for_update(invoice_id)
            if invoice.status == STATUS_CANCELLED:
                raise InvalidStateError(
                    f"Invoice {invoice.document_number} is already cancelled",
                    details={"invoice_id": invoice.id, "status": invoice.status},
                )
            if invoice.payment_status == PAYMENT_PAID:
                raise InvalidStateError(
                    f"Cannot cancel paid invoice {invoice.document_number}; process a refund instead",
                    details={"invoice_id": invoice.id, "payment_status": invoice.payment_status},
                )

            if invoice.status == STATUS_CONFIRMED:
                if not invoice.is_return:
                    live_returns = [
                        r.document_number for r in self._returns_of(invoice.id) if r.status != STATUS_CANCELLED
                    ]
                    if live_returns:
                        raise InvalidStateError(
                            f"Invoice {invoice.document_number} has active returns; cancel them first",
                            details={"invoice_id": invoice.id, "returns": live_returns},
                        )
                note = f"Reversal: {invoice.kind} {invoice.document_number} cancelled. Reason: {reason or 'not given'}"
                self.stock.reverse(
                    invoice.kind,
                    invoice.id,
                    actor_user_id=actor_user_id,
                    note=note[:255],
                )
                self.ledger.reverse_reference(
                    invoice.kind,
                    invoice.id,
                    memo=note[:255],
                    actor_user_id=actor_user_id,
                )

            invoice.status = STATUS_CANCELLED
            invoice.cancelled_by_user_id = actor_user_id
            invoice.cancelled_at = utcnow()
            invoice.cancellation_reason = reason[:255] if reason else None
            db.session.flush()
            return invoice

        invoice = atomic(_op)
        current_app.logger.info(
            "Invoice %s cancelled by user %s (reason: %s)", invoice.document_number, actor_user_id, reason
        )
        return invoice

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_for_update(self, invoice_id: int) -> Invoice:
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})
        return invoice

    def _returns_of(self, invoice_id: int) -> list[Invoice]:
        return db.session.query(Invoice).filter_by(original_invoice_id=invoice_id).all()

    def _require_payable(self, invoice: Invoice) -> None:
        if invoice.status != STATUS_CONFIRMED:
            raise InvalidStateError(
                f"Only confirmed invoices can be paid (invoice is {invoice.status})",
                details={"invoice_id": invoice.id, "status": invoice.status},
            )
        if invoice.payment_status == PAYMENT_PAID:
            raise InvalidStateError(
                f"Invoice {invoice.document_number} is already paid",
                details={"invoice_id": invoice.id, "payment_status": invoice.payment_status},
            )

    def _breakdown_for(self, side: str, options: LineOptions) -> tuple[LineInput, LineBreakdown, list[str]]:
        item = self.items.get_item(options.item_id)
        if not item.is_active:
            raise ValidationFailedError(
                f"Item {item.code} is inactive", details={"item_id": item.item_id}
            )

        unit_price = options.unit_price_cents
        if unit_price is None:
            unit_price = item.sale_price_cents if side == "sale" else item.purchase_price_cents
        if unit_price is None:
            raise ValidationFailedError(
                f"unit_price_cents is required for item {item.code}", details={"item_id": item.item_id}
            )

        codes = list(options.tax_codes) if options.tax_codes is not None else list(item.tax_codes)
        rules = resolve_tax_rules(codes, self.tax_rules.get, side=side)
        line_input = LineInput(
            quantity=options.quantity,
            unit_price_cents=unit_price,
            discount1=options.discount1,
            discount2=options.discount2,
            tax_rules=rules,
            tax_inclusive=options.tax_inclusive,
        )
        try:
            breakdown = compute_line(line_input)
        except ValidationFailedError as exc:
            exc.details.setdefault("item_id", item.item_id)
            raise
        return line_input, breakdown, codes

    def _replace_lines(self, invoice: Invoice, lines: Sequence[LineOptions]) -> None:
        if not lines:
            raise ValidationFailedError("An invoice needs at least one line")
        side = SIDE_BY_KIND[invoice.kind]
        breakdowns = []
        for number, options in enumerate(lines, start=1):
            if options.warehouse_id is not None:
                self.items.get_warehouse(options.warehouse_id)
            line_input, breakdown, codes = self._breakdown_for(side, options)
            line = InvoiceLine(
                line_number=number,
                item_id=options.item_id,
                warehouse_id=options.warehouse_id,
                batch_number=options.batch_number,
                quantity=line_input.quantity,
                unit_price_cents=line_input.unit_price_cents,
                discount1_bps=options.discount1.percent_bps,
                discount1_amount_cents=options.discount1.amount_cents,
                discount2_bps=options.discount2.percent_bps,
                discount2_amount_cents=options.discount2.amount_cents,
                tax_codes=",".join(codes) if codes else None,
                tax_inclusive=options.tax_inclusive,
            )
            apply_breakdown(line, breakdown)
            invoice.lines.append(line)
            breakdowns.append(breakdown)
        apply_totals(invoice, breakdowns)
