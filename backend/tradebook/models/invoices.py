from __future__ import annotations

from ..extensions import db
from tradebook.time_utils import to_utc_z


KIND_SALE = "sale"
KIND_PURCHASE = "purchase"
KIND_SALE_RETURN = "sale_return"
KIND_PURCHASE_RETURN = "purchase_return"
INVOICE_KINDS = (KIND_SALE, KIND_PURCHASE, KIND_SALE_RETURN, KIND_PURCHASE_RETURN)
RETURN_KINDS = {KIND_SALE: KIND_SALE_RETURN, KIND_PURCHASE: KIND_PURCHASE_RETURN}

STATUS_DRAFT = "draft"
STATUS_CONFIRMED = "confirmed"
STATUS_CANCELLED = "cancelled"

PAYMENT_PENDING = "pending"
PAYMENT_PARTIAL = "partial"
PAYMENT_PAID = "paid"


class Invoice(db.Model):
    """
    Sales / purchase document and their returns (aggregate root).

    WHY: The invoice is the unit of confirmation. Stock movements and ledger
    entries reference it by (kind, id) and totals are always a pure function
    of its lines.

    LIFECYCLE:
    1. draft: mutable, no side effects
    2. confirmed: stock moved and ledger posted exactly once
    3. cancelled: terminal; confirmed documents are reversed on the way in

    payment_status (pending/partial/paid) is an independent axis that only
    moves once the document is confirmed.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_invoices_document_number"),
        db.CheckConstraint(
            "(customer_id IS NULL) <> (supplier_id IS NULL)",
            name="ck_invoices_single_party",
        ),
        db.Index("ix_invoices_kind_status_date", "kind", "status", "invoice_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "SI2026000001")
    document_number = db.Column(db.String(32), nullable=False)
    kind = db.Column(db.String(16), nullable=False, index=True)

    # Return documents point back at the invoice they reverse
    original_invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)
    adjustment_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_DRAFT, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING, index=True)

    # Derived totals (all cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount1_cents = db.Column(db.Integer, nullable=False, default=0)
    discount2_cents = db.Column(db.Integer, nullable=False, default=0)
    total_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_tax_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Withholding income tax, fixed at confirmation
    apply_income_tax = db.Column(db.Boolean, nullable=False, default=False)
    income_tax_cents = db.Column(db.Integer, nullable=False, default=0)

    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    return_reason = db.Column(db.Text, nullable=True)

    # Timestamps + user attribution
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by_user_id = db.Column(db.Integer, nullable=False)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by_user_id = db.Column(db.Integer, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "InvoiceLine",
        back_populates="invoice",
        order_by="InvoiceLine.line_number",
        cascade="all, delete-orphan",
        foreign_keys="InvoiceLine.invoice_id",
    )
    original_invoice = db.relationship("Invoice", remote_side=[id], backref=db.backref("returns", lazy=True))
    customer = db.relationship("Customer")
    supplier = db.relationship("Supplier")
    warehouse = db.relationship("Warehouse")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_return(self) -> bool:
        return self.kind in (KIND_SALE_RETURN, KIND_PURCHASE_RETURN)

    @property
    def party_id(self) -> int | None:
        return self.customer_id if self.customer_id is not None else self.supplier_id

    def tax_breakdown(self) -> list[dict]:
        """Tax totals grouped by (code, rate) bucket across all lines."""
        buckets: dict[tuple[str, int], dict] = {}
        for line in self.lines:
            for tax in line.taxes:
                key = (tax.tax_code, tax.rate_bps)
                bucket = buckets.setdefault(
                    key,
                    {"tax_code": tax.tax_code, "rate_bps": tax.rate_bps, "base_cents": 0, "tax_cents": 0},
                )
                bucket["base_cents"] += tax.base_cents
                bucket["tax_cents"] += tax.amount_cents
        return [buckets[k] for k in sorted(buckets)]

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "document_number": self.document_number,
            "kind": self.kind,
            "original_invoice_id": self.original_invoice_id,
            "customer_id": self.customer_id,
            "supplier_id": self.supplier_id,
            "warehouse_id": self.warehouse_id,
            "adjustment_account_id": self.adjustment_account_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "subtotal_cents": self.subtotal_cents,
            "discount1_cents": self.discount1_cents,
            "discount2_cents": self.discount2_cents,
            "total_discount_cents": self.total_discount_cents,
            "total_tax_cents": self.total_tax_cents,
            "grand_total_cents": self.grand_total_cents,
            "apply_income_tax": self.apply_income_tax,
            "income_tax_cents": self.income_tax_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "invoice_date": self.invoice_date.isoformat() if self.invoice_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "notes": self.notes,
            "return_reason": self.return_reason,
            "created_at": to_utc_z(self.created_at),
            "created_by_user_id": self.created_by_user_id,
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "confirmed_by_user_id": self.confirmed_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancellation_reason": self.cancellation_reason,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "tax_breakdown": self.tax_breakdown(),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class InvoiceLine(db.Model):
    """
    Individual line items on an invoice.

    Discount tiers are stored both as requested (percent bps or fixed cents)
    and as computed cents. Return lines carry negative computed amounts and a
    back-reference to the original line.
    """
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "line_number", name="uq_invoice_lines_invoice_line_number"),
        db.CheckConstraint("quantity > 0", name="ck_invoice_lines_quantity_positive"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_invoice_lines_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)
    batch_number = db.Column(db.String(64), nullable=True)

    original_line_id = db.Column(db.Integer, db.ForeignKey("invoice_lines.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    # Requested discount tiers (percent in bps XOR fixed cents)
    discount1_bps = db.Column(db.Integer, nullable=True)
    discount1_amount_cents = db.Column(db.Integer, nullable=True)
    discount2_bps = db.Column(db.Integer, nullable=True)
    discount2_amount_cents = db.Column(db.Integer, nullable=True)

    tax_codes = db.Column(db.String(255), nullable=True)
    tax_inclusive = db.Column(db.Boolean, nullable=False, default=False)

    # Computed breakdown
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount1_cents = db.Column(db.Integer, nullable=False, default=0)
    discount2_cents = db.Column(db.Integer, nullable=False, default=0)
    taxable_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False, default=0)

    invoice = db.relationship("Invoice", back_populates="lines", foreign_keys=[invoice_id])
    item = db.relationship("Item")
    original_line = db.relationship("InvoiceLine", remote_side=[id])
    taxes = db.relationship(
        "InvoiceLineTax",
        back_populates="line",
        order_by="InvoiceLineTax.sequence",
        cascade="all, delete-orphan",
    )

    @property
    def tax_code_list(self) -> list[str]:
        if not self.tax_codes:
            return []
        return [c for c in self.tax_codes.split(",") if c]

    @property
    def total_discount_cents(self) -> int:
        return self.discount1_cents + self.discount2_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "line_number": self.line_number,
            "item_id": self.item_id,
            "warehouse_id": self.warehouse_id,
            "batch_number": self.batch_number,
            "original_line_id": self.original_line_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount1_bps": self.discount1_bps,
            "discount1_amount_cents": self.discount1_amount_cents,
            "discount2_bps": self.discount2_bps,
            "discount2_amount_cents": self.discount2_amount_cents,
            "tax_codes": self.tax_code_list,
            "tax_inclusive": self.tax_inclusive,
            "subtotal_cents": self.subtotal_cents,
            "discount1_cents": self.discount1_cents,
            "discount2_cents": self.discount2_cents,
            "taxable_cents": self.taxable_cents,
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
            "taxes": [t.to_dict() for t in self.taxes],
        }


class InvoiceLineTax(db.Model):
    """One applied tax code on a line, in application order."""
    __tablename__ = "invoice_line_taxes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    line_id = db.Column(db.Integer, db.ForeignKey("invoice_lines.id"), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)
    tax_code = db.Column(db.String(32), nullable=False)
    rate_bps = db.Column(db.Integer, nullable=False)
    is_compound = db.Column(db.Boolean, nullable=False, default=False)
    base_cents = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    line = db.relationship("InvoiceLine", back_populates="taxes")

    def to_dict(self) -> dict:
        return {
            "tax_code": self.tax_code,
            "rate_bps": self.rate_bps,
            "is_compound": self.is_compound,
            "base_cents": self.base_cents,
            "amount_cents": self.amount_cents,
        }
