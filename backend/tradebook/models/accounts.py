from __future__ import annotations

from ..extensions import db
from tradebook.time_utils import to_utc_z


ACCOUNT_TYPES = ("asset", "liability", "equity", "revenue", "expense", "receivable", "payable")


class Account(db.Model):
    """
    Chart-of-accounts row.

    WHY: Every ledger entry posts against an account. Customers and suppliers
    each own one receivable/payable account; system accounts (sales, purchases,
    tax, trade offer, income tax) are looked up by code from config.

    Balances are never stored here. They are derived from ledger_entries.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_accounts_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    account_type = db.Column(db.String(16), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "account_type": self.account_type,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class LedgerEntry(db.Model):
    """
    One side of a double-entry posting (append-only).

    DESIGN PRINCIPLES:
    - Entries are written in pairs sharing posting_group; debit sum equals
      credit sum for every group.
    - All entries for a document share (reference_kind, reference_id), so the
      full posting set can be reconstructed and checked.
    - Reversals are new entries with direction swapped and reverses_entry_id
      set; nothing is ever updated or deleted.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_ledger_entries_amount_positive"),
        db.CheckConstraint("direction IN ('debit', 'credit')", name="ck_ledger_entries_direction"),
        db.Index("ix_ledger_entries_reference", "reference_kind", "reference_id"),
        db.Index("ix_ledger_entries_account_occurred", "account_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    direction = db.Column(db.String(8), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    reference_kind = db.Column(db.String(32), nullable=False)
    reference_id = db.Column(db.Integer, nullable=False)
    posting_group = db.Column(db.String(32), nullable=False, index=True)
    reason = db.Column(db.String(32), nullable=False)
    memo = db.Column(db.String(255), nullable=True)

    reverses_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    account = db.relationship("Account")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "account_code": self.account.code if self.account else None,
            "direction": self.direction,
            "amount_cents": self.amount_cents,
            "reference_kind": self.reference_kind,
            "reference_id": self.reference_id,
            "posting_group": self.posting_group,
            "reason": self.reason,
            "memo": self.memo,
            "reverses_entry_id": self.reverses_entry_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_by_user_id": self.created_by_user_id,
        }
