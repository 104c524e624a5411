from __future__ import annotations

from ..extensions import db
from tradebook.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data.

    credit_limit_cents of 0 or NULL means unlimited credit. The running
    balance lives in the ledger (account_id), never on this row.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_customers_code"),
        db.Index("ix_customers_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    credit_limit_cents = db.Column(db.Integer, nullable=True)
    payment_terms_days = db.Column(db.Integer, nullable=False, default=0)

    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    account = db.relationship("Account")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "phone": self.phone,
            "is_active": self.is_active,
            "credit_limit_cents": self.credit_limit_cents,
            "payment_terms_days": self.payment_terms_days,
            "account_id": self.account_id,
            "created_at": to_utc_z(self.created_at),
        }


class Supplier(db.Model):
    """Supplier master data (mirror of Customer on the payable side)."""
    __tablename__ = "suppliers"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_suppliers_code"),
        db.Index("ix_suppliers_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    credit_limit_cents = db.Column(db.Integer, nullable=True)
    payment_terms_days = db.Column(db.Integer, nullable=False, default=0)

    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    account = db.relationship("Account")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "phone": self.phone,
            "is_active": self.is_active,
            "credit_limit_cents": self.credit_limit_cents,
            "payment_terms_days": self.payment_terms_days,
            "account_id": self.account_id,
            "created_at": to_utc_z(self.created_at),
        }
