from __future__ import annotations

from ..extensions import db
from tradebook.time_utils import to_utc_z


TAX_TYPES = ("GST", "WHT", "SALES_TAX", "CUSTOM")
TAX_APPLIES_TO = ("sale", "purchase", "both")


class TaxCode(db.Model):
    """
    Tax configuration row.

    rate_bps: 1800 = 18%. is_compound: levied on base plus the tax
    accumulated by codes applied before it on the same line.

    Reads go through TaxCodeCache; writes go through tax_service so the cache
    is invalidated on every change.
    """
    __tablename__ = "tax_codes"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_tax_codes_code"),
        db.CheckConstraint("rate_bps >= 0 AND rate_bps <= 10000", name="ck_tax_codes_rate_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    tax_type = db.Column(db.String(16), nullable=False, default="GST")
    rate_bps = db.Column(db.Integer, nullable=False)
    is_compound = db.Column(db.Boolean, nullable=False, default=False)
    applies_to = db.Column(db.String(16), nullable=False, default="both")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "tax_type": self.tax_type,
            "rate_bps": self.rate_bps,
            "is_compound": self.is_compound,
            "applies_to": self.applies_to,
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
        }
