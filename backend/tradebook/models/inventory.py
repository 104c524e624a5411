from __future__ import annotations

from ..extensions import db
from tradebook.time_utils import to_utc_z


class Item(db.Model):
    """
    Item master data.

    default_tax_codes: comma separated tax codes applied to a line when the
    caller does not name any (e.g. "GST18" or "GST18,FED").
    """
    __tablename__ = "items"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_items_code"),
        db.Index("ix_items_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents
    sale_price_cents = db.Column(db.Integer, nullable=True)
    purchase_price_cents = db.Column(db.Integer, nullable=True)
    default_tax_codes = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def tax_code_list(self) -> list[str]:
        if not self.default_tax_codes:
            return []
        return [c.strip() for c in self.default_tax_codes.split(",") if c.strip()]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "sale_price_cents": self.sale_price_cents,
            "purchase_price_cents": self.purchase_price_cents,
            "default_tax_codes": self.tax_code_list,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Warehouse(db.Model):
    __tablename__ = "warehouses"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_warehouses_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "code": self.code, "name": self.name, "is_active": self.is_active}


class StockLevel(db.Model):
    """
    On-hand quantity per (item, warehouse).

    WHY: The movement log is the audit trail; this row is what gets locked
    and conditionally decremented so two documents cannot over-sell the same
    stock. It must always equal the sum of movements for the pair.
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint("item_id", "warehouse_id", name="uq_stock_levels_item_warehouse"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_levels_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "warehouse_id": self.warehouse_id,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock movement.

    DESIGN PRINCIPLES:
    - quantity_delta is signed: negative leaves the warehouse, positive enters
    - Every movement names the document that caused it
    - A reversal is a new movement of opposite sign, never an edit
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity_delta <> 0", name="ck_stock_movements_nonzero"),
        db.Index("ix_stock_movements_reference", "reference_kind", "reference_id"),
        db.Index("ix_stock_movements_item_warehouse_occurred", "item_id", "warehouse_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    movement_type = db.Column(db.String(32), nullable=False, index=True)

    reference_kind = db.Column(db.String(32), nullable=False)
    reference_id = db.Column(db.Integer, nullable=False)
    reference_line_id = db.Column(db.Integer, nullable=True)

    batch_number = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    actor_user_id = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "warehouse_id": self.warehouse_id,
            "quantity_delta": self.quantity_delta,
            "movement_type": self.movement_type,
            "reference_kind": self.reference_kind,
            "reference_id": self.reference_id,
            "reference_line_id": self.reference_line_id,
            "batch_number": self.batch_number,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
            "actor_user_id": self.actor_user_id,
        }
