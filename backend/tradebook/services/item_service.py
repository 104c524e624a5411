# Overview: Item and warehouse master data plus the item view consulted for line validation.

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..errors import NotFoundError, ValidationFailedError
from ..extensions import db
from ..models import Item, Warehouse
from .stock_ledger import StockLedger


@dataclass(frozen=True)
class ItemInfo:
    item_id: int
    code: str
    name: str
    is_active: bool
    current_stock: int
    tax_codes: tuple[str, ...]
    sale_price_cents: Optional[int]
    purchase_price_cents: Optional[int]


class ItemService:
    def __init__(self, stock: StockLedger):
        self.stock = stock

    def get_item(self, item_id: int) -> ItemInfo:
        item = db.session.get(Item, item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found", details={"item_id": item_id})
        return ItemInfo(
            item_id=item.id,
            code=item.code,
            name=item.name,
            is_active=item.is_active,
            current_stock=self.stock.on_hand_total(item.id),
            tax_codes=tuple(item.tax_code_list),
            sale_price_cents=item.sale_price_cents,
            purchase_price_cents=item.purchase_price_cents,
        )

    def get_warehouse(self, warehouse_id: int) -> Warehouse:
        warehouse = db.session.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise NotFoundError(f"Warehouse {warehouse_id} not found", details={"warehouse_id": warehouse_id})
        if not warehouse.is_active:
            raise ValidationFailedError(
                f"Warehouse {warehouse.code} is inactive",
                details={"warehouse_id": warehouse_id},
            )
        return warehouse


def create_item(
    *,
    code: str,
    name: str,
    sale_price_cents: int | None = None,
    purchase_price_cents: int | None = None,
    default_tax_codes: list[str] | None = None,
) -> Item:
    code = (code or "").strip()
    if not code:
        raise ValidationFailedError("code is required")
    if not name or not name.strip():
        raise ValidationFailedError("name is required")
    for price in (sale_price_cents, purchase_price_cents):
        if price is not None and price < 0:
            raise ValidationFailedError("prices must be >= 0")
    if db.session.query(Item).filter_by(code=code).first():
        raise ValidationFailedError(f"Item code {code} already exists", details={"code": code})
    item = Item(
        code=code,
        name=name.strip(),
        sale_price_cents=sale_price_cents,
        purchase_price_cents=purchase_price_cents,
        default_tax_codes=",".join(default_tax_codes) if default_tax_codes else None,
        is_active=True,
    )
    db.session.add(item)
    db.session.commit()
    return item


def create_warehouse(*, code: str, name: str) -> Warehouse:
    code = (code or "").strip()
    if not code:
        raise ValidationFailedError("code is required")
    if db.session.query(Warehouse).filter_by(code=code).first():
        raise ValidationFailedError(f"Warehouse code {code} already exists", details={"code": code})
    warehouse = Warehouse(code=code, name=name, is_active=True)
    db.session.add(warehouse)
    db.session.commit()
    return warehouse


def set_item_active(item_id: int, is_active: bool) -> Item:
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFoundError(f"Item {item_id} not found", details={"item_id": item_id})
    item.is_active = is_active
    db.session.commit()
    return item
