# Overview: Stock level mutation and the append-only stock movement trail.

"""
Stock Ledger

Owns every change to on-hand quantity. Each change writes one StockMovement
(signed quantity, document reference, actor) and adjusts the StockLevel row
for the (item, warehouse) pair in the same transaction.

Race safety:
- StockLevel rows are locked (SELECT ... FOR UPDATE) in sorted
  (item_id, warehouse_id) order before availability is checked, so the check
  and the write form one atomic step per item.
- StockLevel carries a version_id column; a concurrent writer that slipped
  past the lock (SQLite) fails with StaleDataError and the unit is retried.

Nothing here commits. Callers own the transaction boundary.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from sqlalchemy import func

from ..errors import InsufficientStockError, ValidationFailedError
from ..extensions import db
from ..models import StockLevel, StockMovement
from tradebook.time_utils import utcnow
from .concurrency import lock_for_update


INCREASE = "increase"
DECREASE = "decrease"
DIRECTIONS = (INCREASE, DECREASE)

MOVEMENT_REVERSAL = "reversal"
MOVEMENT_OPENING = "opening"
MOVEMENT_ADJUSTMENT = "adjustment"


@dataclass(frozen=True)
class StockRequest:
    """One line's worth of stock change; quantity is always positive."""
    item_id: int
    warehouse_id: int
    quantity: int
    line_id: Optional[int] = None
    batch_number: Optional[str] = None


@dataclass(frozen=True)
class _SignedChange:
    request: StockRequest
    delta: int


class StockLedger:
    """Stock mutation component injected into the lifecycle manager and return engine."""

    def available(self, item_id: int, warehouse_id: int) -> int:
        level = db.session.query(StockLevel).filter_by(item_id=item_id, warehouse_id=warehouse_id).first()
        return level.quantity if level else 0

    def on_hand_total(self, item_id: int) -> int:
        total = (
            db.session.query(func.coalesce(func.sum(StockLevel.quantity), 0))
            .filter(StockLevel.item_id == item_id)
            .scalar()
        )
        return int(total or 0)

    def movement_sum(self, item_id: int, warehouse_id: int) -> int:
        total = (
            db.session.query(func.coalesce(func.sum(StockMovement.quantity_delta), 0))
            .filter(StockMovement.item_id == item_id, StockMovement.warehouse_id == warehouse_id)
            .scalar()
        )
        return int(total or 0)

    def check_availability(self, requests: Sequence[StockRequest]) -> list[dict]:
        """Unlocked read-only shortfall report for a prospective decrease."""
        shortfalls = []
        for (item_id, warehouse_id), requested in _aggregate(requests).items():
            on_hand = self.available(item_id, warehouse_id)
            if requested > on_hand:
                shortfalls.append(
                    {
                        "item_id": item_id,
                        "warehouse_id": warehouse_id,
                        "requested": requested,
                        "available": on_hand,
                    }
                )
        return shortfalls

    def apply(
        self,
        requests: Sequence[StockRequest],
        direction: str,
        *,
        movement_type: str,
        reference_kind: str,
        reference_id: int,
        actor_user_id: int | None,
        note: str | None = None,
    ) -> list[StockMovement]:
        """
        Move stock for every request or for none.

        decrease: all aggregated (item, warehouse) requests are validated
        against locked on-hand quantities first; any shortfall raises
        InsufficientStockError listing every short item.
        """
        if direction not in DIRECTIONS:
            raise ValidationFailedError(f"Unknown stock direction: {direction}")
        if not requests:
            raise ValidationFailedError("At least one stock line is required")
        for r in requests:
            if not isinstance(r.quantity, int) or isinstance(r.quantity, bool) or r.quantity <= 0:
                raise ValidationFailedError(
                    "Stock quantity must be a positive integer",
                    details={"item_id": r.item_id, "quantity": r.quantity},
                )

        sign = 1 if direction == INCREASE else -1
        changes = [_SignedChange(r, sign * r.quantity) for r in requests]
        return self._write(
            changes,
            movement_type=movement_type,
            reference_kind=reference_kind,
            reference_id=reference_id,
            actor_user_id=actor_user_id,
            note=note,
        )

    def reverse(
        self,
        reference_kind: str,
        reference_id: int,
        *,
        actor_user_id: int | None,
        note: str,
    ) -> list[StockMovement]:
        """
        Append the exact inverse of a document's net movements.

        Original movements stay untouched; a reference that already nets to
        zero produces nothing.
        """
        rows = self.movements_for(reference_kind, reference_id)
        net: "OrderedDict[tuple, int]" = OrderedDict()
        for m in rows:
            key = (m.item_id, m.warehouse_id, m.reference_line_id, m.batch_number)
            net[key] = net.get(key, 0) + m.quantity_delta

        changes = [
            _SignedChange(
                StockRequest(
                    item_id=item_id,
                    warehouse_id=warehouse_id,
                    quantity=abs(qty),
                    line_id=line_id,
                    batch_number=batch,
                ),
                -qty,
            )
            for (item_id, warehouse_id, line_id, batch), qty in net.items()
            if qty != 0
        ]
        if not changes:
            return []
        return self._write(
            changes,
            movement_type=MOVEMENT_REVERSAL,
            reference_kind=reference_kind,
            reference_id=reference_id,
            actor_user_id=actor_user_id,
            note=note,
        )

    def receive_opening(
        self,
        *,
        item_id: int,
        warehouse_id: int,
        quantity: int,
        actor_user_id: int | None = None,
        note: str | None = "Opening balance",
    ) -> StockMovement:
        movements = self.apply(
            [StockRequest(item_id=item_id, warehouse_id=warehouse_id, quantity=quantity)],
            INCREASE,
            movement_type=MOVEMENT_OPENING,
            reference_kind=MOVEMENT_OPENING,
            reference_id=item_id,
            actor_user_id=actor_user_id,
            note=note,
        )
        return movements[0]

    def adjust(
        self,
        *,
        item_id: int,
        warehouse_id: int,
        quantity_delta: int,
        actor_user_id: int | None = None,
        note: str | None = None,
    ) -> StockMovement:
        """Count correction; a decrease is validated against on-hand like any other."""
        if not isinstance(quantity_delta, int) or isinstance(quantity_delta, bool) or quantity_delta == 0:
            raise ValidationFailedError(
                "quantity_delta must be a nonzero integer",
                details={"item_id": item_id, "quantity_delta": quantity_delta},
            )
        movements = self.apply(
            [StockRequest(item_id=item_id, warehouse_id=warehouse_id, quantity=abs(quantity_delta))],
            INCREASE if quantity_delta > 0 else DECREASE,
            movement_type=MOVEMENT_ADJUSTMENT,
            reference_kind=MOVEMENT_ADJUSTMENT,
            reference_id=item_id,
            actor_user_id=actor_user_id,
            note=note or "Stock adjustment",
        )
        return movements[0]

    def movements_for(self, reference_kind: str, reference_id: int) -> list[StockMovement]:
        return (
            db.session.query(StockMovement)
            .filter_by(reference_kind=reference_kind, reference_id=reference_id)
            .order_by(StockMovement.id.asc())
            .all()
        )

    def net_by_item(self, references: Iterable[tuple[str, int]]) -> dict[tuple[int, int], int]:
        """Net signed quantity per (item, warehouse) across several documents."""
        totals: dict[tuple[int, int], int] = {}
        for reference_kind, reference_id in references:
            for m in self.movements_for(reference_kind, reference_id):
                key = (m.item_id, m.warehouse_id)
                totals[key] = totals.get(key, 0) + m.quantity_delta
        return totals

    # ------------------------------------------------------------------

    def _lock_levels(self, keys: Sequence[tuple[int, int]], create_missing: set) -> dict:
        levels = {}
        for item_id, warehouse_id in sorted(keys):
            level = lock_for_update(
                db.session.query(StockLevel).filter_by(item_id=item_id, warehouse_id=warehouse_id)
            ).first()
            if level is None and (item_id, warehouse_id) in create_missing:
                level = StockLevel(item_id=item_id, warehouse_id=warehouse_id, quantity=0)
                db.session.add(level)
                db.session.flush()
            levels[(item_id, warehouse_id)] = level
        return levels

    def _write(
        self,
        changes: Sequence[_SignedChange],
        *,
        movement_type: str,
        reference_kind: str,
        reference_id: int,
        actor_user_id: int | None,
        note: str | None,
    ) -> list[StockMovement]:
        net: dict[tuple[int, int], int] = {}
        for c in changes:
            key = (c.request.item_id, c.request.warehouse_id)
            net[key] = net.get(key, 0) + c.delta

        growing = {k for k, v in net.items() if v > 0}
        levels = self._lock_levels(list(net.keys()), growing)

        shortfalls = []
        for key, delta in net.items():
            if delta >= 0:
                continue
            on_hand = levels[key].quantity if levels[key] is not None else 0
            if on_hand + delta < 0:
                shortfalls.append(
                    {
                        "item_id": key[0],
                        "warehouse_id": key[1],
                        "requested": -delta,
                        "available": on_hand,
                    }
                )
        if shortfalls:
            raise InsufficientStockError(shortfalls)

        now = utcnow()
        movements = []
        for c in changes:
            movement = StockMovement(
                item_id=c.request.item_id,
                warehouse_id=c.request.warehouse_id,
                quantity_delta=c.delta,
                movement_type=movement_type,
                reference_kind=reference_kind,
                reference_id=reference_id,
                reference_line_id=c.request.line_id,
                batch_number=c.request.batch_number,
                note=note,
                occurred_at=now,
                actor_user_id=actor_user_id,
            )
            db.session.add(movement)
            movements.append(movement)

        for key, delta in net.items():
            level = levels[key]
            if level is None:
                # net zero on a pair that never had stock
                continue
            level.quantity = max(0, level.quantity + delta)

        db.session.flush()
        return movements


def _aggregate(requests: Sequence[StockRequest]) -> "OrderedDict[tuple[int, int], int]":
    totals: "OrderedDict[tuple[int, int], int]" = OrderedDict()
    for r in requests:
        key = (r.item_id, r.warehouse_id)
        totals[key] = totals.get(key, 0) + r.quantity
    return totals
