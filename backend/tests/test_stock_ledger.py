import pytest

from tradebook.errors import InsufficientStockError, ValidationFailedError
from tradebook.models import StockMovement
from tradebook.services.concurrency import atomic
from tradebook.services.stock_ledger import DECREASE, INCREASE, StockRequest


def _apply(engine, requests, direction, reference_id=1):
    return atomic(lambda: engine.stock.apply(
        requests,
        direction,
        movement_type="adjustment",
        reference_kind="adjustment",
        reference_id=reference_id,
        actor_user_id=1,
    ))


def test_increase_creates_level_and_movement(engine, item, warehouse):
    movements = _apply(engine, [StockRequest(item.id, warehouse.id, 12)], INCREASE)

    assert len(movements) == 1
    assert movements[0].quantity_delta == 12
    assert engine.stock.available(item.id, warehouse.id) == 12
    assert engine.stock.movement_sum(item.id, warehouse.id) == 12


def test_decrease_exact_available_leaves_zero(engine, item, warehouse, receive):
    receive(item.id, 10)

    _apply(engine, [StockRequest(item.id, warehouse.id, 10)], DECREASE)

    assert engine.stock.available(item.id, warehouse.id) == 0
    assert engine.stock.movement_sum(item.id, warehouse.id) == 0


def test_shortfall_lists_every_item_and_writes_nothing(engine, db_session, item, other_item, warehouse, receive):
    receive(item.id, 5)
    before = db_session.query(StockMovement).count()

    with pytest.raises(InsufficientStockError) as exc:
        _apply(
            engine,
            [StockRequest(item.id, warehouse.id, 10), StockRequest(other_item.id, warehouse.id, 2)],
            DECREASE,
        )

    short = {s["item_id"]: s for s in exc.value.details["items"]}
    assert short[item.id]["requested"] == 10
    assert short[item.id]["available"] == 5
    assert short[other_item.id]["available"] == 0
    assert engine.stock.available(item.id, warehouse.id) == 5
    assert db_session.query(StockMovement).count() == before


def test_requests_for_same_item_are_checked_together(engine, item, warehouse, receive):
    receive(item.id, 5)

    with pytest.raises(InsufficientStockError):
        _apply(
            engine,
            [StockRequest(item.id, warehouse.id, 3), StockRequest(item.id, warehouse.id, 3)],
            DECREASE,
        )
    assert engine.stock.available(item.id, warehouse.id) == 5


def test_non_positive_quantity_rejected(engine, item, warehouse):
    with pytest.raises(ValidationFailedError):
        _apply(engine, [StockRequest(item.id, warehouse.id, 0)], INCREASE)


def test_reverse_appends_opposite_movements(engine, item, other_item, warehouse, receive):
    receive(item.id, 20)
    receive(other_item.id, 20)
    _apply(
        engine,
        [StockRequest(item.id, warehouse.id, 4, line_id=1), StockRequest(other_item.id, warehouse.id, 6, line_id=2)],
        DECREASE,
        reference_id=99,
    )

    reversal = atomic(lambda: engine.stock.reverse("adjustment", 99, actor_user_id=1, note="undo"))

    assert sorted(m.quantity_delta for m in reversal) == [4, 6]
    assert all(m.movement_type == "reversal" for m in reversal)
    assert engine.stock.net_by_item([("adjustment", 99)]) == {
        (item.id, warehouse.id): 0,
        (other_item.id, warehouse.id): 0,
    }
    assert engine.stock.available(item.id, warehouse.id) == 20
    assert len(engine.stock.movements_for("adjustment", 99)) == 4

    # already netted out
    assert atomic(lambda: engine.stock.reverse("adjustment", 99, actor_user_id=1, note="again")) == []


def test_check_availability_is_read_only(engine, item, warehouse, receive):
    receive(item.id, 3)
    shortfalls = engine.stock.check_availability([StockRequest(item.id, warehouse.id, 5)])
    assert shortfalls == [{"item_id": item.id, "warehouse_id": warehouse.id, "requested": 5, "available": 3}]
    assert engine.stock.available(item.id, warehouse.id) == 3


def test_adjust_records_signed_count_correction(engine, item, warehouse):
    up = atomic(lambda: engine.stock.adjust(item_id=item.id, warehouse_id=warehouse.id, quantity_delta=5))
    down = atomic(lambda: engine.stock.adjust(
        item_id=item.id, warehouse_id=warehouse.id, quantity_delta=-3, note="Damaged",
    ))

    assert (up.quantity_delta, down.quantity_delta) == (5, -3)
    assert up.movement_type == down.movement_type == "adjustment"
    assert down.note == "Damaged"
    assert engine.stock.available(item.id, warehouse.id) == 2
    assert engine.stock.movement_sum(item.id, warehouse.id) == 2


def test_adjust_cannot_drive_stock_negative(engine, item, warehouse, receive):
    receive(item.id, 2)

    with pytest.raises(InsufficientStockError):
        atomic(lambda: engine.stock.adjust(item_id=item.id, warehouse_id=warehouse.id, quantity_delta=-3))
    with pytest.raises(ValidationFailedError):
        atomic(lambda: engine.stock.adjust(item_id=item.id, warehouse_id=warehouse.id, quantity_delta=0))

    assert engine.stock.available(item.id, warehouse.id) == 2
