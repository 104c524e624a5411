import pytest

from tradebook.errors import (
    InvalidStateError,
    NotFoundError,
    ReturnQuantityExceededError,
    ValidationFailedError,
)
from tradebook.models import StockMovement
from tradebook.services.item_service import create_item
from tradebook.services.options import ReturnOptions
from tradebook.services.tax_service import save_tax_code


ACTOR = 7


def _return(engine, invoice_id, lines, **extra):
    payload = {"lines": lines}
    payload.update(extra)
    return engine.returns.create_return(invoice_id, ReturnOptions.from_payload(payload, actor_user_id=ACTOR))


def _net_zero(mapping) -> bool:
    return bool(mapping) and set(mapping.values()) == {0}


@pytest.fixture
def discounted_sale(make_invoice, stocked_item, adjustment_account):
    """3 units at 3.33 with 10% discount and 18% tax: an awkward rounding case."""
    return make_invoice(
        [{
            "item_id": stocked_item.id,
            "quantity": 3,
            "unit_price_cents": 333,
            "discount1_percent": 10,
            "tax_codes": ["GST18"],
        }],
        adjustment_account_id=adjustment_account,
        confirm=True,
    )


def test_full_return_nets_to_zero(engine, discounted_sale, stocked_item, warehouse):
    line = discounted_sale.lines[0]

    doc = _return(engine, discounted_sale.id, [{"original_line_id": line.id, "quantity": 3}], reason="Damaged")

    assert doc.kind == "sale_return"
    assert doc.status == "confirmed"
    assert doc.document_number.startswith("SR")
    assert doc.original_invoice_id == discounted_sale.id
    assert doc.return_reason == "Damaged"
    assert doc.grand_total_cents == -discounted_sale.grand_total_cents
    assert engine.stock.available(stocked_item.id, warehouse.id) == 100

    refs = [("sale", discounted_sale.id), ("sale_return", doc.id)]
    assert _net_zero(engine.stock.net_by_item(refs))
    assert _net_zero(engine.ledger.net_by_account(refs))
    assert engine.ledger.totals_for("sale_return", doc.id)["balanced"]


def test_second_return_of_fully_returned_line_fails(engine, discounted_sale, db_session):
    line = discounted_sale.lines[0]
    _return(engine, discounted_sale.id, [{"original_line_id": line.id, "quantity": 3}])
    movements_before = db_session.query(StockMovement).count()

    with pytest.raises(ReturnQuantityExceededError) as exc:
        _return(engine, discounted_sale.id, [{"original_line_id": line.id, "quantity": 1}])

    assert exc.value.details["items"] == [
        {"item_id": line.item_id, "line_id": line.id, "requested": 1, "available": 0}
    ]
    assert db_session.query(StockMovement).count() == movements_before


def test_partial_returns_use_exact_residual(engine, discounted_sale):
    line = discounted_sale.lines[0]
    # original: 999 gross, 100 discount, 162 tax, 1061 total

    first = _return(engine, discounted_sale.id, [{"original_line_id": line.id, "quantity": 1}])
    assert first.subtotal_cents == -333
    assert first.total_discount_cents == -33
    assert first.total_tax_cents == -54
    assert first.grand_total_cents == -354

    remaining = {r.line_id: r.remaining_quantity for r in engine.returns.get_returnable(discounted_sale.id)}
    assert remaining == {line.id: 2}

    second = _return(engine, discounted_sale.id, [{"item_id": line.item_id, "quantity": 2}])
    assert second.subtotal_cents == -666
    assert second.total_discount_cents == -67
    assert second.total_tax_cents == -108
    assert second.grand_total_cents == -707

    refs = [("sale", discounted_sale.id), ("sale_return", first.id), ("sale_return", second.id)]
    assert _net_zero(engine.ledger.net_by_account(refs))
    assert _net_zero(engine.stock.net_by_item(refs))


def test_exceeded_items_are_all_reported(engine, make_invoice, stocked_item, other_item, receive):
    receive(other_item.id, 10)
    sale = make_invoice(
        [{"item_id": stocked_item.id, "quantity": 2}, {"item_id": other_item.id, "quantity": 1}],
        confirm=True,
    )

    with pytest.raises(ReturnQuantityExceededError) as exc:
        _return(engine, sale.id, [
            {"item_id": stocked_item.id, "quantity": 5},
            {"item_id": other_item.id, "quantity": 2},
        ])

    by_item = {i["item_id"]: i for i in exc.value.details["items"]}
    assert by_item[stocked_item.id]["available"] == 2
    assert by_item[other_item.id]["requested"] == 2
    assert engine.returns.returns_for(sale.id) == []


def test_return_requires_confirmed_original(engine, make_invoice, stocked_item):
    draft = make_invoice([{"item_id": stocked_item.id, "quantity": 1}])

    with pytest.raises(InvalidStateError):
        _return(engine, draft.id, [{"item_id": stocked_item.id, "quantity": 1}])


def test_return_of_return_is_rejected(engine, make_invoice, stocked_item):
    sale = make_invoice([{"item_id": stocked_item.id, "quantity": 2}], confirm=True)
    doc = _return(engine, sale.id, [{"item_id": stocked_item.id, "quantity": 1}])

    with pytest.raises(InvalidStateError):
        _return(engine, doc.id, [{"item_id": stocked_item.id, "quantity": 1}])


def test_return_of_missing_invoice(engine, db_session):
    with pytest.raises(NotFoundError):
        _return(engine, 987654, [{"item_id": 1, "quantity": 1}])


def test_return_item_not_on_invoice(engine, make_invoice, stocked_item, other_item):
    sale = make_invoice([{"item_id": stocked_item.id, "quantity": 2}], confirm=True)

    with pytest.raises(ValidationFailedError):
        _return(engine, sale.id, [{"item_id": other_item.id, "quantity": 1}])


def test_return_line_needs_reference(engine, make_invoice, stocked_item):
    sale = make_invoice([{"item_id": stocked_item.id, "quantity": 2}], confirm=True)
    with pytest.raises(ValidationFailedError):
        _return(engine, sale.id, [{"quantity": 1}])


def test_cancelling_a_return_frees_quantity(engine, make_invoice, stocked_item, warehouse):
    sale = make_invoice([{"item_id": stocked_item.id, "quantity": 4}], confirm=True)
    doc = _return(engine, sale.id, [{"item_id": stocked_item.id, "quantity": 4}])
    assert engine.stock.available(stocked_item.id, warehouse.id) == 100

    engine.invoices.cancel(doc.id, actor_user_id=ACTOR, reason="Entered twice")

    assert engine.stock.available(stocked_item.id, warehouse.id) == 96
    assert engine.returns.get_returnable(sale.id)[0].remaining_quantity == 4
    assert engine.returns.returns_for(sale.id) == []
    assert len(engine.returns.returns_for(sale.id, include_cancelled=True)) == 1
    assert _net_zero(engine.ledger.net_by_account([("sale_return", doc.id)]))


def test_original_with_live_returns_cannot_be_cancelled(engine, make_invoice, stocked_item):
    sale = make_invoice([{"item_id": stocked_item.id, "quantity": 4}], confirm=True)
    _return(engine, sale.id, [{"item_id": stocked_item.id, "quantity": 1}])

    with pytest.raises(InvalidStateError):
        engine.invoices.cancel(sale.id, actor_user_id=ACTOR)


def test_purchase_return_sends_stock_back(engine, make_invoice, item, warehouse, supplier):
    purchase = make_invoice([{"item_id": item.id, "quantity": 10, "tax_codes": ["GST18"]}], kind="purchase", confirm=True)

    doc = _return(engine, purchase.id, [{"item_id": item.id, "quantity": 4}])

    assert doc.kind == "purchase_return"
    assert doc.document_number.startswith("PR")
    assert engine.stock.available(item.id, warehouse.id) == 6
    # 6 of 10 units still owed: 6 * 600 * 1.18
    assert engine.parties.balance("supplier", supplier.id) == -4248


def test_income_tax_reversed_in_full(engine, make_invoice, stocked_item, system_accounts):
    sale = make_invoice(
        [{"item_id": stocked_item.id, "quantity": 30, "tax_codes": ["GST18"]}],
        apply_income_tax=True,
        confirm=True,
    )
    assert sale.income_tax_cents == 1947

    _return(engine, sale.id, [{"item_id": stocked_item.id, "quantity": 10}])
    _return(engine, sale.id, [{"item_id": stocked_item.id, "quantity": 20}])

    assert engine.ledger.balance(system_accounts["2300"]) == 0


@pytest.mark.parametrize("pricing", [
    {"tax_codes": ["GST10"]},
    {"tax_codes": [], "discount1_percent": 10},
])
def test_many_small_returns_never_over_reverse(
    engine, make_invoice, receive, adjustment_account, system_accounts, warehouse, pricing
):
    save_tax_code(code="GST10", name="GST 10%", rate_bps=1000)
    peg = create_item(code="PEG", name="Clothes Peg", sale_price_cents=5)
    receive(peg.id, 10)
    sale = make_invoice(
        [dict({"item_id": peg.id, "quantity": 10}, **pricing)],
        adjustment_account_id=adjustment_account,
        confirm=True,
    )

    docs = [_return(engine, sale.id, [{"item_id": peg.id, "quantity": q}]) for q in (3, 3, 3, 1)]

    assert sum(d.total_tax_cents for d in docs) == -sale.total_tax_cents
    assert sum(d.total_discount_cents for d in docs) == -sale.total_discount_cents
    for doc in docs:
        assert doc.total_tax_cents <= 0
        assert doc.total_discount_cents <= 0
    refs = [("sale", sale.id)] + [("sale_return", d.id) for d in docs]
    assert _net_zero(engine.ledger.net_by_account(refs))
    assert engine.ledger.balance(system_accounts["2200"]) == 0
    assert engine.ledger.balance(adjustment_account) == 0
    assert engine.stock.available(peg.id, warehouse.id) == 10
