import pytest

from tradebook.errors import (
    CreditLimitExceededError,
    ErrorKind,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationFailedError,
)
from tradebook.models import Invoice, LedgerEntry
from tradebook.services.options import CreateInvoiceOptions, LineOptions, PaymentOptions
from tradebook.services.item_service import set_item_active
from tradebook.services.party_service import create_customer, set_party_active

ACTOR = 7


def _line(item, quantity, **extra):
    line = {"item_id": item.id, "quantity": quantity}
    line.update(extra)
    return line


# =============================================================================
# DRAFTS
# =============================================================================

def test_draft_totals_and_number(make_invoice, stocked_item):
    invoice = make_invoice([_line(stocked_item, 30, unit_price_cents=1000, tax_codes=["GST18"])])

    assert invoice.status == "draft"
    assert invoice.document_number.startswith("SI")
    assert len(invoice.document_number) == 12
    assert invoice.subtotal_cents == 30000
    assert invoice.total_tax_cents == 5400
    assert invoice.grand_total_cents == 35400
    assert invoice.due_date is not None


def test_draft_uses_item_price_and_default_tax(make_invoice, stocked_item):
    invoice = make_invoice([_line(stocked_item, 2)])

    line = invoice.lines[0]
    assert line.unit_price_cents == 1000
    assert line.tax_code_list == ["GST18"]
    assert invoice.total_tax_cents == 360


def test_draft_has_no_side_effects(engine, make_invoice, stocked_item, warehouse):
    invoice = make_invoice([_line(stocked_item, 500)])

    assert engine.stock.available(stocked_item.id, warehouse.id) == 100
    assert engine.stock.movements_for("sale", invoice.id) == []
    assert engine.ledger.entries_for("sale", invoice.id) == []


def test_draft_requires_lines(make_invoice):
    with pytest.raises(ValidationFailedError):
        make_invoice([])


def test_draft_rejects_unknown_option(customer, warehouse):
    with pytest.raises(ValidationFailedError) as exc:
        CreateInvoiceOptions.from_payload(
            {"kind": "sale", "party_id": customer.id, "warehouse_id": warehouse.id, "lines": [], "store_id": 1},
            actor_user_id=ACTOR,
        )
    assert exc.value.details == {"field": "store_id"}


def test_draft_rejects_return_kind(make_invoice, stocked_item):
    with pytest.raises(ValidationFailedError):
        make_invoice([_line(stocked_item, 1)], kind="sale_return")


def test_draft_rejects_unknown_tax_code(make_invoice, stocked_item):
    with pytest.raises(ValidationFailedError):
        make_invoice([_line(stocked_item, 1, tax_codes=["VAT99"])])


def test_draft_for_missing_customer(make_invoice, stocked_item):
    with pytest.raises(NotFoundError):
        make_invoice([_line(stocked_item, 1)], party_id=999999)


def test_draft_rejects_inactive_item(make_invoice, stocked_item):
    set_item_active(stocked_item.id, False)

    with pytest.raises(ValidationFailedError):
        make_invoice([_line(stocked_item, 1)])


def test_confirm_rejects_inactive_customer(engine, make_invoice, stocked_item, customer):
    invoice = make_invoice([_line(stocked_item, 1)])
    set_party_active("customer", customer.id, False)

    with pytest.raises(ValidationFailedError):
        engine.invoices.confirm(invoice.id, actor_user_id=ACTOR)
    assert engine.invoices.get(invoice.id).status == "draft"


def test_update_lines_recomputes_totals(engine, make_invoice, stocked_item):
    invoice = make_invoice([_line(stocked_item, 1, tax_codes=[])])
    assert invoice.grand_total_cents == 1000

    updated = engine.invoices.update_lines(
        invoice.id,
        [LineOptions(item_id=stocked_item.id, quantity=3, tax_codes=("GST18",))],
        actor_user_id=ACTOR,
    )

    assert len(updated.lines) == 1
    assert updated.subtotal_cents == 3000
    assert updated.total_tax_cents == 540
    assert updated.grand_total_cents == 3540


def test_delete_draft(engine, db_session, make_invoice, stocked_item):
    invoice = make_invoice([_line(stocked_item, 1)])
    engine.invoices.delete_draft(invoice.id)
    assert db_session.get(Invoice, invoice.id) is None


# =============================================================================
# CONFIRM
# =============================================================================

def test_confirm_example(engine, make_invoice, stocked_item, warehouse):
    invoice = make_invoice([_line(stocked_item, 30, unit_price_cents=1000, tax_codes=["GST18"])])

    confirmed = engine.invoices.confirm(invoice.id, actor_user_id=ACTOR)

    assert confirmed.status == "confirmed"
    assert confirmed.confirmed_by_user_id == ACTOR
    assert confirmed.confirmed_at is not None
    assert engine.stock.available(stocked_item.id, warehouse.id) == 70

    movements = engine.stock.movements_for("sale", invoice.id)
    assert [m.quantity_delta for m in movements] == [-30]

    totals = engine.ledger.totals_for("sale", invoice.id)
    assert totals == {"debit_cents": 35400, "credit_cents": 35400, "balanced": True}


def test_confirm_against_exact_stock(engine, make_invoice, item, receive, warehouse):
    receive(item.id, 10)
    invoice = make_invoice([_line(item, 10)], confirm=True)

    assert invoice.status == "confirmed"
    assert engine.stock.available(item.id, warehouse.id) == 0


def test_confirm_insufficient_stock_changes_nothing(engine, db_session, make_invoice, item, receive, warehouse):
    receive(item.id, 5)
    invoice = make_invoice([_line(item, 10)])

    with pytest.raises(InsufficientStockError) as exc:
        engine.invoices.confirm(invoice.id, actor_user_id=ACTOR)

    assert exc.value.kind is ErrorKind.INSUFFICIENT_STOCK
    assert exc.value.details["items"][0]["available"] == 5
    assert engine.stock.available(item.id, warehouse.id) == 5
    assert engine.invoices.get(invoice.id).status == "draft"
    assert db_session.query(LedgerEntry).count() == 0


def test_confirm_writes_one_movement_per_line(engine, make_invoice, stocked_item, other_item, receive):
    receive(other_item.id, 10)
    invoice = make_invoice([_line(stocked_item, 2), _line(other_item, 3)], confirm=True)

    assert len(engine.stock.movements_for("sale", invoice.id)) == 2
    assert engine.ledger.totals_for("sale", invoice.id)["balanced"]


def test_confirm_twice_is_invalid_state(engine, make_invoice, stocked_item, warehouse):
    invoice = make_invoice([_line(stocked_item, 5)], confirm=True)

    with pytest.raises(InvalidStateError):
        engine.invoices.confirm(invoice.id, actor_user_id=ACTOR)
    assert engine.stock.available(stocked_item.id, warehouse.id) == 95


def test_confirm_missing_invoice(engine, db_session):
    with pytest.raises(NotFoundError):
        engine.invoices.confirm(424242, actor_user_id=ACTOR)


def test_credit_limit_exceeded(engine, make_invoice, stocked_item, warehouse, system_accounts):
    limited = create_customer(code="C-LIM", name="Limited Ltd", credit_limit_cents=10000)
    invoice = make_invoice([_line(stocked_item, 30, tax_codes=["GST18"])], party_id=limited.id)

    with pytest.raises(CreditLimitExceededError) as exc:
        engine.invoices.confirm(invoice.id, actor_user_id=ACTOR)

    assert exc.value.details["amount_cents"] == 35400
    assert exc.value.details["limit_cents"] == 10000
    assert engine.stock.available(stocked_item.id, warehouse.id) == 100


def test_zero_credit_limit_means_unlimited(engine, make_invoice, stocked_item, system_accounts):
    unlimited = create_customer(code="C-ZERO", name="Zero Limit", credit_limit_cents=0)
    invoice = make_invoice([_line(stocked_item, 30)], party_id=unlimited.id, confirm=True)
    assert invoice.status == "confirmed"


def test_discount_requires_adjustment_account(engine, make_invoice, stocked_item):
    invoice = make_invoice([_line(stocked_item, 1, discount1_percent=10)])

    with pytest.raises(ValidationFailedError):
        engine.invoices.confirm(invoice.id, actor_user_id=ACTOR)
    assert engine.invoices.get(invoice.id).status == "draft"


def test_discount_posts_trade_offer(engine, make_invoice, stocked_item, adjustment_account, customer):
    invoice = make_invoice(
        [_line(stocked_item, 1, unit_price_cents=1000, discount1_percent=10, discount2_percent=5, tax_codes=[])],
        adjustment_account_id=adjustment_account,
        confirm=True,
    )

    assert invoice.total_discount_cents == 145
    assert invoice.grand_total_cents == 855
    assert engine.ledger.balance(adjustment_account) == 145
    assert engine.parties.balance("customer", customer.id) == 855
    assert engine.ledger.totals_for("sale", invoice.id)["balanced"]


def test_income_tax_posted_when_requested(engine, make_invoice, stocked_item, system_accounts):
    invoice = make_invoice([_line(stocked_item, 30, tax_codes=["GST18"])], apply_income_tax=True, confirm=True)

    assert invoice.income_tax_cents == 1947
    assert engine.ledger.balance(system_accounts["2300"]) == 1947
    assert engine.ledger.totals_for("sale", invoice.id)["balanced"]


def test_purchase_confirm_receives_stock(engine, make_invoice, item, warehouse, supplier, system_accounts):
    invoice = make_invoice([_line(item, 8, tax_codes=["GST18"])], kind="purchase", confirm=True)

    assert invoice.document_number.startswith("PI")
    assert engine.stock.available(item.id, warehouse.id) == 8
    # 8 * 600 + 18% tax, owed to the supplier
    assert engine.parties.balance("supplier", supplier.id) == -5664
    assert engine.ledger.balance(system_accounts["1400"]) == 864


def test_sale_only_tax_code_rejected_on_purchase(make_invoice, item):
    with pytest.raises(ValidationFailedError):
        make_invoice([_line(item, 1, tax_codes=["ST5"])], kind="purchase")


def test_confirmed_lines_cannot_change(engine, make_invoice, stocked_item):
    invoice = make_invoice([_line(stocked_item, 1)], confirm=True)

    with pytest.raises(InvalidStateError):
        engine.invoices.update_lines(
            invoice.id, [LineOptions(item_id=stocked_item.id, quantity=2)], actor_user_id=ACTOR
        )
    with pytest.raises(InvalidStateError):
        engine.invoices.delete_draft(invoice.id)


# =============================================================================
# PAYMENT STATUS
# =============================================================================

def test_mark_paid(engine, make_invoice, stocked_item):
    invoice = make_invoice([_line(stocked_item, 1)], confirm=True)

    paid = engine.invoices.mark_paid(invoice.id, PaymentOptions(actor_user_id=ACTOR))

    assert paid.payment_status == "paid"
    assert paid.amount_paid_cents == paid.grand_total_cents
    assert paid.paid_at is not None
    with pytest.raises(InvalidStateError):
        engine.invoices.mark_paid(invoice.id, PaymentOptions(actor_user_id=ACTOR))


def test_draft_cannot_be_paid(engine, make_invoice, stocked_item):
    invoice = make_invoice([_line(stocked_item, 1)])
    with pytest.raises(InvalidStateError):
        engine.invoices.mark_paid(invoice.id, PaymentOptions(actor_user_id=ACTOR))


def test_partial_payments_accumulate(engine, make_invoice, stocked_item):
    invoice = make_invoice([_line(stocked_item, 30, tax_codes=["GST18"])], confirm=True)

    first = engine.invoices.mark_partially_paid(invoice.id, PaymentOptions(actor_user_id=ACTOR, amount_cents=10000))
    assert first.payment_status == "partial"
    assert first.amount_paid_cents == 10000

    second = engine.invoices.mark_partially_paid(invoice.id, PaymentOptions(actor_user_id=ACTOR, amount_cents=25400))
    assert second.payment_status == "paid"
    assert second.amount_paid_cents == 35400


@pytest.mark.parametrize("amount", [None, 0, -5])
def test_partial_payment_needs_positive_amount(engine, make_invoice, stocked_item, amount):
    invoice = make_invoice([_line(stocked_item, 1)], confirm=True)
    with pytest.raises(ValidationFailedError):
        engine.invoices.mark_partially_paid(invoice.id, PaymentOptions(actor_user_id=ACTOR, amount_cents=amount))


# =============================================================================
# CANCEL
# =============================================================================

def test_cancel_confirmed_reverses_everything(engine, make_invoice, stocked_item, warehouse, adjustment_account):
    invoice = make_invoice(
        [_line(stocked_item, 30, discount1_percent=10, tax_codes=["GST18"])],
        adjustment_account_id=adjustment_account,
        apply_income_tax=True,
        confirm=True,
    )

    cancelled = engine.invoices.cancel(invoice.id, actor_user_id=ACTOR, reason="Customer changed order")

    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_by_user_id == ACTOR
    assert cancelled.cancellation_reason == "Customer changed order"
    assert engine.stock.available(stocked_item.id, warehouse.id) == 100
    assert engine.stock.net_by_item([("sale", invoice.id)]) == {(stocked_item.id, warehouse.id): 0}
    net = engine.ledger.net_by_account([("sale", invoice.id)])
    assert net and set(net.values()) == {0}

    reversal = [e for e in engine.ledger.entries_for("sale", invoice.id) if e.reason == "reversal"]
    assert reversal
    assert reversal[0].memo.startswith(f"Reversal: sale {invoice.document_number} cancelled.")


def test_cancel_draft_has_nothing_to_reverse(engine, make_invoice, stocked_item):
    invoice = make_invoice([_line(stocked_item, 1)])

    cancelled = engine.invoices.cancel(invoice.id, actor_user_id=ACTOR)

    assert cancelled.status == "cancelled"
    assert engine.stock.movements_for("sale", invoice.id) == []
    assert engine.ledger.entries_for("sale", invoice.id) == []


def test_cancel_paid_is_rejected(engine, make_invoice, stocked_item, warehouse):
    invoice = make_invoice([_line(stocked_item, 5)], confirm=True)
    engine.invoices.mark_paid(invoice.id, PaymentOptions(actor_user_id=ACTOR))

    with pytest.raises(InvalidStateError):
        engine.invoices.cancel(invoice.id, actor_user_id=ACTOR)
    assert engine.invoices.get(invoice.id).status == "confirmed"
    assert engine.stock.available(stocked_item.id, warehouse.id) == 95


def test_cancel_twice_is_invalid_state(engine, make_invoice, stocked_item):
    invoice = make_invoice([_line(stocked_item, 1)], confirm=True)
    engine.invoices.cancel(invoice.id, actor_user_id=ACTOR)

    with pytest.raises(InvalidStateError):
        engine.invoices.cancel(invoice.id, actor_user_id=ACTOR)
    with pytest.raises(InvalidStateError):
        engine.invoices.confirm(invoice.id, actor_user_id=ACTOR)


def test_cancelled_purchase_cannot_leave_negative_stock(engine, make_invoice, item, warehouse):
    purchase = make_invoice([_line(item, 10)], kind="purchase", confirm=True)
    make_invoice([_line(item, 8)], confirm=True)

    with pytest.raises(InsufficientStockError):
        engine.invoices.cancel(purchase.id, actor_user_id=ACTOR)
    assert engine.invoices.get(purchase.id).status == "confirmed"
    assert engine.stock.available(item.id, warehouse.id) == 2


def test_list_invoices_filters(engine, make_invoice, stocked_item):
    from tradebook.services.options import InvoiceFilter

    draft = make_invoice([_line(stocked_item, 1)])
    confirmed = make_invoice([_line(stocked_item, 1)], confirm=True)

    drafts = engine.invoices.list_invoices(InvoiceFilter(status="draft"))
    assert [i.id for i in drafts] == [draft.id]
    everything = engine.invoices.list_invoices(InvoiceFilter(kind="sale"))
    assert {i.id for i in everything} == {draft.id, confirmed.id}
