"""
Pytest fixtures for tradebook backend tests.

Provides test database setup, master data fixtures (accounts, tax codes,
parties, items, stock) and a factory for invoices.
"""

import pytest

from tradebook import create_app
from tradebook.extensions import db
from tradebook.models import Account
from tradebook.services.account_service import create_account, ensure_system_accounts
from tradebook.services.concurrency import atomic
from tradebook.services.engine import get_engine
from tradebook.services.item_service import create_item, create_warehouse
from tradebook.services.options import CreateInvoiceOptions
from tradebook.services.party_service import create_customer, create_supplier
from tradebook.services.tax_service import get_tax_cache, save_tax_code


ACTOR = 7


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        get_tax_cache().invalidate()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def engine(db_session):
    return get_engine()


@pytest.fixture(scope='function')
def system_accounts(db_session):
    """System posting accounts keyed by code (4000 sales, 2200 output tax, ...)."""
    ensure_system_accounts()
    return {a.code: a.id for a in db_session.query(Account).all()}


@pytest.fixture(scope='function')
def tax_codes(db_session):
    save_tax_code(code="GST18", name="GST 18%", rate_bps=1800)
    save_tax_code(code="GST17", name="GST 17%", rate_bps=1700)
    save_tax_code(code="FED", name="Federal excise", rate_bps=1000, tax_type="CUSTOM", is_compound=True)
    save_tax_code(code="ST5", name="Sales only 5%", rate_bps=500, tax_type="SALES_TAX", applies_to="sale")


@pytest.fixture(scope='function')
def warehouse(db_session):
    return create_warehouse(code="MAIN", name="Main Warehouse")


@pytest.fixture(scope='function')
def customer(db_session, system_accounts):
    return create_customer(code="C001", name="Acme Traders", payment_terms_days=30)


@pytest.fixture(scope='function')
def supplier(db_session, system_accounts):
    return create_supplier(code="S001", name="Wholesale Co")


@pytest.fixture(scope='function')
def adjustment_account(db_session):
    account = create_account(code="4150", name="Trade Offers Given", account_type="expense")
    return account.id


@pytest.fixture(scope='function')
def item(db_session, tax_codes):
    return create_item(
        code="SOAP",
        name="Soap Bar",
        sale_price_cents=1000,
        purchase_price_cents=600,
        default_tax_codes=["GST18"],
    )


@pytest.fixture(scope='function')
def other_item(db_session, tax_codes):
    return create_item(code="OIL", name="Cooking Oil", sale_price_cents=2500, purchase_price_cents=2000)


@pytest.fixture(scope='function')
def receive(engine, warehouse):
    """receive(item_id, quantity) books opening stock into the main warehouse."""
    def _receive(item_id, quantity, warehouse_id=None):
        atomic(lambda: engine.stock.receive_opening(
            item_id=item_id,
            warehouse_id=warehouse_id or warehouse.id,
            quantity=quantity,
        ))
    return _receive


@pytest.fixture(scope='function')
def stocked_item(item, receive):
    """Item with 100 units on hand in the main warehouse."""
    receive(item.id, 100)
    return item


@pytest.fixture(scope='function')
def make_invoice(engine, customer, supplier, warehouse):
    """
    make_invoice(lines=[...], kind="sale", confirm=False, **payload) -> Invoice

    Builds the draft through CreateInvoiceOptions exactly like the API does.
    """
    def _make(lines, kind="sale", confirm=False, **payload):
        data = {
            "kind": kind,
            "party_id": customer.id if kind == "sale" else supplier.id,
            "warehouse_id": warehouse.id,
            "lines": lines,
        }
        data.update(payload)
        options = CreateInvoiceOptions.from_payload(data, actor_user_id=ACTOR)
        invoice = engine.invoices.create_draft(options)
        if confirm:
            invoice = engine.invoices.confirm(invoice.id, actor_user_id=ACTOR)
        return invoice
    return _make
