# Overview: Flask CLI command groups for ledger bootstrap, inspection, and tax code maintenance.

# backend/tradebook/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to tradebook (PowerShell: $env:FLASK_APP="tradebook").
# - Use: python -m flask <group> <command> [options]
#
# Books bootstrap/inspection:
# - python -m flask books init
#   Idempotent bootstrap: creates the system posting accounts and default tax codes.
# - python -m flask books reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask books trial-balance
#   Print debit/credit totals per account.
# - python -m flask books verify-postings
#   List documents whose ledger entries do not balance (exit code 1 if any).
#
# Master data:
# - python -m flask books add-customer --code C001 --name "Acme Traders" --credit-limit-cents 500000
# - python -m flask books add-supplier --code S001 --name "Wholesale Co"
# - python -m flask books add-warehouse --code MAIN --name "Main Warehouse"
# - python -m flask books add-item --code SOAP --name "Soap" --sale-price-cents 1000 --tax-code GST18
# - python -m flask books receive-stock --item-id 1 --warehouse-id 1 --quantity 100
# - python -m flask books adjust-stock --item-id 1 --warehouse-id 1 --delta -2 --note "Damaged"
#
# Tax codes:
# - python -m flask tax list [--all]
# - python -m flask tax set GST18 --name "GST 18%" --rate 18
# - python -m flask tax deactivate GST18

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import EngineError
from .extensions import db
from .money import format_cents, percent_to_bps
from .models.tax import TAX_APPLIES_TO, TAX_TYPES
from .services import account_service, item_service, party_service, tax_service
from .services.concurrency import atomic
from .services.engine import get_engine


DEFAULT_TAX_CODES = (
    # code, name, percent, type
    ("GST18", "General Sales Tax 18%", "18", "GST"),
    ("GST0", "Zero rated", "0", "GST"),
)


@click.group('books')
def books_group():
    """Ledger bootstrap and inspection commands."""


@books_group.command('init')
@click.option('--no-tax-codes', is_flag=True, help='Skip the default tax codes')
@with_appcontext
def init_books(no_tax_codes):
    """
    Initialize the chart of system accounts and default tax codes.

    Safe to run repeatedly; existing rows are left untouched.
    """
    click.echo("START Initializing books...")

    created = account_service.ensure_system_accounts()
    for account in created:
        click.echo(f"PASS Created account {account.code} ({account.name})")
    if not created:
        click.echo("PASS System accounts already present")

    if not no_tax_codes:
        existing = {t.code for t in tax_service.list_tax_codes(include_inactive=True)}
        for code, name, percent, tax_type in DEFAULT_TAX_CODES:
            if code in existing:
                continue
            tax_service.save_tax_code(code=code, name=name, rate_bps=percent_to_bps(percent), tax_type=tax_type)
            click.echo(f"PASS Created tax code {code}")

    click.echo("DONE Books initialized.")


@books_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()
    tax_service.get_tax_cache().invalidate()

    click.echo("PASS Database reset complete. Run 'python -m flask books init' to initialize.")


@books_group.command('trial-balance')
@with_appcontext
def trial_balance():
    """Print debit and credit totals for every account with entries."""
    report = get_engine().ledger.trial_balance()

    click.echo("\n" + "=" * 78)
    click.echo(f"{'Code':<12} {'Name':<30} {'Debit':>10} {'Credit':>10} {'Balance':>10}")
    click.echo("-" * 78)
    for row in report["accounts"]:
        click.echo(
            f"{row['code']:<12} {row['name'][:30]:<30} "
            f"{format_cents(row['debit_cents']):>10} {format_cents(row['credit_cents']):>10} "
            f"{format_cents(row['balance_cents']):>10}"
        )
    click.echo("-" * 78)
    click.echo(
        f"{'TOTAL':<43} {format_cents(report['total_debit_cents']):>10} "
        f"{format_cents(report['total_credit_cents']):>10}"
    )
    click.echo("=" * 78 + "\n")
    click.echo("PASS Balanced" if report["balanced"] else "FAIL Trial balance does not balance")


@books_group.command('verify-postings')
@with_appcontext
def verify_postings():
    """Check that every document's ledger entries balance."""
    problems = get_engine().ledger.unbalanced_references()
    if not problems:
        click.echo("PASS All documents balance")
        return
    for p in problems:
        click.echo(
            f"FAIL {p['reference_kind']} #{p['reference_id']}: "
            f"debit {format_cents(p['debit_cents'])} != credit {format_cents(p['credit_cents'])}"
        )
    raise SystemExit(1)


def _run(func):
    try:
        return func()
    except EngineError as e:
        raise click.ClickException(e.message)


@books_group.command('add-customer')
@click.option('--code', required=True, help='Customer code (unique)')
@click.option('--name', required=True, help='Customer name')
@click.option('--credit-limit-cents', type=int, default=None, help='0 or omitted means unlimited')
@click.option('--payment-terms-days', type=int, default=0)
@with_appcontext
def add_customer(code, name, credit_limit_cents, payment_terms_days):
    customer = _run(lambda: party_service.create_customer(
        code=code, name=name, credit_limit_cents=credit_limit_cents, payment_terms_days=payment_terms_days,
    ))
    click.echo(f"PASS Created customer {customer.code} (ID: {customer.id}, account: {customer.account_id})")


@books_group.command('add-supplier')
@click.option('--code', required=True, help='Supplier code (unique)')
@click.option('--name', required=True, help='Supplier name')
@click.option('--payment-terms-days', type=int, default=0)
@with_appcontext
def add_supplier(code, name, payment_terms_days):
    supplier = _run(lambda: party_service.create_supplier(
        code=code, name=name, payment_terms_days=payment_terms_days,
    ))
    click.echo(f"PASS Created supplier {supplier.code} (ID: {supplier.id}, account: {supplier.account_id})")


@books_group.command('add-warehouse')
@click.option('--code', required=True)
@click.option('--name', required=True)
@with_appcontext
def add_warehouse(code, name):
    warehouse = _run(lambda: item_service.create_warehouse(code=code, name=name))
    click.echo(f"PASS Created warehouse {warehouse.code} (ID: {warehouse.id})")


@books_group.command('add-item')
@click.option('--code', required=True)
@click.option('--name', required=True)
@click.option('--sale-price-cents', type=int, default=None)
@click.option('--purchase-price-cents', type=int, default=None)
@click.option('--tax-code', 'tax_codes', multiple=True, help='Default tax code (repeatable)')
@with_appcontext
def add_item(code, name, sale_price_cents, purchase_price_cents, tax_codes):
    item = _run(lambda: item_service.create_item(
        code=code,
        name=name,
        sale_price_cents=sale_price_cents,
        purchase_price_cents=purchase_price_cents,
        default_tax_codes=[c.upper() for c in tax_codes],
    ))
    click.echo(f"PASS Created item {item.code} (ID: {item.id})")


@books_group.command('receive-stock')
@click.option('--item-id', type=int, required=True)
@click.option('--warehouse-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@with_appcontext
def receive_stock(item_id, warehouse_id, quantity):
    """Record an opening balance movement for an item in a warehouse."""
    stock = get_engine().stock
    _run(lambda: atomic(lambda: stock.receive_opening(item_id=item_id, warehouse_id=warehouse_id, quantity=quantity)))
    click.echo(f"PASS Item {item_id} now has {stock.available(item_id, warehouse_id)} in warehouse {warehouse_id}")


@books_group.command('adjust-stock')
@click.option('--item-id', type=int, required=True)
@click.option('--warehouse-id', type=int, required=True)
@click.option('--delta', type=int, required=True, help='Signed quantity change')
@click.option('--note', default=None)
@with_appcontext
def adjust_stock(item_id, warehouse_id, delta, note):
    """Record a count correction movement for an item in a warehouse."""
    stock = get_engine().stock
    _run(lambda: atomic(lambda: stock.adjust(
        item_id=item_id, warehouse_id=warehouse_id, quantity_delta=delta, note=note,
    )))
    click.echo(f"PASS Item {item_id} now has {stock.available(item_id, warehouse_id)} in warehouse {warehouse_id}")


@click.group('tax')
def tax_group():
    """Tax code maintenance (every write invalidates the tax rule cache)."""


@tax_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive codes')
@with_appcontext
def list_tax(include_inactive):
    rows = tax_service.list_tax_codes(include_inactive=include_inactive)
    if not rows:
        click.echo("No tax codes found.")
        return
    click.echo(f"\n{'Code':<12} {'Name':<30} {'Rate':>8} {'Type':<10} {'Compound':<9} {'Applies':<9} Active")
    click.echo("-" * 90)
    for t in rows:
        click.echo(
            f"{t.code:<12} {t.name[:30]:<30} {t.rate_bps / 100:>7.2f}% {t.tax_type:<10} "
            f"{'yes' if t.is_compound else 'no':<9} {t.applies_to:<9} {'yes' if t.is_active else 'no'}"
        )
    click.echo("")


@tax_group.command('set')
@click.argument('code')
@click.option('--name', required=True)
@click.option('--rate', required=True, help='Percent, e.g. 18 or 17.5')
@click.option('--type', 'tax_type', type=click.Choice(TAX_TYPES), default='GST')
@click.option('--compound', is_flag=True, help='Levy on base plus prior taxes')
@click.option('--applies-to', type=click.Choice(TAX_APPLIES_TO), default='both')
@with_appcontext
def set_tax(code, name, rate, tax_type, compound, applies_to):
    """Create or update a tax code."""
    try:
        rate_bps = percent_to_bps(rate)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--rate")
    row = _run(lambda: tax_service.save_tax_code(
        code=code,
        name=name,
        rate_bps=rate_bps,
        tax_type=tax_type,
        is_compound=compound,
        applies_to=applies_to,
    ))
    click.echo(f"PASS Saved tax code {row.code} at {row.rate_bps / 100:.2f}%")


@tax_group.command('deactivate')
@click.argument('code')
@with_appcontext
def deactivate_tax(code):
    row = _run(lambda: tax_service.deactivate_tax_code(code.upper()))
    current_app.logger.info("Tax code %s deactivated from CLI", row.code)
    click.echo(f"PASS Deactivated tax code {row.code}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(books_group)
    app.cli.add_command(tax_group)
