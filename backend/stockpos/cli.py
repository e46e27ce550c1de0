# Overview: Flask CLI command groups for bootstrap, stock movements, ledger checks and coupons.

# backend/stockpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "stockpos:create_app" (PowerShell: $env:FLASK_APP="stockpos:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent: creates tables and the default admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock movements:
# - python -m flask stock in --product-id 1 --quantity 10 --notes "Found in back room"
# - python -m flask stock out --product-id 1 --quantity 2 --notes "Damaged"
# - python -m flask stock history --product-id 1 --limit 20
#   Ledger rows, newest first (filter by --kind sale|purchase|manual and --reference-id).
# - python -m flask stock low
#   Products at or below their minimum stock level.
#
# Ledger checks:
# - python -m flask ledger verify [--product-id 1]
#   Compare current_stock to the signed sum of ledger rows.
#
# Coupons:
# - python -m flask coupons validate CPN-AB12CD
# - python -m flask coupons generate --customer-id 1 --kind percentage --value 10 --days 14
#
# Document numbering:
# - python -m flask sequences peek invoice
#   Advisory: next invoice / purchase-order number.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services import coupon_service, inventory_service
from .services.document_service import SERIES, peek_next_document_number
from .services.filters import InventoryQuery, LedgerQuery
from .validation import DISCOUNT_KINDS, REFERENCE_KINDS, ServiceError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-email', default='admin@stockpos.local', help='Default admin e-mail')
@with_appcontext
def init_system(admin_email):
    """Create tables and the default admin user (idempotent)."""
    click.echo("START Initializing stockpos...")
    db.create_all()

    admin = db.session.query(User).filter_by(email=admin_email).first()
    if admin:
        click.echo(f"PASS Using existing admin: {admin.email} (ID: {admin.id})")
    else:
        admin = User(name="Administrator", email=admin_email, role="admin", is_active=True)
        db.session.add(admin)
        db.session.commit()
        click.echo(f"PASS Created admin: {admin.email} (ID: {admin.id})")

    current_app.logger.info("system initialized")
    click.echo("DONE stockpos initialized")


@system_group.command('reset-db')
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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('stock')
def stock_group():
    """Manual stock movements and ledger history."""


@stock_group.command('in')
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--notes', default=None)
@click.option('--actor-id', type=int, default=None, help='User recording the movement')
@with_appcontext
def stock_in_cli(product_id, quantity, notes, actor_id):
    try:
        result = inventory_service.stock_in(
            db.session, product_id=product_id, quantity=quantity, notes=notes, actor_id=actor_id
        )
    except ServiceError as e:
        click.echo(f"FAIL Error: {str(e)}")
        return
    click.echo(f"PASS Stock in: product {product_id} +{quantity} -> {result.new_stock} (ledger #{result.entry.id})")


@stock_group.command('out')
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--notes', default=None)
@click.option('--actor-id', type=int, default=None, help='User recording the movement')
@with_appcontext
def stock_out_cli(product_id, quantity, notes, actor_id):
    try:
        result = inventory_service.stock_out(
            db.session, product_id=product_id, quantity=quantity, notes=notes, actor_id=actor_id
        )
    except ServiceError as e:
        click.echo(f"FAIL Error: {str(e)}")
        return
    click.echo(f"PASS Stock out: product {product_id} -{quantity} -> {result.new_stock} (ledger #{result.entry.id})")


@stock_group.command('history')
@click.option('--product-id', type=int, default=None)
@click.option('--kind', 'reference_kind', type=click.Choice(REFERENCE_KINDS), default=None)
@click.option('--reference-id', type=int, default=None)
@click.option('--limit', type=int, default=20)
@with_appcontext
def stock_history_cli(product_id, reference_kind, reference_id, limit):
    """
    List ledger rows, newest first.

    Example:
        flask stock history --product-id 1
        flask stock history --kind sale --reference-id 12
    """
    try:
        query = LedgerQuery(
            product_id=product_id,
            reference_kind=reference_kind,
            reference_id=reference_id,
            limit=limit,
        )
    except ServiceError as e:
        click.echo(f"FAIL Error: {str(e)}")
        return

    page = inventory_service.list_stock_transactions(db.session, query)
    if not page.items:
        click.echo("No ledger entries found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<6} {'Product':<8} {'Direction':<10} {'Qty':>6} {'Kind':<9} {'Ref':<6} {'Notes'}")
    click.echo("="*100)
    for entry in page.items:
        ref = entry.reference_id if entry.reference_id is not None else "-"
        click.echo(
            f"{entry.id:<6} {entry.product_id:<8} {entry.direction:<10} {entry.quantity:>6} "
            f"{entry.reference_kind:<9} {str(ref):<6} {entry.notes or ''}"
        )
    click.echo(f"\nShowing {len(page.items)} of {page.total} entries")


@stock_group.command('low')
@with_appcontext
def stock_low_cli():
    """Products at or below their minimum stock level."""
    page = inventory_service.list_inventory(db.session, InventoryQuery(low_stock_only=True, limit=500))
    if not page.items:
        click.echo("No low stock products.")
        return

    for row in page.items:
        product = row["product"]
        click.echo(
            f"WARN  {product['sku']:<12} {product['product_name']:<30} "
            f"stock={row['current_stock']} min={product['minimum_stock_level']}"
        )


@click.group('ledger')
def ledger_group():
    """Stock ledger consistency checks."""


@ledger_group.command('verify')
@click.option('--product-id', type=int, default=None)
@with_appcontext
def verify_ledger_cli(product_id):
    """Compare current_stock with the signed ledger sum."""
    if product_id is not None:
        check = inventory_service.verify_conservation(db.session, product_id)
        status = "PASS" if check.consistent else "FAIL"
        click.echo(
            f"{status} product {product_id}: current_stock={check.current_stock} ledger={check.ledger_total}"
        )
        return

    drift = inventory_service.find_ledger_drift(db.session)
    if not drift:
        click.echo("PASS Ledger consistent for all products")
        return

    current_app.logger.warning("ledger drift detected for %s products", len(drift))
    for check in drift:
        click.echo(
            f"FAIL product {check.product_id}: current_stock={check.current_stock} ledger={check.ledger_total}"
        )


@click.group('coupons')
def coupons_group():
    """Coupon inspection and issuing."""


@coupons_group.command('validate')
@click.argument('code')
@with_appcontext
def validate_coupon_cli(code):
    try:
        result = coupon_service.validate_coupon(db.session, code)
    except ServiceError as e:
        click.echo(f"FAIL {str(e)}")
        return
    owner = result.customer_name or "any customer"
    click.echo(
        f"PASS {result.code}: {result.discount_kind} {result.discount_value} "
        f"for {owner}, expires {result.expiry_date:%Y-%m-%d}"
    )


@coupons_group.command('generate')
@click.option('--customer-id', type=int, required=True)
@click.option('--kind', 'discount_kind', type=click.Choice(DISCOUNT_KINDS), default=None)
@click.option('--value', 'discount_value', type=int, default=None, help='Percent, or cents for fixed')
@click.option('--days', 'expiry_days', type=int, default=None)
@with_appcontext
def generate_coupon_cli(customer_id, discount_kind, discount_value, expiry_days):
    try:
        coupon = coupon_service.generate_manual_coupon(
            db.session,
            customer_id=customer_id,
            discount_kind=discount_kind,
            discount_value=discount_value,
            expiry_days=expiry_days,
        )
    except ServiceError as e:
        click.echo(f"FAIL Error: {str(e)}")
        return
    click.echo(f"PASS Created coupon {coupon.code} (expires {coupon.expiry_date:%Y-%m-%d})")


@click.group('sequences')
def sequences_group():
    """Document numbering."""


@sequences_group.command('peek')
@click.argument('series', type=click.Choice(sorted(SERIES)))
@with_appcontext
def peek_sequence_cli(series):
    click.echo(peek_next_document_number(db.session, series))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(coupons_group)
    app.cli.add_command(sequences_group)
