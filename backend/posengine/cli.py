# Overview: Flask CLI command groups for bootstrap, stock operations, shifts, Z-reports and the outbox.

# backend/posengine/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "posengine:create_app" (PowerShell: $env:FLASK_APP="posengine:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, the MAIN location and the CASH/CARD/WALLET payment methods.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock:
# - python -m flask stock receive --location-id 1 --variant-id 5 --quantity 12 --actor-id 1
# - python -m flask stock adjust --location-id 1 --variant-id 5 --delta -2 --reason DAMAGED --actor-id 1
# - python -m flask stock transfer --from-location-id 1 --to-location-id 2 --variant-id 5 --quantity 3 --actor-id 1
# - python -m flask stock levels --location-id 1
# - python -m flask stock low-stock --location-id 1
#
# Shifts / reporting:
# - python -m flask shifts list --location-id 1 --limit 20
# - python -m flask zreport generate --location-id 1 --date 2024-01-15 --actor-id 1
# - python -m flask zreport list --location-id 1
#
# Outbox:
# - python -m flask outbox dispatch --limit 100
#   Deliver pending events/notifications to the configured sinks.

import click
from flask import current_app
from flask.cli import with_appcontext

from .engine import get_engine
from .errors import EngineError
from .extensions import db
from .models import Location, PaymentMethod
from .services.stock_ledger import StockLineInput
from .states import PaymentMethodType

DEFAULT_PAYMENT_METHODS = [
    ("Cash", PaymentMethodType.CASH.value, 1),
    ("Card", PaymentMethodType.CARD.value, 2),
    ("Wallet", PaymentMethodType.WALLET.value, 3),
]


def _run(func, *args, **kwargs):
    """Call an engine operation, turning engine errors into CLI errors."""
    try:
        return func(*args, **kwargs)
    except EngineError as exc:
        raise click.ClickException(exc.message) from exc


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--location-code', default='MAIN', show_default=True, help='Code of the default location')
@click.option('--location-name', default='Main Store', show_default=True, help='Name of the default location')
@with_appcontext
def init_system(location_code, location_name):
    """Create tables and seed the default location and payment methods (idempotent)."""
    click.echo("START Initializing POS engine...")
    db.create_all()

    location = db.session.query(Location).filter_by(code=location_code).first()
    if location is None:
        location = Location(code=location_code, name=location_name, is_active=True)
        db.session.add(location)
        db.session.commit()
        click.echo(f"PASS Created location: {location.code} (ID: {location.id})")
    else:
        click.echo(f"PASS Using existing location: {location.code} (ID: {location.id})")

    for name, method_type, sort_order in DEFAULT_PAYMENT_METHODS:
        existing = db.session.query(PaymentMethod).filter_by(method_type=method_type).first()
        if existing:
            click.echo(f"WARN  Payment method '{method_type}' already exists, skipping...")
            continue
        db.session.add(PaymentMethod(name=name, method_type=method_type, is_active=True, sort_order=sort_order))
        db.session.commit()
        click.echo(f"PASS Created payment method: {name}")

    click.echo("DONE POS engine initialized.")


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


# =============================================================================
# STOCK
# =============================================================================

@click.group('stock')
def stock_group():
    """Stock ledger operations."""


@stock_group.command('receive')
@click.option('--location-id', type=int, required=True)
@click.option('--variant-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--actor-id', type=int, required=True)
@click.option('--reference', default=None, help='Supplier document / delivery note')
@click.option('--notes', default=None)
@with_appcontext
def receive_stock(location_id, variant_id, quantity, actor_id, reference, notes):
    """Receive stock into a location."""
    engine = get_engine()
    quantities = _run(
        engine.stock.receive,
        location_id,
        [StockLineInput(variant_id=variant_id, quantity=quantity)],
        actor_id=actor_id,
        reference=reference,
        notes=notes,
    )
    click.echo(f"PASS Received {quantity} of variant {variant_id}; on hand: {quantities[0]}")


@stock_group.command('adjust')
@click.option('--location-id', type=int, required=True)
@click.option('--variant-id', type=int, required=True)
@click.option('--delta', type=int, required=True, help='Signed quantity change')
@click.option('--reason', required=True)
@click.option('--actor-id', type=int, required=True)
@click.option('--notes', default=None)
@with_appcontext
def adjust_stock(location_id, variant_id, delta, reason, actor_id, notes):
    """Manual stock correction (may not go negative)."""
    engine = get_engine()
    quantity = _run(
        engine.stock.adjust,
        variant_id,
        location_id,
        delta,
        reason=reason,
        actor_id=actor_id,
        notes=notes,
    )
    click.echo(f"PASS Adjusted variant {variant_id} by {delta}; on hand: {quantity}")


@stock_group.command('transfer')
@click.option('--from-location-id', type=int, required=True)
@click.option('--to-location-id', type=int, required=True)
@click.option('--variant-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--actor-id', type=int, required=True)
@click.option('--notes', default=None)
@with_appcontext
def transfer_stock(from_location_id, to_location_id, variant_id, quantity, actor_id, notes):
    """Move stock between two locations."""
    engine = get_engine()
    result = _run(
        engine.stock.transfer,
        from_location_id,
        to_location_id,
        [StockLineInput(variant_id=variant_id, quantity=quantity)],
        actor_id=actor_id,
        notes=notes,
    )
    line = result["lines"][0]
    click.echo(
        f"PASS Transfer {result['transfer_number']}: "
        f"source on hand {line['from_quantity']}, destination on hand {line['to_quantity']}"
    )


@stock_group.command('levels')
@click.option('--location-id', type=int, required=True)
@with_appcontext
def list_levels(location_id):
    """List stock levels at a location."""
    levels = get_engine().stock.levels(location_id)
    if not levels:
        click.echo("No stock levels found.")
        return

    click.echo(f"\n{'Variant':<10} {'On hand':>8} {'Reserved':>9} {'Available':>10} {'Reorder':>8}")
    click.echo("-" * 50)
    for level in levels:
        click.echo(
            f"{level.variant_id:<10} {level.quantity_on_hand:>8} {level.quantity_reserved:>9} "
            f"{level.available:>10} {level.reorder_level:>8}"
        )
    click.echo(f"\nTotal: {len(levels)} level(s)")


@stock_group.command('low-stock')
@click.option('--location-id', type=int, required=True)
@with_appcontext
def list_low_stock(location_id):
    """List levels at or below their reorder level."""
    levels = get_engine().stock.low_stock(location_id)
    if not levels:
        click.echo("PASS Nothing below reorder level.")
        return
    for level in levels:
        click.echo(
            f"WARN  variant {level.variant_id}: available {level.available} "
            f"(reorder at {level.reorder_level}, reorder qty {level.reorder_quantity})"
        )


# =============================================================================
# SHIFTS
# =============================================================================

@click.group('shifts')
def shifts_group():
    """Shift inspection."""


@shifts_group.command('list')
@click.option('--actor-id', type=int, default=None)
@click.option('--location-id', type=int, default=None)
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_shifts(actor_id, location_id, limit):
    """List recent shifts, newest first."""
    shifts = get_engine().shifts.history(actor_id=actor_id, location_id=location_id, limit=limit)
    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo(f"\n{'ID':<6} {'Actor':<7} {'Loc':<5} {'Status':<11} {'Opening':>9} {'Expected':>9} {'Counted':>9} {'Variance':>9}")
    click.echo("-" * 75)
    for shift in shifts:
        click.echo(
            f"{shift.id:<6} {shift.actor_id:<7} {shift.location_id:<5} {shift.status:<11} "
            f"{shift.opening_cash_cents:>9} {shift.expected_cash_cents if shift.expected_cash_cents is not None else '-':>9} "
            f"{shift.closing_cash_cents if shift.closing_cash_cents is not None else '-':>9} "
            f"{shift.cash_variance_cents if shift.cash_variance_cents is not None else '-':>9}"
        )


# =============================================================================
# Z-REPORTS
# =============================================================================

@click.group('zreport')
def zreport_group():
    """End-of-day Z-reports."""


@zreport_group.command('generate')
@click.option('--location-id', type=int, required=True)
@click.option('--date', 'report_date', default=None, help='YYYY-MM-DD (defaults to today, UTC)')
@click.option('--actor-id', type=int, default=None)
@with_appcontext
def generate_zreport(location_id, report_date, actor_id):
    """Generate the Z-report for a location and date."""
    report = _run(get_engine().zreports.generate, location_id, report_date, actor_id=actor_id)
    click.echo(f"PASS {report.report_number}")
    click.echo(f"   Gross sales:   {report.gross_sales_cents}")
    click.echo(f"   Discounts:     {report.discounts_cents}")
    click.echo(f"   Returns:       {report.returns_cents}")
    click.echo(f"   Net sales:     {report.net_sales_cents}")
    click.echo(f"   Tax collected: {report.tax_collected_cents}")
    click.echo(f"   Expected cash: {report.expected_cash_cents}")
    click.echo(f"   Actual cash:   {report.actual_cash_cents}")
    click.echo(f"   Variance:      {report.variance_cents}")


@zreport_group.command('list')
@click.option('--location-id', type=int, default=None)
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_zreports(location_id, limit):
    """List generated Z-reports, newest first."""
    reports = get_engine().zreports.list_reports(location_id=location_id, limit=limit)
    if not reports:
        click.echo("No Z-reports found.")
        return
    for report in reports:
        click.echo(
            f"{report.report_number:<24} {report.report_date.isoformat()} "
            f"net {report.net_sales_cents:>10} variance {report.variance_cents:>8}"
        )


# =============================================================================
# OUTBOX
# =============================================================================

@click.group('outbox')
def outbox_group():
    """Outbox delivery."""


@outbox_group.command('dispatch')
@click.option('--limit', type=int, default=None, help='Max messages (defaults to POS_OUTBOX_BATCH_SIZE)')
@with_appcontext
def dispatch_outbox(limit):
    """Deliver pending events and notifications."""
    config = current_app.config
    dispatcher = get_engine().dispatcher(max_attempts=config["POS_OUTBOX_MAX_ATTEMPTS"])
    counts = dispatcher.dispatch_pending(limit or config["POS_OUTBOX_BATCH_SIZE"])
    click.echo(
        f"PASS delivered {counts['delivered']}, retrying {counts['retrying']}, failed {counts['failed']}"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(shifts_group)
    app.cli.add_command(zreport_group)
    app.cli.add_command(outbox_group)
