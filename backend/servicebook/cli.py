# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/servicebook/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: python -m flask --app servicebook <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask --app servicebook system init-db
#   Create any missing tables (idempotent).
# - python -m flask --app servicebook system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock ledger inspection:
# - python -m flask --app servicebook inventory verify-ledger [--product-id 3]
#   Compare every counter with initial_quantity + SUM(ledger). Exit code 1 on mismatch.
# - python -m flask --app servicebook inventory low-stock [--limit 50]
#   List items at or below their reorder threshold.
#
# Recurring contracts:
# - python -m flask --app servicebook contracts due-for-renewal [--as-of 2024-05-01]
#   List active contracts past their end date.
# - python -m flask --app servicebook contracts renew-expired --yes [--as-of 2024-05-01]
#   Renew every contract listed by due-for-renewal.
# - python -m flask --app servicebook contracts ensure-pending
#   Book the next visit for active contracts that have none pending.
#
# Service occurrences:
# - python -m flask --app servicebook occurrences overdue [--as-of 2024-05-01]
#   List scheduled/in-progress visits dated before as-of.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import contract_service, inventory_service, ledger_service, scheduler_service
from .time_utils import parse_iso_date


def _parse_as_of(value):
    if value is None:
        return None
    try:
        return parse_iso_date(value)
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--as-of")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables."""
    db.create_all()
    click.echo("PASS Schema ready.")


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

    click.echo("PASS Database reset complete.")


@click.group('inventory')
def inventory_group():
    """Stock ledger inspection commands."""


@inventory_group.command('verify-ledger')
@click.option('--product-id', type=int, help='Check a single product')
@with_appcontext
def verify_ledger(product_id):
    """Check initial_quantity + SUM(quantity_delta) == quantity_on_hand."""
    discrepancies = ledger_service.verify_ledger_consistency(product_id)
    if not discrepancies:
        click.echo("PASS Ledger and counters agree.")
        return

    click.echo(f"FAIL {len(discrepancies)} product(s) out of step with the ledger:")
    click.echo(f"{'Product':<10} {'Initial':>8} {'Ledger':>8} {'Expected':>9} {'On hand':>8}")
    for d in discrepancies:
        click.echo(
            f"{d.product_id:<10} {d.initial_quantity:>8} {d.ledger_total:>8} "
            f"{d.expected_quantity:>9} {d.quantity_on_hand:>8}"
        )
    raise SystemExit(1)


@inventory_group.command('low-stock')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def low_stock(limit):
    """List items at or below their reorder threshold."""
    items = inventory_service.list_low_stock(limit=limit)
    if not items:
        click.echo("No low-stock items.")
        return

    click.echo(f"{'ID':<6} {'SKU':<16} {'Name':<32} {'On hand':>8} {'Reorder at':>10}")
    for item in items:
        click.echo(
            f"{item.id:<6} {(item.sku or '-'):<16} {item.name[:32]:<32} "
            f"{item.quantity_on_hand:>8} {item.reorder_threshold:>10}"
        )


@click.group('contracts')
def contracts_group():
    """Recurring contract maintenance."""


@contracts_group.command('due-for-renewal')
@click.option('--as-of', 'as_of', help='YYYY-MM-DD (default today)')
@with_appcontext
def due_for_renewal(as_of):
    """List active contracts past their end date."""
    contracts = contract_service.list_contracts_due_for_renewal(_parse_as_of(as_of))
    if not contracts:
        click.echo("No contracts due for renewal.")
        return

    for c in contracts:
        click.echo(f"{c.id:<6} {c.contract_number:<12} customer={c.customer_id} ended={c.end_date.isoformat()}")


@contracts_group.command('renew-expired')
@click.option('--as-of', 'as_of', help='YYYY-MM-DD (default today)')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def renew_expired(as_of, yes):
    """Renew every active contract past its end date."""
    as_of_date = _parse_as_of(as_of)
    contracts = contract_service.list_contracts_due_for_renewal(as_of_date)
    if not contracts:
        click.echo("No contracts due for renewal.")
        return

    if not yes:
        click.confirm(f"Renew {len(contracts)} contract(s)?", abort=True)

    renewed = 0
    failed = 0
    for c in contracts:
        try:
            new_contract = contract_service.renew_contract(c.id, as_of=as_of_date)
        except contract_service.ContractError as e:
            failed += 1
            click.echo(f"SKIP {c.contract_number}: {e}")
            continue
        renewed += 1
        click.echo(f"PASS {c.contract_number} -> {new_contract.contract_number}")

    click.echo(f"Renewed {renewed}, skipped {failed}.")


@contracts_group.command('ensure-pending')
@with_appcontext
def ensure_pending():
    """Book the next visit for active contracts with none pending."""
    created = contract_service.ensure_pending_occurrences()
    click.echo(f"Scheduled {len(created)} occurrence(s).")


@click.group('occurrences')
def occurrences_group():
    """Service occurrence inspection."""


@occurrences_group.command('overdue')
@click.option('--as-of', 'as_of', help='YYYY-MM-DD (default today)')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def overdue(as_of, limit):
    """List scheduled or in-progress visits dated before as-of."""
    occurrences = scheduler_service.list_overdue_occurrences(_parse_as_of(as_of), limit=limit)
    if not occurrences:
        click.echo("No overdue occurrences.")
        return

    for o in occurrences:
        click.echo(
            f"{o.id:<6} contract={o.contract_id or '-'} status={o.status:<11} "
            f"scheduled={o.scheduled_date.isoformat()}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(contracts_group)
    app.cli.add_command(occurrences_group)
