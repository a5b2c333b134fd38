# Overview: Flask CLI command groups for bootstrap, reconciliation runs, ledger maintenance and posting.

# backend/stockrecon/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "stockrecon:create_app" (PowerShell: $env:FLASK_APP="stockrecon:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Reconciliation:
# - python -m flask recon run --start 2024-03-01 --end 2024-03-10 [--branch BR01 --branch BR02]
#   Print reconciliation rows (keluar form, selisih, status) for a date range.
#
# Warehouse ledger:
# - python -m flask ledger balance --product 7 --branch BR01 [--as-of 2024-03-10]
#   Show the warehouse balance of a product in a branch.
# - python -m flask ledger recalc --product 7 --branch BR01 [--from 2024-03-01]
#   Rewrite running balances from a date (locked stock-opname rows are kept).
#
# Postings:
# - python -m flask postings post --line 12 --actor 3
#   Post a receiving line into the warehouse ledger.
# - python -m flask postings scan
#   List purchase orders whose status contradicts receiving lines or the ledger.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import consistency_service, ledger_service, posting_service, reconciliation_service
from .services.ledger_service import LedgerValidationError
from .services.posting_service import PostingError
from .services.reconciliation_service import (
    NoReconciliationDataError,
    ReconciliationValidationError,
    StoreUnavailableError,
)
from .time_utils import parse_iso_date


def _fail(message: str) -> None:
    click.echo(f"FAIL {message}")
    raise SystemExit(1)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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


@click.group('recon')
def recon_group():
    """Stock reconciliation commands."""


@recon_group.command('run')
@click.option('--start', 'start_date', required=True, help='First day (YYYY-MM-DD)')
@click.option('--end', 'end_date', required=True, help='Last day, inclusive (YYYY-MM-DD)')
@click.option('--branch', 'branches', multiple=True, help='Branch code filter (repeatable)')
@with_appcontext
def run_reconciliation_cli(start_date, end_date, branches):
    """
    Print reconciliation rows for a date range.

    Example:
        flask recon run --start 2024-03-01 --end 2024-03-10
        flask recon run --start 2024-03-10 --end 2024-03-10 --branch BR01
    """
    try:
        results = reconciliation_service.run_reconciliation(start_date, end_date, list(branches))
    except ReconciliationValidationError as e:
        _fail(str(e))
    except NoReconciliationDataError as e:
        click.echo(str(e))
        return
    except StoreUnavailableError as e:
        _fail(str(e))

    click.echo("\n" + "="*118)
    click.echo(
        f"{'Date':<11} {'Branch':<8} {'Product':<28} {'Gudang':>9} {'Masuk':>8} {'ESB':>8} "
        f"{'Keluar':>9} {'Selisih':>9} {'Tolerance':<14} {'Status'}"
    )
    click.echo("="*118)
    for r in results:
        click.echo(
            f"{r.snapshot_date.isoformat():<11} {(r.branch_code or '-'):<8} {r.product.display[:28]:<28} "
            f"{float(r.gudang):>9.2f} {float(r.inbound_today):>8.2f} {float(r.hasil_esb):>8.2f} "
            f"{float(r.keluar_form):>9.2f} {float(r.selisih):>9.2f} {r.tolerance_range:<14} {r.status}"
        )
    click.echo("="*118)

    summary = reconciliation_service.summarize_statuses(results)
    click.echo(
        f"Total: {len(results)} rows  OK: {summary['OK']}  Kurang: {summary['Kurang']}  Lebih: {summary['Lebih']}"
    )


@click.group('ledger')
def ledger_group():
    """Warehouse ledger inspection and maintenance commands."""


@ledger_group.command('balance')
@click.option('--product', 'product_id', type=int, required=True, help='Product ID')
@click.option('--branch', 'branch_code', required=True, help='Branch code')
@click.option('--as-of', 'as_of', default=None, help='Inclusive cutoff date (YYYY-MM-DD)')
@with_appcontext
def ledger_balance_cli(product_id, branch_code, as_of):
    """Show the warehouse balance of a product in a branch."""
    try:
        cutoff = parse_iso_date(as_of)
    except ValueError:
        _fail("--as-of must be YYYY-MM-DD")

    balance = ledger_service.get_balance(product_id, branch_code, as_of=cutoff)
    click.echo(f"Product {product_id} @ {branch_code}: {float(balance):.3f}")


@ledger_group.command('recalc')
@click.option('--product', 'product_id', type=int, required=True, help='Product ID')
@click.option('--branch', 'branch_code', required=True, help='Branch code')
@click.option('--from', 'from_date', default=None, help='First date to rewrite (YYYY-MM-DD)')
@click.option('--actor', 'actor_id', type=int, default=None, help='User ID recorded on the audit event')
@with_appcontext
def ledger_recalc_cli(product_id, branch_code, from_date, actor_id):
    """
    Rewrite running balances of one product/branch ledger.

    Example:
        flask ledger recalc --product 7 --branch BR01 --from 2024-03-01
    """
    try:
        start = parse_iso_date(from_date)
    except ValueError:
        _fail("--from must be YYYY-MM-DD")

    try:
        updated = ledger_service.recalculate_running_balances(
            product_id=product_id,
            branch_code=branch_code,
            from_date=start,
            actor_user_id=actor_id,
        )
    except LedgerValidationError as e:
        db.session.rollback()
        _fail(str(e))

    click.echo(f"PASS Recalculated ledger: {updated} entries updated")


@click.group('postings')
def postings_group():
    """Receiving-line posting commands."""


@postings_group.command('post')
@click.option('--line', 'line_id', type=int, required=True, help='Receiving line ID')
@click.option('--actor', 'actor_id', type=int, required=True, help='User ID performing the posting')
@with_appcontext
def post_line_cli(line_id, actor_id):
    """Post a receiving line into the warehouse ledger."""
    try:
        result = posting_service.post_receiving_line(line_id, actor_id)
    except PostingError as e:
        for step in e.steps:
            click.echo(f"  {step.name:<24} {step.outcome:<12} {step.detail or ''}")
        _fail(f"[{e.kind}] {e.step}: {e.message}")

    for step in result.steps:
        click.echo(f"  {step.name:<24} {step.outcome:<12} {step.detail or ''}")
    click.echo(f"PASS Posted line {line_id} as warehouse entry {result.warehouse_entry_id} "
               f"(balance {float(result.new_balance):.3f})")
    if result.order_status_changed:
        click.echo("PASS Purchase order moved to 'Di Gudang'")


@postings_group.command('scan')
@with_appcontext
def scan_orders_cli():
    """List purchase orders whose status contradicts receiving lines or the ledger."""
    issues = consistency_service.scan_order_consistency()
    if not issues:
        click.echo("PASS No inconsistent purchase orders.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'PO':<20} {'Status':<18} {'Branch':<8} {'Lines':>6} {'Entries':>8}  {'Issues'}")
    click.echo("="*90)
    for i in issues:
        click.echo(
            f"{i.po_number:<20} {i.status:<18} {(i.branch_code or '-'):<8} "
            f"{i.receiving_line_count:>6} {i.warehouse_entry_count:>8}  {', '.join(i.issues)}"
        )
    click.echo(f"\nWARN {len(issues)} inconsistent purchase order(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(recon_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(postings_group)
