# Overview: Flask CLI commands for bootstrap, maintenance, and ledger inspection.

# backend/branchstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "branchstock:create_app".
# - Use: python -m flask stock <command> [options]
#
# - python -m flask stock init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask stock open-account --variant-id 7 --branch-id 1 --quantity 5 --actor-id 1
#   Start stocking a variant at a branch with an opening balance.
# - python -m flask stock adjust --variant-id 7 --branch-id 1 --delta -2 --actor-id 1 --note "Count correction"
#   Signed manual adjustment (retries transient failures).
# - python -m flask stock refresh-rankings
#   Rebuild ranking aggregates from the ledger now.
# - python -m flask stock verify-ledger [--variant-id 7] [--branch-id 1]
#   Check that every stock position equals the signed sum of its ledger entries.

import click
from flask.cli import with_appcontext

from .errors import StockError
from .extensions import db, ranking_refresher
from .services import stock_service
from .services.locking import run_with_retry
from .time_utils import to_utc_z


@click.group('stock')
def stock_group():
    """Stock ledger maintenance commands."""


@stock_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@stock_group.command('open-account')
@click.option('--variant-id', type=int, required=True)
@click.option('--branch-id', type=int, required=True)
@click.option('--quantity', type=int, default=0, show_default=True, help='Opening balance')
@click.option('--actor-id', type=int, required=True, help='User recorded on the opening entry')
@with_appcontext
def open_account(variant_id, branch_id, quantity, actor_id):
    """Start stocking a variant at a branch."""
    try:
        result = run_with_retry(lambda: stock_service.open_stock_account(
            variant_id=variant_id,
            branch_id=branch_id,
            initial_quantity=quantity,
            actor_id=actor_id,
        ))
    except StockError as e:
        raise click.ClickException(e.message)
    click.echo(
        f"PASS Opened variant={variant_id} branch={branch_id} "
        f"quantity={result.new_quantity} transaction={result.transaction_id}"
    )


@stock_group.command('adjust')
@click.option('--variant-id', type=int, required=True)
@click.option('--branch-id', type=int, required=True)
@click.option('--delta', type=int, required=True, help='Positive adds stock, negative removes it')
@click.option('--actor-id', type=int, required=True)
@click.option('--note', default=None)
@with_appcontext
def adjust(variant_id, branch_id, delta, actor_id, note):
    """Apply a signed manual adjustment."""
    try:
        result = run_with_retry(lambda: stock_service.adjust_stock(
            variant_id=variant_id,
            branch_id=branch_id,
            signed_delta=delta,
            actor_id=actor_id,
            note=note,
        ))
    except StockError as e:
        raise click.ClickException(e.message)
    click.echo(
        f"PASS {result.reason.value} variant={variant_id} branch={branch_id} "
        f"quantity={result.previous_quantity}->{result.new_quantity} transaction={result.transaction_id}"
    )


@stock_group.command('refresh-rankings')
@with_appcontext
def refresh_rankings():
    """Rebuild ranking aggregates synchronously."""
    refreshed_at = ranking_refresher.refresh_now()
    click.echo(f"PASS Rankings refreshed at {to_utc_z(refreshed_at)}")


@stock_group.command('verify-ledger')
@click.option('--variant-id', type=int, default=None)
@click.option('--branch-id', type=int, default=None)
@with_appcontext
def verify_ledger(variant_id, branch_id):
    """Exit non-zero when a stock position disagrees with its ledger."""
    mismatches = stock_service.verify_ledger_consistency(variant_id=variant_id, branch_id=branch_id)
    if not mismatches:
        click.echo("PASS Ledger and stock positions agree")
        return
    for row in mismatches:
        click.echo(
            f"FAIL variant={row['variant_id']} branch={row['branch_id']} "
            f"quantity={row['quantity']} ledger_total={row['ledger_total']}"
        )
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(stock_group)
