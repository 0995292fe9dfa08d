"""
CLI Commands for the points ledger.

Reconciliation can run from cron; it exits non-zero when any account
disagrees with its transaction log:

# Nightly ledger check (run daily at 3 AM)
0 3 * * * cd /app && flask ledger reconcile
"""

import sys

import click
from flask.cli import with_appcontext

from ..models.points import PointTransactionType
from ..services import get_services
from ..utils.exceptions import LedgerError


@click.group('ledger')
def ledger_cli():
    """Points ledger commands."""
    pass


@ledger_cli.command('reconcile')
@click.option('--user-id', help='Specific user ID (or all accounts if not specified)')
@with_appcontext
def reconcile(user_id):
    """
    Check every account against its transaction log.

    Reports violations only, never repairs them.
    """
    ledger = get_services().ledger

    try:
        reports = [ledger.reconcile(user_id)] if user_id else ledger.reconcile_all()
    except LedgerError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(2)

    failed = [r for r in reports if not r['ok']]
    for report in failed:
        click.echo(f"MISMATCH {report['user_id']}:")
        for violation in report['violations']:
            click.echo(f"  - {violation}")

    click.echo(f"\nChecked {len(reports)} accounts, {len(failed)} with violations")
    if failed:
        sys.exit(1)


@ledger_cli.command('credit')
@click.argument('user_id')
@click.argument('amount', type=int)
@click.option('--description', required=True, help='Reason shown in the user history')
@click.option('--bonus', is_flag=True, help='Record as a bonus instead of earned points')
@with_appcontext
def credit(user_id, amount, description, bonus):
    """Credit AMOUNT points to USER_ID."""
    transaction_type = PointTransactionType.BONUS.value if bonus else PointTransactionType.EARNED.value
    ledger = get_services().ledger

    try:
        entry = ledger.credit(
            user_id,
            amount,
            description,
            metadata={'source': 'cli'},
            transaction_type=transaction_type
        )
    except LedgerError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(2)

    account = ledger.get_balance(user_id)
    click.echo(f"Credited {amount} pts ({transaction_type}) to {user_id}, transaction {entry.id}")
    click.echo(f"  Available: {account.available_points}")


@ledger_cli.command('stats')
@with_appcontext
def stats():
    """Show catalog and request statistics."""
    services = get_services()
    catalog_stats = services.catalog.stats()
    request_stats = services.workflow.stats()

    click.echo("\nRewards catalog:")
    click.echo(f"  Rewards: {catalog_stats['total_rewards']} ({catalog_stats['active_rewards']} active)")
    click.echo(f"  Redemptions: {catalog_stats['total_redemptions']} "
               f"({catalog_stats['pending_redemptions']} pending fulfilment)")

    click.echo("\nReward requests:")
    click.echo(f"  Total: {request_stats['total']}")
    click.echo(f"  Pending: {request_stats['pending']}")
    click.echo(f"  Approved: {request_stats['approved']}")
    click.echo(f"  Rejected: {request_stats['rejected']}")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(ledger_cli)
