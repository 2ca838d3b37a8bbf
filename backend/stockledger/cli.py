# Overview: Flask CLI command groups for balance maintenance and database reset.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Balances:
# - python -m flask balances recompute --tenant ACME --product 1 --date 2024-01-16
#   Recompute one product-day (gap-fills earlier days first).
# - python -m flask balances recompute-range --tenant ACME --product 1 --from 2024-01-01 --to 2024-03-31
#   Backfill a date range in committed chunks; Ctrl+C stops between days.
# - python -m flask balances recompute-all --tenant ACME --date 2024-01-16 --workers 4
#   Recompute one date for every active product of a tenant.
# - python -m flask balances verify --tenant ACME --product 1
#   Check reconciliation and chaining over stored rows.
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).

import signal
import threading

import click
from flask.cli import with_appcontext

from .errors import StockLedgerError
from .extensions import db
from .services import balance_service
from .services.concurrency import commit_with_retry
from .time_utils import parse_business_date


class BusinessDate(click.ParamType):
    name = "date"

    def convert(self, value, param, ctx):
        try:
            return parse_business_date(value)
        except (TypeError, ValueError):
            self.fail(f"{value!r} is not a YYYY-MM-DD date", param, ctx)


BUSINESS_DATE = BusinessDate()


@click.group('balances')
def balances_group():
    """Daily balance maintenance commands."""


@balances_group.command('recompute')
@click.option('--tenant', required=True, help='Tenant code')
@click.option('--product', 'product_id', required=True, type=int, help='Product ID')
@click.option('--date', 'balance_date', required=True, type=BUSINESS_DATE, help='Business date (YYYY-MM-DD)')
@with_appcontext
def recompute(tenant, product_id, balance_date):
    """Recompute and store one product-day balance."""
    try:
        row = balance_service.recompute(tenant, product_id, balance_date)
        commit_with_retry()
    except StockLedgerError as e:
        db.session.rollback()
        raise click.ClickException(f"{e.code}: {e.message}")

    click.echo(
        f"PASS {balance_date} product={product_id} "
        f"opening={row.opening_qty} closing={row.closing_qty} closing_value_cents={row.closing_value_cents}"
    )


@balances_group.command('recompute-range')
@click.option('--tenant', required=True, help='Tenant code')
@click.option('--product', 'product_id', required=True, type=int, help='Product ID')
@click.option('--from', 'from_date', required=True, type=BUSINESS_DATE, help='First date (inclusive)')
@click.option('--to', 'to_date', required=True, type=BUSINESS_DATE, help='Last date (inclusive)')
@with_appcontext
def recompute_range(tenant, product_id, from_date, to_date):
    """
    Recompute a date range in ascending order, committing each chunk.

    Ctrl+C stops cleanly between days; rerun from the reported date to resume.
    """
    cancel = threading.Event()
    previous_handler = signal.signal(signal.SIGINT, lambda *_: cancel.set())
    try:
        result = balance_service.recompute_range(
            tenant, product_id, from_date, to_date, cancel_event=cancel, commit=True
        )
    except StockLedgerError as e:
        db.session.rollback()
        raise click.ClickException(f"{e.code}: {e.message}")
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    status = "CANCELLED" if result.cancelled else "PASS"
    click.echo(
        f"{status} product={product_id} days={result.days_processed} "
        f"completed_through={result.completed_through}"
    )


@balances_group.command('recompute-all')
@click.option('--tenant', required=True, help='Tenant code')
@click.option('--date', 'balance_date', required=True, type=BUSINESS_DATE, help='Business date (YYYY-MM-DD)')
@click.option('--workers', default=1, show_default=True, type=click.IntRange(1, 32), help='Parallel products')
@with_appcontext
def recompute_all(tenant, balance_date, workers):
    """Recompute one date for every active product of a tenant."""
    result = balance_service.recompute_all(tenant, balance_date, max_workers=workers)

    click.echo(f"PASS {len(result.succeeded)} product(s) recomputed for {balance_date}")
    for product_id, error in sorted(result.failed.items()):
        click.echo(f"FAIL product={product_id}: {error}")
    if result.failed:
        raise click.ClickException(f"{len(result.failed)} product(s) failed")


@balances_group.command('verify')
@click.option('--tenant', required=True, help='Tenant code')
@click.option('--product', 'product_id', required=True, type=int, help='Product ID')
@with_appcontext
def verify(tenant, product_id):
    """Check reconciliation and chaining invariants over stored rows."""
    violations = balance_service.verify_chain(tenant, product_id)
    if not violations:
        click.echo(f"PASS product={product_id}: balance chain consistent")
        return

    for v in violations:
        click.echo(f"FAIL {v['balance_date']} {v['rule']}: expected={v['expected']} actual={v['actual']}")
    raise click.ClickException(f"{len(violations)} violation(s) found")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(balances_group)
    app.cli.add_command(system_group)
