# Overview: Flask CLI command groups for tenant bootstrap, ledger repair and transfer import.

# backend/ledgerdesk/cli.py
# Commands Legend (run from the repository root):
# Prereqs:
# - Activate your virtualenv and `pip install -e .`.
# - Set FLASK_APP=ledgerdesk (PowerShell: $env:FLASK_APP="ledgerdesk").
# - Use: python -m flask <group> <command> [options]
#
# Tenant bootstrap:
# - python -m flask tenants create --name "Acme Corp" --code "ACME"
#   Create a tenant.
# - python -m flask tenants list
#   List tenants.
# - python -m flask tenants add-seller --tenant-id 1 --name "Ana"
#   Create a seller (owner of session/register cash periods).
#
# Ledger repair:
# - python -m flask ledger recalc-sales [--tenant-id 1]
#   Recompute every sale's cached paid/balance from confirmed payments.
# - python -m flask ledger check-drift [--tenant-id 1]
#   Report sales whose cached paid/balance differ from the ledger fold.
#
# Transfers:
# - python -m flask transfers import-csv statement.csv --tenant-id 1
#   Import a bank export (amount, reference, origin_label, raw_description,
#   received_at) and run matching on every row.
# - python -m flask transfers import-xlsx statement.xlsx --tenant-id 1
#   Same, reading the first worksheet of an Excel export.

import click
from flask.cli import with_appcontext

from .enums import MatchResult, TransferSource
from .errors import ReconciliationError
from .extensions import db
from .models import Seller, Tenant
from .services import sales_service, transfer_service


# =============================================================================
# TENANTS
# =============================================================================

@click.group('tenants')
def tenants_group():
    """Tenant bootstrap commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active'}")
    click.echo("="*60)
    for tenant in tenants:
        active_str = "Yes" if tenant.is_active else "No"
        click.echo(f"{tenant.id:<5} {tenant.name:<30} {tenant.code or '-':<15} {active_str}")
    click.echo("="*60 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_tenant_cli(name, code):
    """Create a new tenant."""
    existing = db.session.query(Tenant).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Tenant with code '{code}' already exists")
        return

    tenant = Tenant(name=name, code=code, is_active=True)
    db.session.add(tenant)
    db.session.commit()
    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")


@tenants_group.command('add-seller')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--name', required=True, help='Seller name')
@with_appcontext
def add_seller_cli(tenant_id, name):
    """Add a seller to a tenant."""
    tenant = db.session.query(Tenant).filter_by(id=tenant_id).first()
    if not tenant:
        click.echo(f"FAIL Tenant ID {tenant_id} not found")
        return

    seller = Seller(tenant_id=tenant_id, name=name, is_active=True)
    db.session.add(seller)
    db.session.commit()
    click.echo(f"PASS Created seller: {seller.name} (ID: {seller.id}) in tenant '{tenant.name}'")


# =============================================================================
# LEDGER
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Balance recomputation and drift checks."""


@ledger_group.command('recalc-sales')
@click.option('--tenant-id', type=int, default=None, help='Limit to one tenant')
@with_appcontext
def recalc_sales_cli(tenant_id):
    """Recompute every sale's cached balance from confirmed payments."""
    count = sales_service.recalculate_all(tenant_id)
    click.echo(f"PASS Recalculated {count} sale(s)")


@ledger_group.command('check-drift')
@click.option('--tenant-id', type=int, default=None, help='Limit to one tenant')
@with_appcontext
def check_drift_cli(tenant_id):
    """List sales whose cached balance disagrees with their payments."""
    drifted = sales_service.find_drift(tenant_id)
    if not drifted:
        click.echo("PASS No drift found.")
        return

    click.echo(f"{'Sale':<8} {'Tenant':<8} {'Cached paid':>14} {'Paid':>14} {'Cached bal':>14} {'Balance':>14}")
    for row in drifted:
        click.echo(
            f"{row['sale_id']:<8} {row['tenant_id']:<8} {str(row['cached_paid']):>14} {str(row['paid']):>14} "
            f"{str(row['cached_balance']):>14} {str(row['balance']):>14}"
        )
    click.echo(f"WARN {len(drifted)} sale(s) drifted. Run `flask ledger recalc-sales` to repair.")


# =============================================================================
# TRANSFERS
# =============================================================================

@click.group('transfers')
def transfers_group():
    """Incoming transfer commands."""


@transfers_group.command('import-csv')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@with_appcontext
def import_csv_cli(path, tenant_id):
    """Import transfers from a CSV bank export and match them."""
    with open(path, encoding='utf-8-sig') as f:
        text = f.read()

    try:
        rows = transfer_service.parse_transfer_csv(text)
        results = transfer_service.import_transfers(tenant_id, rows, source=TransferSource.CSV)
    except ReconciliationError as e:
        raise click.ClickException(str(e))

    _echo_results(results)


@transfers_group.command('import-xlsx')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@with_appcontext
def import_xlsx_cli(path, tenant_id):
    """Import transfers from the first sheet of an Excel bank export."""
    try:
        with open(path, 'rb') as f:
            rows = transfer_service.parse_transfer_xlsx(f)
        results = transfer_service.import_transfers(tenant_id, rows, source=TransferSource.CSV)
    except ReconciliationError as e:
        raise click.ClickException(str(e))

    _echo_results(results)


def _echo_results(results):
    for result in results:
        if result.skipped_reason:
            outcome = f"skipped ({result.skipped_reason})"
        elif result.match_result == MatchResult.NO_MATCH:
            outcome = "no match"
        else:
            outcome = f"{result.match_result.value} payment {result.payment_id} ({result.confidence:.2f})"
        click.echo(f"transfer {result.transfer_id}: {outcome}")

    auto = sum(1 for r in results if r.applied and r.match_result == MatchResult.MATCHED_AUTO)
    click.echo(f"PASS Imported {len(results)} transfer(s); {auto} auto-confirmed")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(tenants_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(transfers_group)
