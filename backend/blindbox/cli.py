# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/blindbox/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Ledger bootstrap/inspection:
# - python -m flask ledger init --owner 0xabc... [--name "Blind Box Marketplace"]
#   Create tables if missing and record the ledger owner (an admin). --owner falls back to LEDGER_OWNER_ADDRESS.
# - python -m flask ledger status
#   Show the owner, payout gateway, and row counts.
#
# Account inspection/bootstrap:
# - python -m flask accounts list [--role ADMIN]
#   List accounts with roles and active status.
# - python -m flask accounts grant-admin 0xdef...
#   Appoint an admin on behalf of the ledger owner.
#
# Catalog inspection:
# - python -m flask products list [--all]
#   List products with per-mode price and stock (use --all to include inactive).

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import Account, Product, Order, RefundTicket
from .services import account_service, catalog_service
from .services.payout_service import get_payout_gateway


@click.group('ledger')
def ledger_group():
    """Ledger bootstrap and inspection commands."""


@ledger_group.command('init')
@click.option('--owner', 'owner_address', default=None, help='Owner wallet address')
@click.option('--name', default='Blind Box Marketplace', help='Marketplace name')
@with_appcontext
def init_ledger_cli(owner_address, name):
    """
    Initialize the ledger: create tables and record its owner.

    The owner is the only account that can appoint admins.
    """
    owner_address = owner_address or current_app.config.get("LEDGER_OWNER_ADDRESS")
    if not owner_address:
        click.echo("FAIL No owner given. Pass --owner or set LEDGER_OWNER_ADDRESS")
        return

    db.create_all()
    try:
        marketplace = account_service.init_ledger(owner_address, name=name)
    except LedgerError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Ledger '{marketplace.name}' initialized")
    click.echo(f"     Owner: {marketplace.owner.address}")


@ledger_group.command('status')
@with_appcontext
def ledger_status():
    """Show the ledger header and row counts."""
    marketplace = account_service.get_marketplace()
    if not marketplace:
        click.echo("Ledger not initialized. Run: python -m flask ledger init --owner ADDRESS")
        return

    click.echo("\n" + "="*60)
    click.echo(f"Ledger:         {marketplace.name}")
    click.echo(f"Owner:          {marketplace.owner.address}")
    click.echo(f"Payout gateway: {get_payout_gateway().name}")
    click.echo(f"Accounts:       {db.session.query(Account).count()}")
    click.echo(f"Products:       {db.session.query(Product).count()}")
    click.echo(f"Orders:         {db.session.query(Order).count()}")
    click.echo(f"Refund tickets: {db.session.query(RefundTicket).count()}")
    click.echo("="*60 + "\n")


# =============================================================================
# ACCOUNT COMMANDS
# =============================================================================

@click.group('accounts')
def accounts_group():
    """Account inspection and bootstrap commands."""


@accounts_group.command('list')
@click.option('--role', default=None, help='Filter by role (NONE, BUYER, DELIVERY, ADMIN, SELLER)')
@with_appcontext
def list_accounts_cli(role):
    """List all accounts."""
    try:
        accounts = account_service.list_accounts(role=role)
    except LedgerError as e:
        click.echo(f"FAIL {e.message}")
        return

    if not accounts:
        click.echo("No accounts found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Address':<46} {'Role':<10} {'Active':<8} {'Name'}")
    click.echo("="*90)
    for account in accounts:
        active_str = "Yes" if account.is_active else "No"
        click.echo(f"{account.id:<5} {account.address:<46} {account.role:<10} {active_str:<8} {account.name or '-'}")
    click.echo("="*90 + "\n")


@accounts_group.command('grant-admin')
@click.argument('address')
@with_appcontext
def grant_admin_cli(address):
    """Appoint ADDRESS as admin, acting as the ledger owner."""
    try:
        owner = account_service.get_owner()
        account = account_service.add_admin(owner.address, address)
    except LedgerError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS {account.address} is now an admin")


# =============================================================================
# CATALOG COMMANDS
# =============================================================================

@click.group('products')
def products_group():
    """Catalog inspection commands."""


@products_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive products')
@with_appcontext
def list_products_cli(include_inactive):
    """List products with per-mode price and stock."""
    products = catalog_service.list_products(include_inactive=include_inactive)
    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Name':<30} {'Status':<9} {'Indiv. price':<16} {'Stock':<7} {'Set price':<16} {'Stock'}")
    click.echo("="*100)
    for p in products:
        indiv_price = p.individual_price_wei if p.enable_individual else "-"
        set_price = p.set_price_wei if p.enable_set else "-"
        click.echo(
            f"{p.id:<5} {p.name[:30]:<30} {p.status:<9} {str(indiv_price):<16} "
            f"{p.individual_stock:<7} {str(set_price):<16} {p.set_stock}"
        )
    click.echo("="*100 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
    app.cli.add_command(accounts_group)
    app.cli.add_command(products_group)
