# Overview: Flask CLI command groups for bootstrap, scheduled jobs, and inspection.

# backend/franchise_ops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to franchise_ops (PowerShell: $env:FLASK_APP="franchise_ops").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (dev/test; production uses `flask db upgrade`).
# - python -m flask system init --franchise "Demo Foods" --location-code MNL01
#   Idempotent bootstrap: franchise, one location, one user per approval role.
#
# Scheduled jobs:
# - python -m flask inventory sweep-reservations [--now 2026-01-15T00:00:00Z]
#   Expire active reservations past their expiry and return the stock.
#
# Inspection:
# - python -m flask inventory levels --location-id 1 [--low-only]
# - python -m flask orders list [--location-id 1] [--status pending_approval]

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Franchise, FranchiseLocation, User
from .services import get_order_workflow
from .services.actors import Actor
from .services.approval_service import TIER_ROLES
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables from the model metadata."""
    db.create_all()
    click.echo("PASS Tables created")


@system_group.command('init')
@click.option('--franchise', 'franchise_name', default='Default Franchise', help='Franchise name')
@click.option('--franchise-code', default='DEFAULT', help='Franchise code')
@click.option('--location-code', default='LOC01', help='Location code used in order numbers')
@with_appcontext
def init_system(franchise_name, franchise_code, location_code):
    """
    Bootstrap a franchise with one location and one user per role:
    franchisee, location_manager, regional_coordinator, franchisor_admin, fulfillment.
    """
    click.echo("START Initializing franchise ops...")

    franchise = db.session.query(Franchise).filter_by(code=franchise_code).first()
    if not franchise:
        franchise = Franchise(name=franchise_name, code=franchise_code, is_active=True)
        db.session.add(franchise)
        db.session.commit()
        click.echo(f"PASS Created franchise: {franchise.name} (ID: {franchise.id})")
    else:
        click.echo(f"PASS Using existing franchise: {franchise.name} (ID: {franchise.id})")

    location = (
        db.session.query(FranchiseLocation)
        .filter_by(franchise_id=franchise.id, location_code=location_code)
        .first()
    )
    if not location:
        location = FranchiseLocation(
            franchise_id=franchise.id,
            name=f"{franchise.name} {location_code}",
            location_code=location_code,
            currency="PHP",
        )
        db.session.add(location)
        db.session.commit()
        click.echo(f"PASS Created location: {location.name} (ID: {location.id})")

    roles = ["franchisee", *TIER_ROLES.values(), "fulfillment"]
    for role in roles:
        existing = db.session.query(User).filter_by(franchise_id=franchise.id, username=role).first()
        if existing:
            click.echo(f"SKIP User {role} already exists (ID: {existing.id})")
            continue
        user = User(
            franchise_id=franchise.id,
            location_id=location.id if role in {"franchisee", "location_manager"} else None,
            username=role,
            full_name=role.replace("_", " ").title(),
            role=role,
        )
        db.session.add(user)
        db.session.commit()
        click.echo(f"PASS Created user {role} (ID: {user.id})")

    click.echo("DONE")


@click.group('inventory')
def inventory_group():
    """Inventory jobs and inspection."""


@inventory_group.command('sweep-reservations')
@click.option('--now', 'now_value', default=None, help='Treat this ISO-8601 instant as now')
@with_appcontext
def sweep_reservations(now_value):
    """Expire active reservations past their expiry. Safe to run concurrently."""
    try:
        now = parse_iso_datetime(now_value)
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 datetime", param_hint="--now")

    ledger = get_order_workflow().inventory
    count = ledger.sweep_expired_reservations(now=now, actor=Actor.scheduled_job("cli:sweep-reservations"))
    click.echo(f"PASS Expired {count} reservation(s)")


@inventory_group.command('levels')
@click.option('--location-id', type=int, required=True)
@click.option('--low-only', is_flag=True, default=False, help='Only records at/below reorder level')
@with_appcontext
def stock_levels(location_id, low_only):
    ledger = get_order_workflow().inventory
    records = ledger.find_low_stock(location_id) if low_only else ledger.get_stock_levels(location_id)
    if not records:
        click.echo("No inventory records")
        return
    click.echo(f"{'PRODUCT':>8} {'CURRENT':>8} {'RESERVED':>9} {'AVAILABLE':>10} {'REORDER':>8}")
    for r in records:
        click.echo(
            f"{r.product_id:>8} {r.current_stock:>8} {r.reserved_stock:>9} "
            f"{r.available_stock:>10} {r.reorder_level:>8}"
        )


@click.group('orders')
def orders_group():
    """Order inspection."""


@orders_group.command('list')
@click.option('--location-id', type=int, default=None)
@click.option('--status', default=None)
@click.option('--limit', type=int, default=20)
@with_appcontext
def list_orders(location_id, status, limit):
    orders = get_order_workflow().list_orders(location_id=location_id, status=status, limit=limit)
    if not orders:
        click.echo("No orders")
        return
    for o in orders:
        click.echo(
            f"{o.id:>5} {o.order_number:<24} {o.status:<18} tier={o.approval_level} "
            f"total={o.grand_total_cents / 100:,.2f} {o.currency}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(orders_group)
