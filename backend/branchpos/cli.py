# Overview: Flask CLI command groups for schema bootstrap, demo data and stock inspection.

# backend/branchpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for migrated databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory:
# - python -m flask inventory seed
#   Create demo branches and items (idempotent).
# - python -m flask inventory low-stock [--branch-id 1]
#   List items at or below their minimum stock level.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import InventoryEngineError
from .extensions import db
from .models import Branch
from .services import items_service
from .services.engine import build_audit_log, build_store

DEMO_BRANCHES = [
    ("Nairobi CBD", "Moi Avenue", "0700000001"),
    ("Westlands", "Waiyaki Way", "0700000002"),
]

# (sku, name, category, cost cents, minimum sell price cents, quantity)
DEMO_ITEMS = [
    ("101001", "Maasai Shuka", "Textiles", 80000, 120000, 40),
    ("101002", "Kikoy Wrap", "Textiles", 60000, 90000, 25),
    ("202001", "Soapstone Bowl", "Carvings", 150000, 220000, 8),
    ("303001", "Kenyan AA Coffee 500g", "Coffee", 45000, 70000, 60),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created")


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


@click.group('inventory')
def inventory_group():
    """Demo data and stock inspection."""


@inventory_group.command('seed')
@with_appcontext
def seed_inventory():
    """Create demo branches and stock. Existing branches are left alone."""
    store = build_store()
    audit_log = build_audit_log(store)

    for name, location, phone in DEMO_BRANCHES:
        branch = db.session.query(Branch).filter_by(name=name).first()
        if branch is not None:
            click.echo(f"WARN  Branch '{name}' already exists, skipping...")
            continue

        branch = Branch(name=name, location=location, phone=phone)
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id})")

        # Stock only the first branch; transfers fill the others
        if name != DEMO_BRANCHES[0][0]:
            continue

        for sku, item_name, category, cost, minimum, quantity in DEMO_ITEMS:
            try:
                item = items_service.create_item(
                    store,
                    audit_log,
                    patch={
                        "branch_id": branch.id,
                        "sku": sku,
                        "name": item_name,
                        "category": category,
                        "price_cents": cost,
                        "minimum_sell_price_cents": minimum,
                        "quantity": quantity,
                    },
                    user_id="system",
                    user_name="seed",
                )
                click.echo(f"PASS   {item.sku} {item.name} x{item.quantity}")
            except InventoryEngineError as e:
                click.echo(f"FAIL   {sku} {item_name}: {e}")


@inventory_group.command('low-stock')
@click.option('--branch-id', type=int, default=None, help='Only this branch')
@with_appcontext
def low_stock(branch_id):
    """List items at or below their minimum stock level."""
    items = items_service.list_low_stock_items(build_store(), branch_id=branch_id)
    if not items:
        click.echo("No low-stock items.")
        return

    currency = current_app.config["CURRENCY"]
    for item in items:
        click.echo(
            f"{item.branch_id:>4}  {item.sku:<10} {item.name:<30} "
            f"qty={item.quantity:<5} min={item.minimum_stock_level:<5} "
            f"cost={items_service.format_price(item.price_cents, currency)}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
