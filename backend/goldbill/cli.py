# Overview: Flask CLI command groups for bootstrap and stock maintenance.

# backend/goldbill/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to goldbill (PowerShell: $env:FLASK_APP="goldbill").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
#
# Stock ledger:
# - python -m flask stock adjust --reason "Damaged in display" -- 12 -3
#   Apply a signed stock adjustment through the ledger (use -- before a negative delta).
# - python -m flask stock verify [--product-id 12]
#   Replay the ledger and report products whose stock does not match.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product
from .errors import BillingError
from .services import stock_ledger_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create database tables from the current models."""
    db.create_all()
    click.echo("PASS Database tables created")


@click.group('stock')
def stock_group():
    """Stock ledger maintenance commands."""


@stock_group.command('adjust')
@click.argument('product_id', type=int)
@click.argument('delta', type=int)
@click.option('--reason', required=True, help='Why the stock is changing')
@with_appcontext
def adjust_stock(product_id, delta, reason):
    """Adjust PRODUCT_ID stock by DELTA (negative to remove units)."""
    try:
        entry = stock_ledger_service.adjust_stock(product_id, delta, reason)
    except BillingError as e:
        raise click.ClickException(f"{e} {e.details}")
    click.echo(
        f"PASS Product {product_id}: {entry.stock_before} -> {entry.stock_after} "
        f"(entry {entry.id}, reason {entry.reason!r})"
    )


@stock_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Only verify this product')
@with_appcontext
def verify_stock(product_id):
    """Replay the stock ledger against stored stock quantities."""
    if product_id is not None:
        product_ids = [product_id]
    else:
        product_ids = [row.id for row in db.session.query(Product.id).order_by(Product.id).all()]

    mismatches = 0
    for pid in product_ids:
        try:
            result = stock_ledger_service.replay_stock(pid)
        except BillingError as e:
            raise click.ClickException(str(e))
        if result["consistent"]:
            click.echo(f"PASS Product {pid}: stock {result['stock_quantity']} ({result['entry_count']} entries)")
        else:
            mismatches += 1
            click.echo(
                f"FAIL Product {pid}: stock {result['stock_quantity']} != ledger {result['ledger_quantity']}"
                f" broken links {result['broken_links']}"
            )

    if mismatches:
        raise click.ClickException(f"{mismatches} product(s) out of balance")
    click.echo(f"DONE {len(product_ids)} product(s) verified")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
