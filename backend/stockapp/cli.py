# Overview: Flask CLI command groups for bootstrap, store indexes and inspection.

# backend/stockapp/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Create tables, the stock history index and the bootstrap admin (idempotent).
# - python -m flask system bootstrap-admin
#   Create or repair the bootstrap admin only.
#
# Document store:
# - python -m flask store create-index stockHistory productId timestamp
#   Create a composite index (field order matters).
# - python -m flask store list-indexes
#
# Users:
# - python -m flask users list
# - python -m flask users set-role someone@example.com admin
#
# Stock:
# - python -m flask stock audit <product_id>
#   Check that a product's history chains and ends at its current stock.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions
#   Delete expired or revoked sessions older than 30 days.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services import bootstrap_service, stock_service, user_service
from .services.identity_service import USERS
from .services.role_policy import ROLE_ADMIN, validate_role
from .store import Filter, StoreError, get_store, new_auth_provider
from .store.auth_provider import cleanup_expired_sessions

HISTORY_INDEX = (stock_service.STOCK_HISTORY, ("productId", "timestamp"))

# Operator running commands on the server; acts with admin rights
CLI_IDENTITY = {"id": "cli", "role": ROLE_ADMIN}


def _run_bootstrap_admin():
    config = current_app.config
    return bootstrap_service.ensure_initial_admin(
        get_store(),
        new_auth_provider,
        email=config["BOOTSTRAP_ADMIN_EMAIL"],
        password=config["BOOTSTRAP_ADMIN_PASSWORD"],
        name=config.get("BOOTSTRAP_ADMIN_NAME") or "Administrator",
    )


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the stockroom backend.

    Creates:
    - Database tables
    - Composite index stockHistory(productId, timestamp)
    - The bootstrap admin account from BOOTSTRAP_ADMIN_EMAIL/PASSWORD

    SECURITY: Change the bootstrap password immediately in production!
    """
    click.echo("START Initializing stockroom backend...")

    db.create_all()
    click.echo("PASS Tables ready")

    collection, fields = HISTORY_INDEX
    get_store().create_index(collection, fields)
    click.echo(f"PASS Index ready: {collection}({', '.join(fields)})")

    result = _run_bootstrap_admin()
    if not result:
        raise click.ClickException(result.error)
    click.echo(f"PASS {result.data['message']}")


@system_group.command('bootstrap-admin')
@with_appcontext
def bootstrap_admin():
    """Create the bootstrap admin if missing (safe to re-run)."""
    result = _run_bootstrap_admin()
    if not result:
        raise click.ClickException(result.error)
    click.echo(f"PASS {result.data['message']}")


@click.group('store')
def store_group():
    """Document store commands."""


@store_group.command('create-index')
@click.argument('collection')
@click.argument('fields', nargs=-1, required=True)
@with_appcontext
def create_index(collection, fields):
    """Create a composite index over FIELDS (in order) on COLLECTION."""
    try:
        get_store().create_index(collection, fields)
    except StoreError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Index ready: {collection}({', '.join(fields)})")


@store_group.command('list-indexes')
@with_appcontext
def list_indexes():
    indexes = get_store().list_indexes()
    if not indexes:
        click.echo("No composite indexes.")
        return
    for collection, fields in indexes:
        click.echo(f"{collection}({', '.join(fields)})")


@click.group('users')
def users_group():
    """User inspection commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all user records with their roles."""
    users = get_store().query_collection(USERS)

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<30} {'Email':<35} {'Role':<8} {'Initial admin'}")
    click.echo("="*90)

    for user in users:
        initial = "Yes" if user.get("isInitialAdmin") else "No"
        click.echo(f"{user['id']:<30} {user.get('email') or '':<35} {user.get('role') or '':<8} {initial}")

    click.echo("="*90 + "\n")


@users_group.command('set-role')
@click.argument('email')
@click.argument('role')
@with_appcontext
def set_role(email, role):
    """Set the role of the user record with EMAIL."""
    try:
        validate_role(role)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='role')

    store = get_store()
    matches = store.query_collection(USERS, [Filter("email", email)])
    if not matches:
        raise click.ClickException(f"No user record with email {email}")
    for user in matches:
        result = user_service.set_user_role(
            store,
            CLI_IDENTITY,
            user["id"],
            role,
            bootstrap_admin_email=current_app.config.get("BOOTSTRAP_ADMIN_EMAIL"),
        )
        if not result:
            raise click.ClickException(result.error)
        click.echo(f"PASS {email} ({user['id']}) is now {role}")


@click.group('stock')
def stock_group():
    """Stock history commands."""


@stock_group.command('audit')
@click.argument('product_id')
@with_appcontext
def audit_stock(product_id):
    """Verify the stock history of PRODUCT_ID."""
    result = stock_service.audit_product_history(get_store(), product_id)
    if not result:
        raise click.ClickException(result.error)

    report = result.data
    click.echo(f"Product {product_id}: {report['entries']} history entries"
               f"{'' if report['productExists'] else ' (product deleted)'}")
    for pair in report["breaks"]:
        click.echo(
            f"FAIL {pair['previous']['id']} newStock={pair['previous'].get('newStock')} -> "
            f"{pair['next']['id']} previousStock={pair['next'].get('previousStock')}"
        )
    if not report["matchesCurrentStock"]:
        click.echo("FAIL latest history entry does not match the product's stock")
    if report["consistent"]:
        click.echo("PASS history is consistent")
    else:
        raise click.ClickException("stock history is inconsistent")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Delete expired or revoked sessions older than 30 days."""
    deleted = cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} expired sessions.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(store_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(maintenance_group)
