# Overview: Flask CLI command groups for bootstrap, sessions and scheduled maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create the documents table if it does not exist.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Sessions:
# - python -m flask users issue-token --user-id C1 --phone 9999999999 --role Customers
#   Mint a bearer token for a user (printed once, stored hashed).
# - python -m flask users revoke-token <token>
#
# Scheduled jobs (run from cron):
# - python -m flask coupons purge-expired
#   Delete coupons whose expiry date has passed.
# - python -m flask orders promote-scheduled
#   Move scheduled New orders whose delivery time has arrived to Accepted.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import ServiceError
from .services import coupon_service, order_service, session_service
from .services import document_store as store


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables ready.")


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


@click.group('users')
def users_group():
    """Session token commands."""


@users_group.command('issue-token')
@click.option('--user-id', required=True, help='User document id')
@click.option('--phone', default=None, help='Phone number (required for customers)')
@click.option('--role', required=True, type=click.Choice(sorted(session_service.ROLES)))
@with_appcontext
def issue_token(user_id, phone, role):
    """Mint a bearer token for a user."""
    if role == session_service.ROLE_CUSTOMER:
        if not phone:
            raise click.UsageError("--phone is required for customers")
        if store.read_by_id(store.CUSTOMERS, user_id) is None:
            click.echo(f"WARN No customer document {user_id}; token issued anyway")

    try:
        session, token = session_service.create_session(user_id, phone, role)
    except ServiceError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Token for {user_id} ({role}), expires {session['expiresOn']}:")
    click.echo(token)


@users_group.command('revoke-token')
@click.argument('token')
@with_appcontext
def revoke_token(token):
    if session_service.revoke_session(token):
        click.echo("PASS Token revoked.")
    else:
        click.echo("FAIL Token not found or already revoked.")


@click.group('coupons')
def coupons_group():
    """Coupon maintenance commands."""


@coupons_group.command('purge-expired')
@with_appcontext
def purge_expired_coupons():
    removed = coupon_service.purge_expired()
    click.echo(f"PASS Deleted {len(removed)} expired coupon(s).")
    for coupon_id in removed:
        click.echo(f"  - {coupon_id}")


@click.group('orders')
def orders_group():
    """Order maintenance commands."""


@orders_group.command('promote-scheduled')
@with_appcontext
def promote_scheduled():
    promoted = order_service.promote_scheduled_orders()
    click.echo(f"PASS Promoted {len(promoted)} scheduled order(s) to {order_service.STATUS_ACCEPTED}.")
    for order_id in promoted:
        click.echo(f"  - {order_id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(coupons_group)
    app.cli.add_command(orders_group)
