# Overview: Flask CLI command groups for bootstrap, inspection, and coupon maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system seed-admin --email admin@storefront.local --password "Password123!"
#   Idempotently create (or promote) the admin account.
#
# User inspection/bootstrap:
# - python -m flask users list [--role reseller]
# - python -m flask users create --name "Asha" --email asha@example.com --password "Password123!" --role reseller
#
# Coupons:
# - python -m flask coupons create --code SAVE10 --type PERCENTAGE --value 10 --days 30
# - python -m flask coupons list [--active-only]
# - python -m flask coupons deactivate SAVE10

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .extensions import db
from .errors import StoreError
from .models import Coupon, User
from .models.auth import VALID_ROLES
from .models.coupons import VALID_DISCOUNT_TYPES
from .services import auth_service, coupon_service
from .validation import enforce_rules_coupon
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('seed-admin')
@click.option('--name', default='Administrator', help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def seed_admin(name, email, password):
    """
    Create the admin account, or promote an existing account to admin.

    Password must be 8+ chars with uppercase, lowercase, digit and special char.
    """
    try:
        user, created = auth_service.ensure_admin(name, email, password)
    except StoreError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    if created:
        click.echo(f"PASS Created admin: {user.email} (ID: {user.id})")
    else:
        click.echo(f"PASS {user.email} is an admin (ID: {user.id})")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--phone', default=None, help='Phone number')
@click.option('--role', type=click.Choice(VALID_ROLES), default='user', show_default=True, help='Role')
@with_appcontext
def create_user_cli(name, email, password, phone, role):
    """Create a user with the given role (e.g. reseller accounts)."""
    try:
        user = auth_service.create_user(name=name, email=email, password=password, phone=phone, role=role)
    except StoreError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Created user: {user.email} (ID: {user.id}) with role '{user.role}'")


@users_group.command('list')
@click.option('--role', type=click.Choice(VALID_ROLES), default=None, help='Filter by role')
@with_appcontext
def list_users(role):
    """List users with role and active status."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)
    users = query.order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Email':<35} {'Role':<10} {'Active':<8} {'Name'}")
    click.echo("="*80)
    for user in users:
        click.echo(f"{user.id:<5} {user.email:<35} {user.role:<10} {str(user.is_active):<8} {user.name}")
    click.echo("")


@click.group('coupons')
def coupons_group():
    """Coupon maintenance commands."""


@coupons_group.command('create')
@click.option('--code', prompt=True, help='Coupon code (stored upper-case)')
@click.option('--type', 'discount_type', type=click.Choice(VALID_DISCOUNT_TYPES), default='PERCENTAGE', show_default=True)
@click.option('--value', 'discount_value', type=int, prompt=True, help='Percent, or cents for FIXED_AMOUNT')
@click.option('--days', type=int, default=30, show_default=True, help='Days until expiration')
@click.option('--max-discount-cents', type=int, default=None)
@click.option('--min-order-cents', type=int, default=0, show_default=True)
@click.option('--usage-limit', type=int, default=None)
@with_appcontext
def create_coupon_cli(code, discount_type, discount_value, days, max_discount_cents, min_order_cents, usage_limit):
    """Create an ALL-scope coupon valid from now for --days days."""
    now = utcnow()
    patch = {
        "code": code,
        "discount_type": discount_type,
        "discount_value": discount_value,
        "max_discount_cents": max_discount_cents,
        "min_order_cents": min_order_cents,
        "usage_limit": usage_limit,
        "start_date": now,
        "expiration_date": now + timedelta(days=days),
    }
    try:
        enforce_rules_coupon(patch)
        coupon = coupon_service.create_coupon(patch=patch)
    except StoreError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Created coupon {coupon.code} (ID: {coupon.id}), expires {coupon.expiration_date:%Y-%m-%d}")


@coupons_group.command('list')
@click.option('--active-only', is_flag=True, help='Hide deactivated coupons')
@with_appcontext
def list_coupons_cli(active_only):
    coupons = coupon_service.list_coupons(active_only=active_only)
    if not coupons:
        click.echo("No coupons found.")
        return

    click.echo(f"{'ID':<5} {'Code':<16} {'Type':<14} {'Value':<8} {'Used':<10} {'Active':<8} {'Expires'}")
    for c in coupons:
        used = f"{c.used_count}/{c.usage_limit}" if c.usage_limit else str(c.used_count)
        click.echo(
            f"{c.id:<5} {c.code:<16} {c.discount_type:<14} {c.discount_value:<8} "
            f"{used:<10} {str(c.is_active):<8} {c.expiration_date:%Y-%m-%d}"
        )


@coupons_group.command('deactivate')
@click.argument('code')
@with_appcontext
def deactivate_coupon_cli(code):
    coupon = db.session.query(Coupon).filter_by(code=coupon_service.normalize_code(code)).first()
    if coupon is None:
        click.echo(f"FAIL Coupon '{code}' not found")
        raise SystemExit(1)
    coupon_service.deactivate_coupon(coupon.id)
    click.echo(f"PASS Deactivated coupon {coupon.code}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(coupons_group)
