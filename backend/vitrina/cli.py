# Overview: Flask CLI command groups for bootstrap, inspection, and the periodic cash auto-close.

# backend/vitrina/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Idempotent bootstrap: default branch MAIN with Vitrina (FRONT) and Bodega (RESERVE),
#   plus admin and cashier users.
# - python -m flask system seed-demo
#   DEV only: a few demo products stocked in the reserve location.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Branches and locations:
# - python -m flask branches list
# - python -m flask branches create --code NORTE --name "Sucursal Norte" [--timezone America/Guatemala] [--cutoff 21:00]
# - python -m flask branches add-location --branch-id 1 --name Vitrina --role FRONT
# - python -m flask branches check
#   Resolve FRONT/RESERVE and the business clock of every active branch.
#
# Users:
# - python -m flask users list
# - python -m flask users create --username ana --password "Cajera123" --role cashier --branch-id 1
#
# Cash sessions:
# - python -m flask cash auto-close [--now 2026-01-31T06:00:00Z]
#   Close every open session past day change or cutoff (schedule this periodically).
# - python -m flask cash sessions [--open] [--branch-id 1] [--limit 20]

import click
from flask.cli import with_appcontext

from .errors import ConfigurationError, PosError
from .extensions import db
from .models import Branch, Location, Product, User
from .models.auth import ROLE_ADMIN, ROLE_CASHIER, ROLES
from .models.branches import LOCATION_ROLE_FRONT, LOCATION_ROLE_RESERVE, LOCATION_ROLES
from .services import cash_session_service, stock_service
from .services.auth_service import create_user
from .services.location_service import clock_for_branch, resolve_locations
from .time_utils import parse_iso_datetime, to_utc_z


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create the default branch, its two stock locations and default users.

    Default passwords: admin / Admin1234, cashier / Cajero1234.
    Change them immediately in production!
    """
    click.echo("START Initializing Vitrina POS...")

    branch = db.session.query(Branch).filter_by(code="MAIN").first()
    if not branch:
        branch = Branch(code="MAIN", name="Main Branch", is_active=True)
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    for name, role in (("Vitrina", LOCATION_ROLE_FRONT), ("Bodega", LOCATION_ROLE_RESERVE)):
        existing = db.session.query(Location).filter_by(branch_id=branch.id, role=role).first()
        if existing:
            click.echo(f"PASS {role} location exists: {existing.name} (ID: {existing.id})")
            continue
        location = Location(branch_id=branch.id, name=name, role=role)
        db.session.add(location)
        db.session.commit()
        click.echo(f"PASS Created {role} location: {name} (ID: {location.id})")

    for username, password, role in (("admin", "Admin1234", ROLE_ADMIN), ("cashier", "Cajero1234", ROLE_CASHIER)):
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(username, password, role=role, branch_id=branch.id)
            click.echo(f"PASS Created user: {username} with role '{role}'")
        except PosError as e:
            click.echo(f"FAIL Failed to create user '{username}': {e.message}")

    click.echo("DONE Vitrina POS initialized")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Demo products with reserve stock (DEV only)."""
    branch = db.session.query(Branch).filter_by(code="MAIN").first()
    if not branch:
        raise click.ClickException("Run 'flask system init' first")
    pair = resolve_locations(branch.id)

    demo = [
        ("DEMO-001", "Cuaderno rayado", 1500, 1200),
        ("DEMO-002", "Lapicero azul", 350, 250),
        ("DEMO-003", "Borrador", 200, None),
    ]
    for sku, name, price, wholesale in demo:
        product = db.session.query(Product).filter_by(sku=sku).first()
        if product:
            click.echo(f"WARN  Product {sku} already exists, skipping...")
            continue
        product = Product(sku=sku, name=name, price_cents=price, wholesale_price_cents=wholesale)
        db.session.add(product)
        db.session.commit()
        stock_service.receive_stock(product.id, pair.reserve.id, 50, reason="DEMO SEED")
        click.echo(f"PASS {sku} {name}: 50 units in {pair.reserve.name}")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate every table."""
    if not yes:
        raise click.ClickException("Refusing to reset without --yes")
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


# =============================================================================
# BRANCHES
# =============================================================================

@click.group('branches')
def branches_group():
    """Branch and location setup."""


@branches_group.command('list')
@with_appcontext
def list_branches():
    for branch in db.session.query(Branch).order_by(Branch.id).all():
        status = "active" if branch.is_active else "inactive"
        click.echo(
            f"{branch.id:>4}  {branch.code:<10} {branch.name:<30} "
            f"tz={branch.timezone or '-'} cutoff={branch.cash_cutoff or '-'} [{status}]"
        )
        for location in branch.locations:
            click.echo(f"        - {location.id:>4} {location.name:<20} {location.role or ''}")


@branches_group.command('create')
@click.option('--code', required=True)
@click.option('--name', required=True)
@click.option('--timezone', default=None, help='IANA timezone (defaults to BUSINESS_TIMEZONE)')
@click.option('--cutoff', default=None, help='HH:MM cash cutoff (defaults to CASH_CUTOFF_TIME)')
@with_appcontext
def create_branch(code, name, timezone, cutoff):
    if db.session.query(Branch).filter_by(code=code).first():
        raise click.ClickException(f"Branch {code} already exists")
    branch = Branch(code=code, name=name, timezone=timezone, cash_cutoff=cutoff, is_active=True)
    try:
        clock_for_branch(branch)
    except ConfigurationError as e:
        raise click.ClickException(e.message)
    db.session.add(branch)
    db.session.commit()
    click.echo(f"PASS Created branch {branch.code} (ID: {branch.id})")


@branches_group.command('add-location')
@click.option('--branch-id', type=int, required=True)
@click.option('--name', required=True)
@click.option('--role', type=click.Choice(LOCATION_ROLES, case_sensitive=False), default=None)
@with_appcontext
def add_location(branch_id, name, role):
    if not db.session.get(Branch, branch_id):
        raise click.ClickException(f"Branch {branch_id} not found")
    location = Location(branch_id=branch_id, name=name, role=role.upper() if role else None)
    db.session.add(location)
    db.session.commit()
    click.echo(f"PASS Created location {location.name} (ID: {location.id}, role: {location.role or '-'})")


@branches_group.command('check')
@with_appcontext
def check_branches():
    failures = 0
    for branch in db.session.query(Branch).filter_by(is_active=True).order_by(Branch.id).all():
        try:
            clock = clock_for_branch(branch)
            pair = resolve_locations(branch.id)
            click.echo(
                f"PASS {branch.code}: front={pair.front.name} reserve={pair.reserve.name} "
                f"tz={clock.tz.key} cutoff={clock.cutoff.strftime('%H:%M')}"
            )
        except ConfigurationError as e:
            failures += 1
            click.echo(f"FAIL {branch.code}: {e.message}")
    if failures:
        raise SystemExit(1)


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """Operator accounts."""


@users_group.command('list')
@with_appcontext
def list_users():
    for user in db.session.query(User).order_by(User.id).all():
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role:<10} branch={user.branch_id or '-'} [{status}]")


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(ROLES), default=ROLE_CASHIER)
@click.option('--branch-id', type=int, default=None)
@with_appcontext
def create_user_command(username, password, role, branch_id):
    try:
        user = create_user(username, password, role=role, branch_id=branch_id)
    except PosError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


# =============================================================================
# CASH SESSIONS
# =============================================================================

@click.group('cash')
def cash_group():
    """Cash-register session maintenance."""


@cash_group.command('auto-close')
@click.option('--now', 'now_text', default=None, help='ISO-8601 instant to evaluate (default: now)')
@with_appcontext
def auto_close(now_text):
    """Close every open session that passed its day change or cutoff."""
    try:
        now = parse_iso_datetime(now_text) if now_text else None
    except ValueError:
        raise click.ClickException(f"Invalid --now value: {now_text}")
    closed = cash_session_service.auto_close_due_sessions(now)
    for cash_session in closed:
        click.echo(
            f"PASS Closed session {cash_session.id} (operator {cash_session.operator_id}, "
            f"branch {cash_session.branch_id}) reason={cash_session.close_reason} "
            f"at {to_utc_z(cash_session.closed_at)}"
        )
    click.echo(f"DONE {len(closed)} session(s) closed")


@cash_group.command('sessions')
@click.option('--open', 'only_open', is_flag=True, help='Only open sessions')
@click.option('--branch-id', type=int, default=None)
@click.option('--limit', type=int, default=20)
@with_appcontext
def list_sessions(only_open, branch_id, limit):
    try:
        sessions = cash_session_service.list_sessions(branch_id=branch_id, only_open=only_open, limit=limit)
    except PosError as e:
        raise click.ClickException(e.message)
    for s in sessions:
        state = "OPEN" if s.is_open else f"CLOSED ({s.close_reason})"
        click.echo(
            f"{s.id:>5}  operator={s.operator_id} branch={s.branch_id} opened={to_utc_z(s.opened_at)} "
            f"{state} total={s.total_cents if s.total_cents is not None else '-'}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(branches_group)
    app.cli.add_command(users_group)
    app.cli.add_command(cash_group)
