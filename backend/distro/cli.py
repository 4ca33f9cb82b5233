# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/distro/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates the default admin account.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system check-schema
#   Compare mapped tables/columns with the live database.
#
# User inspection/bootstrap:
# - python -m flask users list [--role Driver]
#   List all users with roles and status.
# - python -m flask users create --name "Dan" --email dan@distro.local --role Driver --password "Password123"
#   Create a user (prompts if options are omitted).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.users import ROLE_ADMIN, VALID_ROLES
from .services.auth_service import create_user, PasswordValidationError, UserError
from .services.schema_service import verify_schema, SchemaMismatchError


DEFAULT_ADMIN_EMAIL = "admin@distro.local"
DEFAULT_ADMIN_PASSWORD = "Password123"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the system with a default admin account.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing system...")

    existing = db.session.query(User).filter_by(email=DEFAULT_ADMIN_EMAIL).first()
    if existing:
        click.echo(f"WARN  User '{DEFAULT_ADMIN_EMAIL}' already exists, skipping...")
        return

    try:
        create_user("Administrator", DEFAULT_ADMIN_EMAIL, ROLE_ADMIN, DEFAULT_ADMIN_PASSWORD)
    except (PasswordValidationError, UserError) as e:
        click.echo(f"FAIL Failed to create admin: {str(e)}")
        return

    click.echo(f"PASS Created user: {DEFAULT_ADMIN_EMAIL} with role '{ROLE_ADMIN}'")
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo(f"   admin -> {DEFAULT_ADMIN_EMAIL} / {DEFAULT_ADMIN_PASSWORD}")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@system_group.command('check-schema')
@with_appcontext
def check_schema():
    """Fail with a non-zero exit code when the database is behind the models."""
    try:
        verify_schema()
    except SchemaMismatchError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo("PASS Database schema matches the models")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--role', type=click.Choice(VALID_ROLES), prompt=True, help='Role')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--phone', default=None, help='Phone number')
@with_appcontext
def create_user_cli(name, email, role, password, phone):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    """
    try:
        user = create_user(name, email, role, password, phone=phone)
    except (PasswordValidationError, UserError) as e:
        click.echo(f"FAIL {str(e)}")
        return
    click.echo(f"PASS Created user: {user.email} (ID: {user.id}) with role '{user.role}'")


@users_group.command('list')
@click.option('--role', type=click.Choice(VALID_ROLES), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their roles."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)
    users = query.order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<35} {'Role':<12} {'Status'}")
    click.echo("="*90)
    for user in users:
        click.echo(f"{user.id:<5} {user.name:<25} {user.email:<35} {user.role:<12} {user.status}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
