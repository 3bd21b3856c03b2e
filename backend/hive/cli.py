# Overview: Flask CLI command groups for bootstrap and maintenance.

# backend/hive/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (dev convenience; use `flask db upgrade` for real deployments).
#
# Users:
# - python -m flask users create-admin --email admin@hive.com --password "Password123"
#   Create an admin account, or promote an existing account to admin.
#
# Payments maintenance:
# - python -m flask transactions abandon-stale [--hours 24]
#   Mark pending transactions older than N hours as abandoned. Safe to run from cron.

import click
from datetime import timedelta
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .statuses import Role
from .services.auth_service import create_user, get_user_by_email, PasswordValidationError
from .services.ledger_service import abandon_stale_transactions
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    from . import models  # noqa: F401
    db.create_all()
    click.echo("Database tables created.")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create-admin')
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--first-name', default='Admin', show_default=True)
@click.option('--last-name', default='User', show_default=True)
@with_appcontext
def create_admin(email, password, first_name, last_name):
    """Create an admin account, or promote an existing one."""
    existing = get_user_by_email(email)
    if existing:
        existing.role = Role.ADMIN.value
        db.session.commit()
        click.echo(f"Promoted {existing.email} to admin.")
        return

    try:
        user = create_user(
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            role=Role.ADMIN.value,
        )
    except (PasswordValidationError, ValidationError, ConflictError) as exc:
        raise click.ClickException(str(exc))

    click.echo(f"Created admin {user.email} (id={user.id}).")


@click.group('transactions')
def transactions_group():
    """Payment maintenance commands."""


@transactions_group.command('abandon-stale')
@click.option('--hours', type=int, default=None, help='Age threshold (default: STALE_TRANSACTION_HOURS)')
@with_appcontext
def abandon_stale(hours):
    """Mark old pending transactions as abandoned."""
    hours = hours if hours is not None else current_app.config.get("STALE_TRANSACTION_HOURS", 24)
    if hours < 1:
        raise click.BadParameter("hours must be at least 1", param_hint="--hours")

    count = abandon_stale_transactions(timedelta(hours=hours))
    click.echo(f"Abandoned {count} pending transaction(s) older than {hours} hour(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(transactions_group)
