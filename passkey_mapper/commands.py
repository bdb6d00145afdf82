"""CLI commands for the application."""

import click
from flask.cli import with_appcontext

from passkey_mapper.extensions import db
from passkey_mapper.services.container import container
from passkey_mapper.services.mapping_codec import generate_encryption_key


@click.command('generate-key')
def generate_key_command():
    """Print a fresh ENCRYPTION_KEY value."""
    click.echo(generate_encryption_key())


@click.command('sweep-challenges')
@with_appcontext
def sweep_challenges_command():
    """Drop expired ceremony challenges."""
    removed = container().get('ceremony_service').sweep_expired()
    click.echo(f"Removed {removed} expired challenges")


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create the credential tables for the sqlalchemy backend."""
    from passkey_mapper.models import webauthn  # noqa: F401

    click.echo("Creating database tables...")
    db.create_all()
    click.echo("Database tables created!")


def register_commands(app):
    """Register CLI commands with the Flask application."""
    app.cli.add_command(generate_key_command)
    app.cli.add_command(sweep_challenges_command)
    app.cli.add_command(init_db_command)
