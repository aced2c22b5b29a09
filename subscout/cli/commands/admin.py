"""
Admin commands for SubScout.

Handles database initialization.
"""

import click

from subscout.cli_session import get_cli_session_manager


@click.command('init')
def init():
    """
    Initialize the database.

    Creates the database schema and required tables.

    Example:
        subscout init
    """
    try:
        session_manager = get_cli_session_manager()
        session_manager.db_manager.initialize_database()
        click.secho("✓ Database initialized successfully", fg='green')
        click.echo(f"Database location: {session_manager.db_manager.database_url}")
    except Exception as e:
        click.secho(f"✗ Error initializing database: {e}", fg='red')
        raise click.Abort()
