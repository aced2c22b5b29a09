"""
Service catalog commands for SubScout.
"""

import click

from subscout.cli_session import get_cli_session_manager
from subscout.cli.utils import load_json_records


@click.group()
def catalog():
    """Service catalog commands."""
    pass


@catalog.command('load')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
def load_catalog(path):
    """
    Load known services from a JSON file.

    Each record needs ``service_name`` and may carry ``service_domain``,
    ``logo_url``, ``category``, ``email_domains`` and ``keywords``.

    Example:
        subscout catalog load services.json
    """
    try:
        records = load_json_records(path)
        count = get_cli_session_manager().catalog().load(records)
    except Exception as e:
        click.secho(f"✗ Error loading catalog: {e}", fg='red')
        raise click.Abort()

    click.secho(f"✓ Loaded {count} catalog entries", fg='green')
