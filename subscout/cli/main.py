"""
Main CLI group for SubScout.

Integrates all command groups into a single CLI application.
"""

import click

from subscout import __version__
from subscout.cli_session import configure_cli_session
from subscout.config import Config, load_config_from_env_file
from subscout.logging import configure_workflow_logging
from .commands.admin import init
from .commands.user import user
from .commands.catalog import catalog
from .commands.scan import scan
from .commands.subscription import list_subscriptions, summary, activity
from .commands.action import unsubscribe, sweep, run_worker


@click.group()
@click.version_option(version=__version__, prog_name='SubScout')
@click.option('--database-url', envvar='DATABASE_URL', help='Database URL (default: sqlite in DATA_DIR)')
@click.option('--log-level', default=None, help='Log level for workflow logs')
def cli(database_url, log_level):
    """
    SubScout - Track recurring subscriptions and cancel the ones you don't want.

    Imports classified emails into a per-user subscription registry and drives
    cancellation attempts through to a confirmed or failed outcome.
    """
    load_config_from_env_file()
    configure_workflow_logging(level=log_level or Config.LOG_LEVEL, format=Config.LOG_FORMAT)
    configure_cli_session(database_url)


# Register command groups
cli.add_command(user, name='user')
cli.add_command(catalog, name='catalog')
cli.add_command(scan, name='scan')

# Register standalone commands
cli.add_command(init, name='init')
cli.add_command(list_subscriptions, name='subscriptions')
cli.add_command(summary, name='summary')
cli.add_command(activity, name='activity')
cli.add_command(unsubscribe, name='unsubscribe')
cli.add_command(sweep, name='sweep')
cli.add_command(run_worker, name='run-worker')


if __name__ == '__main__':
    cli()
