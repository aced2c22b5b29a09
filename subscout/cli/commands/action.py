"""
Action commands for SubScout.

Handles cancellation attempts, confirmation sweeps and the background worker.
"""

import click

from subscout.cli_session import get_cli_session_manager
from subscout.config import Config
from subscout.constants import STRATEGIES, STRATEGY_AUTOMATED
from subscout.exceptions import SubScoutError
from subscout.unsubscribe import InboxConfirmationSource, WorkflowWorkerPool
from subscout.cli.utils import inbox_from_export


@click.command('unsubscribe')
@click.option('--id', 'subscription_id', type=int, required=True, help='Subscription ID to cancel')
@click.option('--strategy', type=click.Choice(STRATEGIES), default=STRATEGY_AUTOMATED,
              help='How the cancellation is carried out')
@click.option('--url', 'target_url', help='Cancellation URL (default: the subscription\'s unsubscribe link)')
@click.option('--method', 'http_method', type=click.Choice(['GET', 'POST'], case_sensitive=False),
              help='HTTP method for automated cancellation')
@click.option('--instructions', help='Instructions shown for manual strategies')
@click.option('--no-execute', is_flag=True, help='Only create the action; leave execution to the worker')
def unsubscribe(subscription_id, strategy, target_url, http_method, instructions, no_execute):
    """
    Start a cancellation attempt for a subscription.

    Example:
        subscout unsubscribe --id 5
        subscout unsubscribe --id 5 --strategy manual_link
    """
    orchestrator = get_cli_session_manager().orchestrator()

    try:
        action_id = orchestrator.initiate(
            subscription_id, strategy,
            target_url=target_url,
            http_method=http_method,
            manual_instructions=instructions
        )
        click.secho(f"✓ Cancellation attempt {action_id} created", fg='green')

        if no_execute:
            return

        report = orchestrator.execute(action_id)
    except SubScoutError as e:
        click.secho(f"✗ Error: {e}", fg='red')
        raise click.Abort()

    click.echo(f"  Status: {report.status}")
    if report.http_status_code is not None:
        click.echo(f"  HTTP status: {report.http_status_code}")
    if report.monitoring_until:
        click.echo(f"  Watching for confirmation until: {report.monitoring_until:%Y-%m-%d %H:%M}")
    if report.next_attempt_at:
        click.echo(f"  Retry {report.retry_count} scheduled at: {report.next_attempt_at:%Y-%m-%d %H:%M}")
    if report.manual_instructions:
        click.echo(f"  Instructions: {report.manual_instructions}")
    if report.requires_manual_action:
        click.secho(f"✗ Manual action required: {report.error_message}", fg='yellow')


@click.command('sweep')
@click.option('--inbox', 'inbox_path', type=click.Path(exists=True, dir_okay=False),
              help='JSON export of inbox messages to check for confirmations')
def sweep(inbox_path):
    """
    Finalize cancellations that were confirmed or whose window lapsed.

    Example:
        subscout sweep --inbox messages.json
    """
    session_manager = get_cli_session_manager()
    orchestrator = session_manager.orchestrator()
    monitor = session_manager.monitor(orchestrator, InboxConfirmationSource(inbox_from_export(inbox_path)))

    try:
        report = monitor.sweep()
    except SubScoutError as e:
        click.secho(f"✗ Sweep failed: {e}", fg='red')
        raise click.Abort()

    click.secho("✓ Sweep complete", fg='green')
    click.echo(f"  Examined: {report.examined}")
    click.echo(f"  Confirmed: {report.confirmed}")
    click.echo(f"  Timed out: {report.timed_out}")
    click.echo(f"  Unchanged: {report.unchanged}")
    if report.errors:
        click.secho(f"  Errors: {report.errors}", fg='yellow')


@click.command('run-worker')
@click.option('--interval', type=float, default=None, help='Seconds between cycles (default: SWEEP_INTERVAL)')
@click.option('--workers', type=int, default=None, help='Concurrent user workflows (default: WORKER_COUNT)')
@click.option('--once', is_flag=True, help='Run a single cycle and exit')
@click.option('--inbox', 'inbox_path', type=click.Path(exists=True, dir_okay=False),
              help='JSON export of inbox messages to check for confirmations')
def run_worker(interval, workers, once, inbox_path):
    """
    Execute due cancellations and sweep confirmations in the background.

    Example:
        subscout run-worker --interval 60
        subscout run-worker --once
    """
    session_manager = get_cli_session_manager()
    orchestrator = session_manager.orchestrator()
    monitor = session_manager.monitor(orchestrator, InboxConfirmationSource(inbox_from_export(inbox_path)))
    pool = WorkflowWorkerPool(orchestrator, monitor, max_workers=workers)

    try:
        if once:
            result = pool.run_cycle()
            executions = result['executions']
            click.secho("✓ Cycle complete", fg='green')
            click.echo(f"  Executed: {executions['executed']}")
            click.echo(f"  Finalized: {len(result['sweep']['finalized_action_ids'])}")
            return

        click.echo(f"Worker running every {interval or Config.SWEEP_INTERVAL} seconds. Press Ctrl+C to stop.")
        pool.run_forever(interval=interval)
    except KeyboardInterrupt:
        click.echo("\nWorker stopped.")
