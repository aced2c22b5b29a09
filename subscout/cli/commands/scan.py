"""
Scan commands for SubScout.

Imports classifier output for one user inside an import session.
"""

import click

from subscout.cli_session import get_cli_session_manager
from subscout.exceptions import SubScoutError
from subscout.types import ClassifiedEmail
from subscout.cli.utils import load_json_records


@click.group()
def scan():
    """Inbox scan commands."""
    pass


@scan.command('import')
@click.option('--user-id', type=int, required=True, help='User the classified emails belong to')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
def import_scan(user_id, path):
    """
    Import a JSON file of classified emails as one scan.

    Records belonging to other users are skipped.

    Example:
        subscout scan import --user-id 1 classified.json
    """
    session_manager = get_cli_session_manager()
    sessions = session_manager.import_sessions()
    detector = session_manager.detector()

    try:
        records = load_json_records(path)
    except Exception as e:
        click.secho(f"✗ Error reading {path}: {e}", fg='red')
        raise click.Abort()

    try:
        session_id = sessions.start(user_id, scan_params={'source': path, 'records': len(records)})
    except SubScoutError as e:
        click.secho(f"✗ Error starting scan: {e}", fg='red')
        raise click.Abort()

    click.echo(f"\nImporting {len(records)} classified emails (session {session_id})...")

    try:
        facts = []
        invalid = 0
        for record in records:
            record.setdefault('user_id', user_id)
            try:
                facts.append(ClassifiedEmail.from_dict(record))
            except SubScoutError as e:
                click.echo(f"  Skipping malformed record: {e}")
                invalid += 1

        counts = detector.consume(session_id, facts)
        sessions.complete(session_id)
    except Exception as e:
        sessions.fail(session_id, str(e))
        click.secho(f"✗ Scan failed: {e}", fg='red')
        raise click.Abort()

    click.secho("✓ Scan complete", fg='green')
    click.echo(f"  Created: {counts['created']}")
    click.echo(f"  Updated: {counts['updated']}")
    click.echo(f"  Skipped: {counts['skipped'] + invalid}")
