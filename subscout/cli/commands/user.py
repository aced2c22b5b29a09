"""
User management commands for SubScout.

Handles adding, listing and deleting account owners.
"""

import click

from subscout.cli_session import get_cli_session_manager
from subscout.exceptions import SubScoutError
from subscout.cli.utils import format_money


@click.group()
def user():
    """User management commands."""
    pass


@user.command('add')
@click.argument('email')
@click.option('--name', 'full_name', help='Full name of the user')
@click.option('--credential-handle', help='Opaque reference to the stored inbox credential')
def add_user(email, full_name, credential_handle):
    """
    Add a new user.

    Example:
        subscout user add alice@example.com --name "Alice"
    """
    directory = get_cli_session_manager().users()
    try:
        user_id = directory.create_user(email, full_name=full_name, credential_handle=credential_handle)
    except SubScoutError as e:
        click.secho(f"✗ Error adding user: {e}", fg='red')
        raise click.Abort()

    click.secho("✓ User added successfully", fg='green')
    click.echo(f"  ID: {user_id}")
    click.echo(f"  Email: {email.strip().lower()}")


@user.command('list')
@click.option('--all', 'include_deleted', is_flag=True, help='Include deleted users')
def list_users(include_deleted):
    """
    List users.

    Example:
        subscout user list
    """
    users = get_cli_session_manager().users().list_users(include_deleted=include_deleted)

    if not users:
        click.echo("No users configured.")
        click.echo("\nAdd a user with: subscout user add EMAIL")
        return

    click.echo(f"\nUsers: {len(users)}")
    click.echo("=" * 70)

    for u in users:
        click.echo(f"\n[{u.id}] {u.email}" + (" (deleted)" if u.is_deleted else ""))
        click.echo(f"  Active subscriptions: {u.subscription_count}")
        click.echo(f"  Monthly spend: {format_money(u.total_monthly_spend)}")
        click.echo(f"  Last scan: {u.last_scan_at or 'Never'}")

    click.echo("\n" + "=" * 70)


@user.command('delete')
@click.argument('user_id', type=int)
@click.option('--purge', is_flag=True, help='Permanently delete the user and everything it owns')
@click.option('--yes', is_flag=True, help='Skip confirmation prompt')
def delete_user(user_id, purge, yes):
    """
    Delete a user.

    By default the user is tombstoned and leaves all workflows; --purge removes
    the user's data entirely.

    Example:
        subscout user delete 3
        subscout user delete 3 --purge --yes
    """
    if purge and not yes:
        click.confirm(f"Permanently delete user {user_id} and all of its data?", abort=True)

    directory = get_cli_session_manager().users()
    try:
        if purge:
            directory.purge(user_id)
            click.secho(f"✓ User {user_id} purged", fg='green')
        elif directory.soft_delete(user_id):
            click.secho(f"✓ User {user_id} deleted", fg='green')
        else:
            click.echo(f"User {user_id} was already deleted.")
    except SubScoutError as e:
        click.secho(f"✗ Error: {e}", fg='red')
        raise click.Abort()
