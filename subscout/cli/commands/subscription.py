"""
Subscription commands for SubScout.

Handles listing subscriptions, the spend summary and the activity feed.
"""

import click

from subscout.cli_session import get_cli_session_manager
from subscout.constants import SUB_ACTIVE, SUB_PENDING_CANCELLATION, SUB_CANCELLED, SUB_EXPIRED
from subscout.database.models import Subscription, User
from subscout.database.reporting import SubscriptionReporter, generate_summary_report
from subscout.cli.utils import format_money


def _require_user(session, user_id):
    account = session.get(User, user_id)
    if account is None:
        click.secho(f"✗ Error: User {user_id} not found", fg='red')
        raise click.Abort()
    return account


@click.command('subscriptions')
@click.option('--user-id', type=int, required=True, help='User to list subscriptions for')
@click.option('--status', type=click.Choice([SUB_ACTIVE, SUB_PENDING_CANCELLATION, SUB_CANCELLED, SUB_EXPIRED]),
              help='Only show subscriptions in this status')
def list_subscriptions(user_id, status):
    """
    List subscriptions for a user.

    Example:
        subscout subscriptions --user-id 1
        subscout subscriptions --user-id 1 --status active
    """
    session_manager = get_cli_session_manager()

    with session_manager.get_session() as session:
        account = _require_user(session, user_id)

        query = session.query(Subscription).filter_by(user_id=user_id)
        if status:
            query = query.filter_by(status=status)
        subscriptions = query.order_by(Subscription.service_name, Subscription.id).all()

        if not subscriptions:
            click.echo(f"No subscriptions found for {account.email}.")
            return

        click.echo(f"\nSubscriptions for {account.email}: {len(subscriptions)}")
        click.echo("=" * 70)

        for sub in subscriptions:
            click.echo(f"\n[{sub.id}] {sub.service_name} ({sub.status})")
            click.echo(f"  Price: {format_money(sub.price, sub.currency)} / {sub.billing_period or 'unknown'}")
            click.echo(f"  Confidence: {sub.detection_confidence:.2f} ({sub.detected_by})")
            if sub.next_renewal_date:
                click.echo(f"  Next renewal: {sub.next_renewal_date}")
            if sub.unsubscribe_link:
                click.echo(f"  Unsubscribe link: {sub.unsubscribe_link}")

        click.echo("\n" + "=" * 70)


@click.command('summary')
@click.option('--user-id', type=int, required=True, help='User to summarize')
def summary(user_id):
    """
    Show active subscriptions and estimated spend.

    Example:
        subscout summary --user-id 1
    """
    session_manager = get_cli_session_manager()

    with session_manager.get_session() as session:
        _require_user(session, user_id)
        click.echo(generate_summary_report(session, user_id))


@click.command('activity')
@click.option('--user-id', type=int, required=True, help='User to show activity for')
@click.option('--days', type=int, default=None, help='Window in days (default: ACTIVITY_WINDOW_DAYS)')
@click.option('--limit', type=int, default=50, help='Maximum entries to show')
def activity(user_id, days, limit):
    """
    Show recent activity, newest first.

    Example:
        subscout activity --user-id 1 --days 7
    """
    session_manager = get_cli_session_manager()

    with session_manager.get_session() as session:
        _require_user(session, user_id)
        entries = SubscriptionReporter(session).recent_activity(user_id, days=days, limit=limit)

        if not entries:
            click.echo("No recent activity.")
            return

        for entry in entries:
            click.echo(f"{entry['created_at']:%Y-%m-%d %H:%M}  {entry['activity_type']:<30} {entry['description']}")
