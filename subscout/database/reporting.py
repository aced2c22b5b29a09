"""
Read models over the persisted state.

Nothing here mutates data. The per-user spend summary is computed from the
active subscriptions directly and matches the cached aggregates on the user
row, which the registry and orchestrator keep current.
"""

from datetime import datetime, timedelta, date
from typing import List, Dict, Any, Optional

from sqlalchemy import and_, desc, func
from sqlalchemy.orm import Session

from ..config import Config
from ..constants import SUB_ACTIVE
from .aggregates import sum_monthly, sum_annual, monthly_equivalent
from .models import User, Subscription, UnsubscribeAction, ActivityLogEntry


class SubscriptionReporter:
    """Generate reports for a user's subscriptions and activity."""

    def __init__(self, session: Session):
        self.session = session

    def user_subscription_summary(self, user_id: int) -> Dict[str, Any]:
        """Active subscriptions and their estimated spend."""
        user = self.session.get(User, user_id)
        active = self.session.query(Subscription).filter(
            and_(
                Subscription.user_id == user_id,
                Subscription.status == SUB_ACTIVE
            )
        ).order_by(Subscription.service_name).all()

        return {
            'user_id': user_id,
            'email': user.email if user else None,
            'subscription_count': len(active),
            'monthly_spend': sum_monthly(active),
            'annual_spend': sum_annual(active),
            'subscriptions': [
                {
                    'id': sub.id,
                    'service_name': sub.service_name,
                    'price': sub.price,
                    'currency': sub.currency,
                    'billing_period': sub.billing_period,
                    'monthly_equivalent': monthly_equivalent(sub.price, sub.billing_period),
                    'next_renewal_date': sub.next_renewal_date,
                    'detection_confidence': sub.detection_confidence
                }
                for sub in active
            ]
        }

    def recent_activity(self, user_id: int, now: Optional[datetime] = None,
                        days: Optional[int] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Activity entries from the last N days, newest first."""
        now = now or datetime.now()
        days = days if days is not None else Config.ACTIVITY_WINDOW_DAYS
        cutoff = now - timedelta(days=days)

        query = self.session.query(ActivityLogEntry).filter(
            and_(
                ActivityLogEntry.user_id == user_id,
                ActivityLogEntry.created_at >= cutoff
            )
        ).order_by(desc(ActivityLogEntry.created_at), desc(ActivityLogEntry.id))

        if limit:
            query = query.limit(limit)

        return [
            {
                'id': entry.id,
                'activity_type': entry.activity_type,
                'description': entry.activity_description,
                'subscription_id': entry.related_subscription_id,
                'session_id': entry.related_session_id,
                'action_id': entry.related_action_id,
                'metadata': entry.activity_metadata,
                'created_at': entry.created_at
            }
            for entry in query.all()
        ]

    def subscriptions_by_status(self, user_id: int) -> Dict[str, int]:
        rows = self.session.query(Subscription.status, func.count(Subscription.id)).filter(
            Subscription.user_id == user_id
        ).group_by(Subscription.status).all()
        return {status: count for status, count in rows}

    def actions_by_status(self, user_id: int) -> Dict[str, int]:
        rows = self.session.query(UnsubscribeAction.status, func.count(UnsubscribeAction.id)).filter(
            UnsubscribeAction.user_id == user_id
        ).group_by(UnsubscribeAction.status).all()
        return {status: count for status, count in rows}

    def upcoming_renewals(self, user_id: int, today: Optional[date] = None,
                          days: int = 30) -> List[Dict[str, Any]]:
        """Active subscriptions renewing within the next N days."""
        today = today or date.today()
        query = self.session.query(Subscription).filter(
            and_(
                Subscription.user_id == user_id,
                Subscription.status == SUB_ACTIVE,
                Subscription.next_renewal_date.isnot(None),
                Subscription.next_renewal_date >= today,
                Subscription.next_renewal_date <= today + timedelta(days=days)
            )
        ).order_by(Subscription.next_renewal_date)

        return [
            {
                'service_name': sub.service_name,
                'price': sub.price,
                'currency': sub.currency,
                'next_renewal_date': sub.next_renewal_date,
                'days_until_renewal': (sub.next_renewal_date - today).days
            }
            for sub in query.all()
        ]


def generate_summary_report(session: Session, user_id: int, now: Optional[datetime] = None) -> str:
    """Generate a formatted subscription report."""
    reporter = SubscriptionReporter(session)

    summary = reporter.user_subscription_summary(user_id)
    renewals = reporter.upcoming_renewals(user_id, today=(now or datetime.now()).date())
    actions = reporter.actions_by_status(user_id)

    report = []
    report.append("=== SUBSCRIPTION REPORT ===\n")

    report.append("Summary:")
    report.append(f"  Active subscriptions: {summary['subscription_count']}")
    report.append(f"  Monthly spend: {summary['monthly_spend']}")
    report.append(f"  Annual spend: {summary['annual_spend']}")

    if summary['subscriptions']:
        report.append("\nActive Subscriptions:")
        for sub in summary['subscriptions']:
            price = f"{sub['price']} {sub['currency']}/{sub['billing_period']}" if sub['price'] is not None \
                else "price unknown"
            report.append(f"  • {sub['service_name']} ({price})")

    if renewals:
        report.append(f"\nUpcoming Renewals: {len(renewals)}")
        for renewal in renewals[:5]:
            report.append(f"  • {renewal['service_name']} on {renewal['next_renewal_date']} "
                          f"({renewal['days_until_renewal']} days)")

    if actions:
        report.append("\nCancellation Attempts:")
        for status, count in sorted(actions.items()):
            report.append(f"  {status}: {count}")

    return "\n".join(report)
