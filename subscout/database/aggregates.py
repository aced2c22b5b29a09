"""
Derived spend aggregates.

``User.subscription_count`` and ``User.total_monthly_spend`` are cached
values. They are recomputed from the user's active subscriptions inside the
same transaction that mutates a subscription, so they never drift.
"""

from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..constants import MONTHLY_DIVISOR, ANNUAL_MULTIPLIER, MONEY_QUANTUM, SUB_ACTIVE
from .models import User, Subscription


def monthly_equivalent(price: Optional[Decimal], billing_period: Optional[str]) -> Decimal:
    """Normalize a price to a monthly amount. One-time and unknown periods count as zero."""
    if price is None or billing_period is None:
        return Decimal('0')
    divisor = MONTHLY_DIVISOR.get(billing_period)
    if divisor is None:
        return Decimal('0')
    return Decimal(price) / divisor


def annual_equivalent(price: Optional[Decimal], billing_period: Optional[str]) -> Decimal:
    if price is None or billing_period is None:
        return Decimal('0')
    multiplier = ANNUAL_MULTIPLIER.get(billing_period)
    if multiplier is None:
        return Decimal('0')
    return Decimal(price) * multiplier


def sum_monthly(subscriptions: Iterable[Subscription]) -> Decimal:
    total = sum((monthly_equivalent(s.price, s.billing_period) for s in subscriptions), Decimal('0'))
    return total.quantize(MONEY_QUANTUM)


def sum_annual(subscriptions: Iterable[Subscription]) -> Decimal:
    total = sum((annual_equivalent(s.price, s.billing_period) for s in subscriptions), Decimal('0'))
    return total.quantize(MONEY_QUANTUM)


def refresh_user_aggregates(session: Session, user_id: int) -> User:
    """Recompute the user's cached counters from active subscriptions.

    Must be called inside the transaction that changed the subscription.
    """
    session.flush()
    user = session.get(User, user_id)
    active = session.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.status == SUB_ACTIVE
    ).all()
    user.subscription_count = len(active)
    user.total_monthly_spend = sum_monthly(active)
    return user
