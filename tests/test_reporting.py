"""
Tests for subscription reports.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from subscout.database.models import User
from subscout.database.reporting import SubscriptionReporter, generate_summary_report

from helpers import T0, fact


@pytest.fixture
def portfolio(detector, user_id):
    """Netflix monthly, Spotify annual, Disney+ renewing soon."""
    detector.process(fact(user_id, 'Netflix', price='15.49', ref='m-1', observed_at=T0), now=T0)
    detector.process(fact(user_id, 'Spotify', price='120.00', billing_period='annually', ref='m-2',
                          observed_at=T0), now=T0)
    detector.process(fact(user_id, 'Disney Plus', price='7.99', ref='m-3', observed_at=T0,
                          next_renewal_date=date(2024, 3, 10)), now=T0)
    return user_id


def test_summary_matches_cached_aggregates(db, portfolio):
    with db.transaction() as session:
        summary = SubscriptionReporter(session).user_subscription_summary(portfolio)

    assert summary['email'] == 'alice@example.com'
    assert summary['subscription_count'] == 3
    assert summary['monthly_spend'] == Decimal('33.48')
    assert [s['service_name'] for s in summary['subscriptions']] == ['Disney Plus', 'Netflix', 'Spotify']

    with db.transaction() as session:
        user = session.get(User, portfolio)
        assert user.total_monthly_spend == summary['monthly_spend']


def test_cancelled_subscriptions_are_excluded(db, orchestrator, portfolio):
    with db.transaction() as session:
        netflix = next(s['id'] for s in SubscriptionReporter(session).user_subscription_summary(portfolio)
                       ['subscriptions'] if s['service_name'] == 'Netflix')
    action_id = orchestrator.initiate(netflix, 'manual_link', now=T0)

    with db.transaction() as session:
        reporter = SubscriptionReporter(session)
        assert reporter.user_subscription_summary(portfolio)['subscription_count'] == 2
        assert reporter.subscriptions_by_status(portfolio) == {'active': 2, 'pending_cancellation': 1}
        assert reporter.actions_by_status(portfolio) == {'pending': 1}
    assert action_id


def test_upcoming_renewals(db, portfolio):
    with db.transaction() as session:
        renewals = SubscriptionReporter(session).upcoming_renewals(portfolio, today=date(2024, 3, 1), days=30)

    assert renewals == [{
        'service_name': 'Disney Plus',
        'price': Decimal('7.99'),
        'currency': 'USD',
        'next_renewal_date': date(2024, 3, 10),
        'days_until_renewal': 9
    }]


def test_recent_activity_newest_first(db, portfolio):
    with db.transaction() as session:
        entries = SubscriptionReporter(session).recent_activity(portfolio, now=T0 + timedelta(days=1), days=7)

    assert len(entries) >= 4
    assert entries[0]['created_at'] >= entries[-1]['created_at']
    assert entries[-1]['activity_type'] == 'user_created'


def test_recent_activity_window_and_limit(db, portfolio):
    with db.transaction() as session:
        reporter = SubscriptionReporter(session)
        assert reporter.recent_activity(portfolio, now=T0 + timedelta(days=40), days=30) == []
        assert len(reporter.recent_activity(portfolio, now=T0, days=1, limit=2)) == 2


def test_generate_summary_report(db, portfolio):
    with db.transaction() as session:
        report = generate_summary_report(session, portfolio, now=T0)

    assert "=== SUBSCRIPTION REPORT ===" in report
    assert "Active subscriptions: 3" in report
    assert "Netflix (15.49 USD/monthly)" in report
    assert "Disney Plus on 2024-03-10 (9 days)" in report
