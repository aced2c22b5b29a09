"""
End-to-end workflow: scan, detect, cancel, confirm.
"""

from datetime import timedelta
from decimal import Decimal

from subscout.constants import (
    ACTION_AWAITING_CONFIRMATION, ACTION_CONFIRMED, SESSION_COMPLETED, SUB_ACTIVE, SUB_CANCELLED
)
from subscout.database.models import Subscription, SubscriptionEvent, User
from subscout.types import InboxMessage
from subscout.unsubscribe import ConfirmationMonitor, InboxConfirmationSource

from helpers import T0, fact, ok


def test_scan_detect_cancel_confirm(db, catalog, sessions, detector, orchestrator, capability, user_id):
    catalog.upsert_entry('Netflix', service_domain='netflix.com', email_domains=['netflix.com'],
                         keywords=['netflix'], category='Streaming')
    catalog.upsert_entry('Spotify', service_domain='spotify.com', email_domains=['spotify.com'])
    catalog.upsert_entry('Disney+', service_domain='disneyplus.com', email_domains=['disneyplus.com'])

    facts = []
    for i in range(20):
        facts.append(fact(user_id, 'Netflix', confidence=0.95, ref=f'nf-{i}', sender_domain='netflix.com',
                          unsubscribe_link='https://netflix.com/cancel', observed_at=T0 - timedelta(days=i)))
    for i in range(15):
        facts.append(fact(user_id, 'Spotify', confidence=0.8, price='10.99', ref=f'sp-{i}',
                          sender_domain='spotify.com', observed_at=T0 - timedelta(days=i)))
    for i in range(15):
        facts.append(fact(user_id, 'Disney Plus', confidence=0.7, price='7.99', ref=f'dp-{i}',
                          sender_domain='disneyplus.com', observed_at=T0 - timedelta(days=i)))

    # Scan
    session_id = sessions.start(user_id, now=T0)
    counts = detector.consume(session_id, facts, now=T0)
    sessions.complete(session_id, now=T0)

    scan = sessions.get(session_id)
    assert scan.status == SESSION_COMPLETED
    assert scan.total_emails_found == 50
    assert scan.emails_processed == 50
    assert scan.subscriptions_found == 3
    assert counts['created'] == 3
    assert counts['created'] + counts['updated'] == 50

    with db.transaction() as session:
        netflix = session.query(Subscription).filter_by(user_id=user_id, service_name='Netflix').one()
        assert netflix.status == SUB_ACTIVE
        assert netflix.price == Decimal('15.49')
        assert netflix.detection_confidence == 0.95
        assert len(netflix.source_email_ids) == 20
        assert session.get(User, user_id).total_monthly_spend == Decimal('34.47')
        netflix_id = netflix.id

    # Cancel
    initiated = T0 + timedelta(hours=1)
    capability.results.append(ok())
    action_id = orchestrator.initiate(netflix_id, 'automated', now=initiated)
    report = orchestrator.execute(action_id, now=initiated)

    assert report.status == ACTION_AWAITING_CONFIRMATION
    assert report.monitoring_until == initiated + timedelta(days=7)

    # Confirm
    day_two = initiated + timedelta(days=2)
    inbox = [
        InboxMessage(message_ref='promo-1', sender='info@netflix.com', subject='New releases',
                     received_at=initiated + timedelta(days=1)),
        InboxMessage(message_ref='confirm-1', sender='Netflix <info@account.netflix.com>',
                     subject='We have cancelled your membership',
                     body='<p>Your subscription has been cancelled.</p>',
                     received_at=initiated + timedelta(days=1, hours=6)),
    ]
    monitor = ConfirmationMonitor(orchestrator, InboxConfirmationSource(lambda uid, since: inbox))
    sweep = monitor.sweep(now=day_two)

    assert sweep.confirmed == 1
    action = orchestrator.get_action(action_id)
    assert action.status == ACTION_CONFIRMED
    assert action.confirmation_email_id == 'confirm-1'

    with db.transaction() as session:
        netflix = session.get(Subscription, netflix_id)
        assert netflix.status == SUB_CANCELLED
        assert netflix.cancelled_at == day_two
        user = session.get(User, user_id)
        assert user.subscription_count == 2
        assert user.total_monthly_spend == Decimal('18.98')
        events = [e.event_type for e in session.query(SubscriptionEvent)
                  .filter_by(subscription_id=netflix_id).order_by(SubscriptionEvent.id)]
    assert events[0] == 'detected'
    assert events[-1] == 'cancelled'


def test_late_observation_does_not_revive_cancelled_subscription(db, detector, orchestrator, netflix):
    action_id = orchestrator.initiate(netflix, 'manual_link', now=T0)
    orchestrator.execute(action_id, now=T0)
    orchestrator.finalize(action_id, 'confirmed', now=T0 + timedelta(days=1))

    with db.transaction() as session:
        user_id = session.get(Subscription, netflix).user_id

    result = detector.process(fact(user_id, ref='old-receipt', observed_at=T0 - timedelta(days=3),
                                   sender_domain='netflix.com'), now=T0 + timedelta(days=2))

    assert result.skipped
    with db.transaction() as session:
        assert session.query(Subscription).filter_by(user_id=user_id).count() == 1
