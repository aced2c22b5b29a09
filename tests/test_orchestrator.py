"""
Tests for the unsubscribe orchestrator state machine.
"""

import threading
import time
from datetime import timedelta

import pytest

from subscout.constants import (
    ACTION_PENDING, ACTION_IN_PROGRESS, ACTION_AWAITING_CONFIRMATION, ACTION_CONFIRMED, ACTION_FAILED,
    SUB_ACTIVE, SUB_PENDING_CANCELLATION, SUB_CANCELLED, OUTCOME_CONFIRMED, OUTCOME_TIMED_OUT
)
from subscout.database.models import ActivityLogEntry, Subscription, SubscriptionEvent, UnsubscribeAction, User
from subscout.exceptions import ConflictError, InvalidStateError, TransientExecutionError, ValidationError
from subscout.unsubscribe.orchestrator import UnsubscribeOrchestrator

from helpers import T0, ScriptedCapability, fact, ok, server_error, rejected


def subscription(db, subscription_id):
    with db.transaction() as session:
        return session.get(Subscription, subscription_id)


def audit_counts(db, subscription_id):
    with db.transaction() as session:
        events = session.query(SubscriptionEvent).filter_by(subscription_id=subscription_id).count()
        entries = session.query(ActivityLogEntry).filter_by(related_subscription_id=subscription_id).count()
        return events, entries


class TestInitiate:
    """Opening a cancellation attempt."""

    def test_moves_subscription_to_pending_cancellation(self, db, orchestrator, netflix):
        action_id = orchestrator.initiate(netflix, 'automated', now=T0)

        action = orchestrator.get_action(action_id)
        assert action.status == ACTION_PENDING
        assert action.unsubscribe_url == 'https://netflix.com/cancel'
        assert action.http_method == 'GET'
        assert action.max_retries == 3
        assert subscription(db, netflix).status == SUB_PENDING_CANCELLATION

    def test_pending_cancellation_drops_out_of_aggregates(self, db, orchestrator, netflix, user_id):
        orchestrator.initiate(netflix, 'automated', now=T0)

        with db.transaction() as session:
            user = session.get(User, user_id)
            assert user.subscription_count == 0

    def test_open_action_conflicts(self, orchestrator, netflix):
        orchestrator.initiate(netflix, 'manual_link', now=T0)

        with pytest.raises(ConflictError):
            orchestrator.initiate(netflix, 'automated', now=T0)

    def test_automated_requires_http_url(self, db, orchestrator, netflix):
        with pytest.raises(ValidationError):
            orchestrator.initiate(netflix, 'automated', target_url='mailto:cancel@netflix.com', now=T0)
        assert subscription(db, netflix).status == SUB_ACTIVE

    def test_unknown_strategy(self, orchestrator, netflix):
        with pytest.raises(ValidationError):
            orchestrator.initiate(netflix, 'carrier_pigeon')

    def test_manual_strategy_gets_default_instructions(self, orchestrator, netflix):
        action_id = orchestrator.initiate(netflix, 'manual_phone', now=T0)
        assert 'Netflix' in orchestrator.get_action(action_id).manual_instructions

    def test_form_data_implies_post(self, orchestrator, netflix):
        action_id = orchestrator.initiate(netflix, 'automated', form_data={'confirm': 'yes'}, now=T0)
        assert orchestrator.get_action(action_id).http_method == 'POST'

    def test_cancelled_subscription_is_rejected(self, db, orchestrator, netflix):
        with db.transaction() as session:
            session.get(Subscription, netflix).status = SUB_CANCELLED

        with pytest.raises(InvalidStateError):
            orchestrator.initiate(netflix, 'automated')

    def test_attempt_limit(self, db, capability, orchestrator, netflix):
        capability.results.extend([rejected(), rejected(), rejected()])
        for _ in range(3):
            action_id = orchestrator.initiate(netflix, 'automated', now=T0)
            orchestrator.execute(action_id, now=T0)

        with pytest.raises(ConflictError):
            orchestrator.initiate(netflix, 'automated', now=T0)
        assert len(orchestrator.actions_for_subscription(netflix)) == 3

    def test_deleted_user_cannot_initiate(self, orchestrator, directory, netflix, user_id):
        directory.soft_delete(user_id)

        with pytest.raises(InvalidStateError):
            orchestrator.initiate(netflix, 'automated')


class TestExecuteAutomated:
    """Capability outcomes."""

    def test_success_opens_monitoring_window(self, db, capability, orchestrator, netflix):
        capability.results.append(ok())
        action_id = orchestrator.initiate(netflix, 'automated', now=T0)

        report = orchestrator.execute(action_id, now=T0)

        assert report.status == ACTION_AWAITING_CONFIRMATION
        assert report.http_status_code == 200
        assert report.monitoring_until == T0 + timedelta(days=7)
        action = orchestrator.get_action(action_id)
        assert action.response_body_snippet == 'Your subscription has been cancelled'
        assert action.claim_token is None
        assert capability.calls[0][:2] == ('https://netflix.com/cancel', 'GET')
        assert subscription(db, netflix).status == SUB_PENDING_CANCELLATION

    def test_snippet_is_bounded(self, db, netflix):
        capability = ScriptedCapability(ok(body='x' * 2000))
        orchestrator = UnsubscribeOrchestrator(db, capability=capability, snippet_limit=100)
        action_id = orchestrator.initiate(netflix, 'automated', now=T0)
        orchestrator.execute(action_id, now=T0)
        assert len(orchestrator.get_action(action_id).response_body_snippet) == 100

    def test_transient_failure_schedules_retry(self, capability, orchestrator, netflix):
        capability.results.append(server_error())
        action_id = orchestrator.initiate(netflix, 'automated', now=T0)

        report = orchestrator.execute(action_id, now=T0)

        assert report.status == ACTION_IN_PROGRESS
        assert report.retry_count == 1
        assert report.http_status_code == 503
        assert report.next_attempt_at == T0 + timedelta(seconds=60)

    def test_retry_before_backoff_is_rejected(self, capability, orchestrator, netflix):
        capability.results.append(server_error())
        action_id = orchestrator.initiate(netflix, 'automated', now=T0)
        orchestrator.execute(action_id, now=T0)

        with pytest.raises(InvalidStateError):
            orchestrator.execute(action_id, now=T0 + timedelta(seconds=30))

    def test_retry_exhaustion_fails_and_reverts(self, db, capability, orchestrator, netflix, user_id):
        capability.results.extend([server_error(), server_error(), server_error()])
        action_id = orchestrator.initiate(netflix, 'automated', now=T0)

        now = T0
        for _ in range(3):
            report = orchestrator.execute(action_id, now=now)
            now = now + timedelta(hours=2)

        assert report.status == ACTION_FAILED
        assert report.retry_count == 3
        assert report.requires_manual_action is True
        assert 'exhausted' in report.error_message
        assert subscription(db, netflix).status == SUB_ACTIVE
        with db.transaction() as session:
            assert session.get(User, user_id).subscription_count == 1

    def test_exception_from_capability_counts_as_transient(self, capability, orchestrator, netflix):
        capability.results.append(RuntimeError('browser crashed'))
        action_id = orchestrator.initiate(netflix, 'automated', now=T0)

        report = orchestrator.execute(action_id, now=T0)

        assert report.status == ACTION_IN_PROGRESS
        assert report.retry_count == 1
        assert 'browser crashed' in report.error_message

    def test_transient_error_raised_by_capability(self, capability, orchestrator, netflix):
        capability.results.append(TransientExecutionError('rate limited', status_code=429))
        action_id = orchestrator.initiate(netflix, 'automated', now=T0)

        report = orchestrator.execute(action_id, now=T0)
        assert report.retry_count == 1
        assert report.http_status_code == 429

    def test_timeout_counts_against_retries(self, db, netflix):
        release = threading.Event()

        class HangingCapability(ScriptedCapability):
            def invoke(self, target_url, http_method='GET', form_data=None, timeout=None):
                release.wait(5)
                return ok()

        orchestrator = UnsubscribeOrchestrator(db, capability=HangingCapability())
        try:
            action_id = orchestrator.initiate(netflix, 'automated', now=T0)
            started = time.monotonic()
            report = orchestrator.execute(action_id, now=T0, timeout=0.2)

            assert time.monotonic() - started < 4
            assert report.status == ACTION_IN_PROGRESS
            assert report.retry_count == 1
            assert 'timed out' in report.error_message
        finally:
            release.set()

    def test_hung_endpoints_do_not_hold_other_users(self, db, directory, detector):
        release = threading.Event()

        class PartlyHangingCapability(ScriptedCapability):
            def invoke(self, target_url, http_method='GET', form_data=None, timeout=None):
                self.calls.append((target_url, http_method, form_data, timeout))
                if 'stuck' in target_url:
                    release.wait(5)
                return ok()

        capability = PartlyHangingCapability()
        orchestrator = UnsubscribeOrchestrator(db, capability=capability, max_retries=3)

        def subscribe(email, link):
            user_id = directory.create_user(email, now=T0)
            result = detector.process(fact(user_id, ref=email, unsubscribe_link=link, observed_at=T0), now=T0)
            return orchestrator.initiate(result.subscription_id, 'automated', now=T0)

        try:
            stuck = [subscribe(f'stuck{i}@example.com', f'https://stuck{i}.example.com/cancel')
                     for i in range(6)]
            healthy = subscribe('healthy@example.com', 'https://netflix.com/cancel')

            for action_id in stuck:
                assert orchestrator.execute(action_id, now=T0, timeout=0.2).retry_count == 1

            report = orchestrator.execute(healthy, now=T0, timeout=0.5)

            assert report.status == ACTION_AWAITING_CONFIRMATION
            assert report.retry_count == 0
            assert capability.calls[-1][0] == 'https://netflix.com/cancel'
        finally:
            release.set()

    def test_rejection_fails_immediately(self, db, capability, orchestrator, netflix):
        capability.results.append(rejected(404))
        action_id = orchestrator.initiate(netflix, 'automated', now=T0)

        report = orchestrator.execute(action_id, now=T0)

        assert report.status == ACTION_FAILED
        assert report.requires_manual_action is True
        assert report.http_status_code == 404
        assert subscription(db, netflix).status == SUB_ACTIVE

    def test_new_attempt_after_failure_is_a_new_row(self, capability, orchestrator, netflix):
        capability.results.extend([rejected(), ok()])
        first = orchestrator.initiate(netflix, 'automated', now=T0)
        orchestrator.execute(first, now=T0)

        second = orchestrator.initiate(netflix, 'automated', now=T0)
        assert second != first
        assert orchestrator.get_action(first).status == ACTION_FAILED

    def test_live_lease_blocks_second_executor(self, db, capability, orchestrator, netflix):
        action_id = orchestrator.initiate(netflix, 'automated', now=T0)
        with db.transaction() as session:
            action = session.get(UnsubscribeAction, action_id)
            action.status = ACTION_IN_PROGRESS
            action.claim_token = 'other-worker'
            action.claimed_until = T0 + timedelta(minutes=5)

        with pytest.raises(ConflictError):
            orchestrator.execute(action_id, now=T0)
        assert capability.calls == []

    def test_expired_lease_can_be_taken_over(self, db, capability, orchestrator, netflix):
        action_id = orchestrator.initiate(netflix, 'automated', now=T0)
        with db.transaction() as session:
            action = session.get(UnsubscribeAction, action_id)
            action.status = ACTION_IN_PROGRESS
            action.claim_token = 'crashed-worker'
            action.claimed_until = T0 - timedelta(minutes=1)

        report = orchestrator.execute(action_id, now=T0)
        assert report.status == ACTION_AWAITING_CONFIRMATION

    def test_execute_after_completion_is_invalid(self, capability, orchestrator, netflix):
        action_id = orchestrator.initiate(netflix, 'automated', now=T0)
        orchestrator.execute(action_id, now=T0)

        with pytest.raises(InvalidStateError):
            orchestrator.execute(action_id, now=T0)


class TestExecuteManual:

    @pytest.mark.parametrize('strategy', ['manual_link', 'manual_phone', 'email_required'])
    def test_manual_strategies_go_straight_to_monitoring(self, capability, orchestrator, netflix, strategy):
        action_id = orchestrator.initiate(netflix, strategy, manual_instructions='Call 555-0100', now=T0)

        report = orchestrator.execute(action_id, now=T0)

        assert report.status == ACTION_AWAITING_CONFIRMATION
        assert report.manual_instructions == 'Call 555-0100'
        assert report.monitoring_until == T0 + timedelta(days=7)
        assert capability.calls == []


class TestFinalize:

    def test_confirmed(self, db, capability, orchestrator, netflix):
        action_id = orchestrator.initiate(netflix, 'automated', now=T0)
        orchestrator.execute(action_id, now=T0)
        when = T0 + timedelta(days=2)

        assert orchestrator.finalize(action_id, OUTCOME_CONFIRMED, message_ref='msg-77',
                                     observed_at=when, now=when) is True

        action = orchestrator.get_action(action_id)
        assert action.status == ACTION_CONFIRMED
        assert action.confirmation_email_id == 'msg-77'
        assert action.completed_at == when
        sub = subscription(db, netflix)
        assert sub.status == SUB_CANCELLED
        assert sub.cancelled_at == when

    def test_timed_out(self, db, orchestrator, netflix):
        action_id = orchestrator.initiate(netflix, 'manual_link', now=T0)
        orchestrator.execute(action_id, now=T0)

        assert orchestrator.finalize(action_id, OUTCOME_TIMED_OUT, now=T0 + timedelta(days=8)) is True

        action = orchestrator.get_action(action_id)
        assert action.status == ACTION_FAILED
        assert action.requires_manual_action is True
        assert subscription(db, netflix).status == SUB_ACTIVE

    def test_second_finalize_is_noop(self, orchestrator, netflix):
        action_id = orchestrator.initiate(netflix, 'manual_link', now=T0)
        orchestrator.execute(action_id, now=T0)
        orchestrator.finalize(action_id, OUTCOME_CONFIRMED, now=T0)

        assert orchestrator.finalize(action_id, OUTCOME_TIMED_OUT, now=T0) is False
        assert orchestrator.get_action(action_id).status == ACTION_CONFIRMED

    def test_finalize_pending_action_is_noop(self, orchestrator, netflix):
        action_id = orchestrator.initiate(netflix, 'automated', now=T0)
        assert orchestrator.finalize(action_id, OUTCOME_CONFIRMED) is False

    def test_unknown_outcome(self, orchestrator, netflix):
        action_id = orchestrator.initiate(netflix, 'manual_link', now=T0)
        with pytest.raises(ValidationError):
            orchestrator.finalize(action_id, 'maybe')


class TestAudit:

    def test_every_transition_writes_event_and_activity(self, db, capability, orchestrator, netflix):
        capability.results.extend([server_error(), ok()])
        before = audit_counts(db, netflix)

        action_id = orchestrator.initiate(netflix, 'automated', now=T0)    # initiated
        orchestrator.execute(action_id, now=T0)                              # started, retry
        orchestrator.execute(action_id, now=T0 + timedelta(minutes=5))       # submitted
        orchestrator.finalize(action_id, OUTCOME_CONFIRMED, now=T0 + timedelta(days=1))  # cancelled

        events, entries = audit_counts(db, netflix)
        assert events - before[0] == 5
        assert entries - before[1] == 5

        with db.transaction() as session:
            types = [e.event_type for e in session.query(SubscriptionEvent)
                     .filter_by(subscription_id=netflix).order_by(SubscriptionEvent.id)][before[0]:]
        assert types == ['cancellation_initiated', 'cancellation_started', 'cancellation_retry_scheduled',
                         'cancellation_submitted', 'cancelled']

    def test_failed_transition_leaves_no_partial_state(self, db, orchestrator, netflix):
        before = audit_counts(db, netflix)
        with pytest.raises(ValidationError):
            orchestrator.initiate(netflix, 'automated', target_url='ftp://netflix.com/cancel')

        assert audit_counts(db, netflix) == before
        assert subscription(db, netflix).status == SUB_ACTIVE
        assert orchestrator.actions_for_subscription(netflix) == []


class TestBackoff:

    def test_curve_is_monotonic_and_capped(self, orchestrator):
        delays = [orchestrator.backoff_delay(n).total_seconds() for n in range(1, 10)]

        assert delays[:4] == [60, 120, 240, 480]
        assert delays == sorted(delays)
        assert max(delays) == 3600
