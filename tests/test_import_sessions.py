"""
Tests for the import session lifecycle.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from subscout.constants import SESSION_RUNNING, SESSION_COMPLETED, SESSION_FAILED, SESSION_CANCELLED
from subscout.database.locks import EntityLockManager
from subscout.database.models import ActivityLogEntry, User
from subscout.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from subscout.import_sessions import ImportSessionManager
from subscout.users import UserDirectory

from helpers import T0


class TestStart:
    """Opening scan sessions."""

    def test_start_creates_running_session(self, sessions, user_id):
        session_id = sessions.start(user_id, scan_params={'folder': 'INBOX'}, now=T0)

        scan = sessions.get(session_id)
        assert scan.status == SESSION_RUNNING
        assert scan.scan_params == {'folder': 'INBOX'}
        assert scan.started_at == T0
        assert scan.total_emails_found == 0

    def test_second_start_conflicts(self, sessions, user_id):
        sessions.start(user_id)

        with pytest.raises(ConflictError):
            sessions.start(user_id)

    def test_start_allowed_after_previous_session_finished(self, sessions, user_id):
        first = sessions.start(user_id)
        sessions.complete(first)

        second = sessions.start(user_id)
        assert second != first
        assert sessions.running_session(user_id).id == second

    def test_start_for_unknown_user(self, sessions):
        with pytest.raises(NotFoundError):
            sessions.start(999)

    def test_start_for_deleted_user(self, sessions, directory, user_id):
        directory.soft_delete(user_id)

        with pytest.raises(InvalidStateError):
            sessions.start(user_id)

    def test_concurrent_starts_yield_exactly_one_session(self, file_db):
        locks = EntityLockManager()
        user_id = UserDirectory(file_db, locks).create_user('race@example.com')
        manager = ImportSessionManager(file_db, locks)

        def attempt(_):
            try:
                return manager.start(user_id)
            except ConflictError:
                return None

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(attempt, range(8)))

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert results.count(None) == 7

    def test_start_writes_activity_entry(self, db, sessions, user_id):
        session_id = sessions.start(user_id, now=T0)

        with db.transaction() as session:
            entry = session.query(ActivityLogEntry).filter_by(related_session_id=session_id).one()
            assert entry.activity_type == 'scan_started'


class TestProgress:
    """Counter updates."""

    def test_counters_accumulate(self, sessions, user_id):
        session_id = sessions.start(user_id)

        sessions.record_progress(session_id, found_delta=50)
        sessions.record_progress(session_id, processed_delta=20, subs_delta=1)
        scan = sessions.record_progress(session_id, processed_delta=30, subs_delta=2)

        assert scan.total_emails_found == 50
        assert scan.emails_processed == 50
        assert scan.subscriptions_found == 3

    def test_counters_never_decrease(self, sessions, user_id):
        session_id = sessions.start(user_id)
        sessions.record_progress(session_id, found_delta=10, processed_delta=5)

        with pytest.raises(ValidationError):
            sessions.record_progress(session_id, processed_delta=-1)

        scan = sessions.get(session_id)
        assert scan.emails_processed == 5

    def test_processed_cannot_exceed_found(self, sessions, user_id):
        session_id = sessions.start(user_id)
        sessions.record_progress(session_id, found_delta=2)

        with pytest.raises(ValidationError):
            sessions.record_progress(session_id, processed_delta=3)

        assert sessions.get(session_id).emails_processed == 0

    def test_progress_on_finished_session(self, sessions, user_id):
        session_id = sessions.start(user_id)
        sessions.complete(session_id)

        with pytest.raises(InvalidStateError):
            sessions.record_progress(session_id, found_delta=1)

    def test_progress_on_unknown_session(self, sessions):
        with pytest.raises(NotFoundError):
            sessions.record_progress(404, found_delta=1)


class TestTerminalTransitions:
    """complete / fail / cancel."""

    def test_complete_is_idempotent(self, sessions, user_id):
        session_id = sessions.start(user_id)

        assert sessions.complete(session_id) is True
        assert sessions.complete(session_id) is False
        assert sessions.get(session_id).status == SESSION_COMPLETED

    def test_complete_after_fail_is_rejected(self, sessions, user_id):
        session_id = sessions.start(user_id)
        sessions.fail(session_id, 'inbox unavailable')

        with pytest.raises(InvalidStateError):
            sessions.complete(session_id)
        assert sessions.get(session_id).status == SESSION_FAILED

    def test_fail_records_reason(self, sessions, user_id):
        session_id = sessions.start(user_id)
        sessions.fail(session_id, 'token expired', now=T0)

        scan = sessions.get(session_id)
        assert scan.error_message == 'token expired'
        assert scan.completed_at == T0

    def test_cancel_then_cancel_again(self, sessions, user_id):
        session_id = sessions.start(user_id)

        assert sessions.cancel(session_id) is True
        assert sessions.cancel(session_id) is False
        assert sessions.get(session_id).status == SESSION_CANCELLED

    def test_complete_stamps_last_scan(self, db, sessions, user_id):
        session_id = sessions.start(user_id)
        sessions.complete(session_id, now=T0)

        with db.transaction() as session:
            assert session.get(User, user_id).last_scan_at == T0

    def test_each_transition_logs_once(self, db, sessions, user_id):
        session_id = sessions.start(user_id)
        sessions.complete(session_id)
        sessions.complete(session_id)

        with db.transaction() as session:
            types = [e.activity_type for e in session.query(ActivityLogEntry)
                     .filter_by(related_session_id=session_id).order_by(ActivityLogEntry.id)]
        assert types == ['scan_started', 'scan_completed']
