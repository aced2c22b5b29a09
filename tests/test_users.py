"""
Tests for the user directory.
"""

from datetime import timedelta

import pytest

from subscout.constants import SESSION_CANCELLED
from subscout.database.models import ActivityLogEntry, ImportSession, Subscription, User
from subscout.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError

from helpers import T0, fact


def test_create_user_normalizes_email(directory):
    user_id = directory.create_user('  Bob@Example.COM ', full_name='Bob', credential_handle='vault:bob', now=T0)

    user = directory.get_user(user_id)
    assert user.email == 'bob@example.com'
    assert user.credential_updated_at == T0
    assert user.subscription_count == 0
    assert directory.find_by_email('BOB@example.com').id == user_id


def test_duplicate_email_conflicts(directory, user_id):
    with pytest.raises(ConflictError):
        directory.create_user('alice@example.com')


@pytest.mark.parametrize('email', ['', 'not-an-email', None])
def test_invalid_email(directory, email):
    with pytest.raises(ValidationError):
        directory.create_user(email)


def test_unknown_user(directory):
    with pytest.raises(NotFoundError):
        directory.get_user(999)


class TestSoftDelete:

    def test_tombstones_and_hides_from_listing(self, directory, user_id):
        assert directory.soft_delete(user_id, now=T0 + timedelta(days=1)) is True

        user = directory.get_user(user_id)
        assert user.is_deleted
        assert user.is_active is False
        assert directory.list_users() == []
        assert [u.id for u in directory.list_users(include_deleted=True)] == [user_id]

    def test_second_delete_returns_false(self, directory, user_id):
        directory.soft_delete(user_id)
        assert directory.soft_delete(user_id) is False

    def test_running_scan_is_cancelled(self, db, directory, sessions, user_id):
        session_id = sessions.start(user_id, now=T0)

        directory.soft_delete(user_id, now=T0 + timedelta(minutes=5))

        with db.transaction() as session:
            scan = session.get(ImportSession, session_id)
            assert scan.status == SESSION_CANCELLED
            assert scan.completed_at == T0 + timedelta(minutes=5)

    def test_deleted_user_cannot_start_scan(self, directory, sessions, user_id):
        directory.soft_delete(user_id)
        with pytest.raises(InvalidStateError):
            sessions.start(user_id)

    def test_deleted_user_gets_no_new_subscriptions(self, directory, detector, user_id):
        directory.soft_delete(user_id)
        with pytest.raises(InvalidStateError):
            detector.process(fact(user_id), now=T0)


def test_purge_removes_everything(db, directory, netflix, user_id):
    directory.purge(user_id)

    with db.transaction() as session:
        assert session.get(User, user_id) is None
        assert session.query(Subscription).count() == 0
        assert session.query(ActivityLogEntry).count() == 0
