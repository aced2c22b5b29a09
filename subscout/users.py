"""
User directory: creation, tombstoning and purging of account owners.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .audit import ActivityLog
from .constants import (
    ACTIVITY_USER_CREATED, ACTIVITY_USER_DELETED, ACTIVITY_SCAN_CANCELLED,
    SESSION_RUNNING, SESSION_CANCELLED
)
from .database import DatabaseManager
from .database.locks import EntityLockManager, get_lock_manager, user_key
from .database.models import User, ImportSession
from .exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def require_active_user(session: Session, user_id: int) -> User:
    """Load a user that may take part in workflows.

    Raises:
        NotFoundError: unknown user
        InvalidStateError: user is tombstoned
    """
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", {'user_id': user_id})
    if user.is_deleted:
        raise InvalidStateError("User has been deleted", current_state='deleted',
                                context={'user_id': user_id})
    return user


class UserDirectory:
    """Manages account owners."""

    def __init__(self, db: DatabaseManager, lock_manager: Optional[EntityLockManager] = None):
        self.db = db
        self.locks = lock_manager or get_lock_manager()

    def create_user(self, email: str, full_name: Optional[str] = None,
                    credential_handle: Optional[str] = None,
                    now: Optional[datetime] = None) -> int:
        """Create a user and return its id."""
        if not email or '@' not in email:
            raise ValidationError("Invalid email address", field='email', value=email)
        now = now or datetime.now()

        try:
            with self.db.transaction() as session:
                user = User(
                    email=email.strip().lower(),
                    full_name=full_name,
                    credential_handle=credential_handle,
                    credential_updated_at=now if credential_handle else None,
                    created_at=now
                )
                session.add(user)
                session.flush()
                ActivityLog.record(session, user.id, ACTIVITY_USER_CREATED,
                                   f"User {user.email} created", now=now)
                user_id = user.id
        except IntegrityError:
            raise ConflictError("A user with this email already exists", {'email': email})

        logger.info(f"Created user {user_id} ({email})")
        return user_id

    def get_user(self, user_id: int) -> User:
        with self.db.transaction() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found", {'user_id': user_id})
            return user

    def find_by_email(self, email: str) -> Optional[User]:
        with self.db.transaction() as session:
            return session.query(User).filter(User.email == email.strip().lower()).first()

    def list_users(self, include_deleted: bool = False) -> List[User]:
        with self.db.transaction() as session:
            query = session.query(User)
            if not include_deleted:
                query = query.filter(User.deleted_at.is_(None))
            return query.order_by(User.id).all()

    def soft_delete(self, user_id: int, now: Optional[datetime] = None) -> bool:
        """Tombstone a user. Returns False if the user was already deleted.

        A running scan is cancelled so the user leaves every active workflow.
        """
        now = now or datetime.now()
        with self.locks.hold(user_key(user_id)):
            with self.db.transaction() as session:
                user = session.get(User, user_id)
                if user is None:
                    raise NotFoundError("User not found", {'user_id': user_id})
                if user.is_deleted:
                    return False

                user.deleted_at = now
                user.is_active = False

                running = session.query(ImportSession).filter(
                    ImportSession.user_id == user_id,
                    ImportSession.status == SESSION_RUNNING
                ).all()
                for scan in running:
                    scan.status = SESSION_CANCELLED
                    scan.completed_at = now
                    ActivityLog.record(session, user_id, ACTIVITY_SCAN_CANCELLED,
                                       "Scan cancelled because the user was deleted",
                                       session_id=scan.id, now=now)

                ActivityLog.record(session, user_id, ACTIVITY_USER_DELETED,
                                   f"User {user.email} deleted", now=now)

        logger.info(f"Soft-deleted user {user_id}")
        return True

    def purge(self, user_id: int) -> None:
        """Hard delete a user and everything the user owns."""
        with self.locks.hold(user_key(user_id)):
            with self.db.transaction() as session:
                user = session.get(User, user_id)
                if user is None:
                    raise NotFoundError("User not found", {'user_id': user_id})
                session.delete(user)
        logger.info(f"Purged user {user_id}")
