"""
Lifecycle of inbox scan sessions.

A session moves ``running -> {completed, failed, cancelled}`` exactly once.
Counters only grow, and a user never has two running sessions: the partial
unique index on ``(user_id) WHERE status = 'running'`` rejects the second
insert even when two ``start`` calls race.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from .audit import ActivityLog
from .constants import (
    SESSION_RUNNING, SESSION_COMPLETED, SESSION_FAILED, SESSION_CANCELLED,
    ACTIVITY_SCAN_STARTED, ACTIVITY_SCAN_COMPLETED, ACTIVITY_SCAN_FAILED, ACTIVITY_SCAN_CANCELLED
)
from .database import DatabaseManager
from .database.locks import EntityLockManager, get_lock_manager, user_key
from .database.models import ImportSession, User
from .exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from .logging import WorkflowLogger
from .users import require_active_user

_TERMINAL_ACTIVITY = {
    SESSION_COMPLETED: ACTIVITY_SCAN_COMPLETED,
    SESSION_FAILED: ACTIVITY_SCAN_FAILED,
    SESSION_CANCELLED: ACTIVITY_SCAN_CANCELLED,
}


class ImportSessionManager:
    """Owns the lifecycle of inbox scans."""

    def __init__(self, db: DatabaseManager, lock_manager: Optional[EntityLockManager] = None):
        self.db = db
        self.locks = lock_manager or get_lock_manager()
        self.log = WorkflowLogger('import_sessions')

    def start(self, user_id: int, scan_params: Optional[Dict[str, Any]] = None,
              now: Optional[datetime] = None) -> int:
        """
        Open a running session for a user.

        Returns:
            The new session id

        Raises:
            ConflictError: the user already has a running session
        """
        now = now or datetime.now()
        with self.locks.hold(user_key(user_id)):
            try:
                with self.db.transaction() as session:
                    require_active_user(session, user_id)

                    existing = session.query(ImportSession.id).filter(
                        ImportSession.user_id == user_id,
                        ImportSession.status == SESSION_RUNNING
                    ).first()
                    if existing:
                        raise ConflictError("A scan is already running for this user",
                                            {'user_id': user_id, 'session_id': existing[0]})

                    scan = ImportSession(
                        user_id=user_id,
                        status=SESSION_RUNNING,
                        scan_params=scan_params or {},
                        started_at=now
                    )
                    session.add(scan)
                    session.flush()
                    ActivityLog.record(session, user_id, ACTIVITY_SCAN_STARTED,
                                       "Inbox scan started", session_id=scan.id,
                                       metadata={'scan_params': scan_params or {}}, now=now)
                    session_id = scan.id
            except IntegrityError:
                raise ConflictError("A scan is already running for this user", {'user_id': user_id})

        self.log.transition('session', session_id, None, SESSION_RUNNING, {'user_id': user_id})
        return session_id

    def record_progress(self, session_id: int, found_delta: int = 0,
                        processed_delta: int = 0, subs_delta: int = 0) -> ImportSession:
        """
        Add to the session counters.

        The increment is a single conditional UPDATE, so concurrent callers
        never lose an increment and ``emails_processed`` never overtakes
        ``total_emails_found``.
        """
        for name, delta in (('found_delta', found_delta), ('processed_delta', processed_delta),
                            ('subs_delta', subs_delta)):
            if delta is None or delta < 0:
                raise ValidationError("Progress deltas must be non-negative", field=name, value=delta)

        with self.db.transaction() as session:
            stmt = (
                update(ImportSession)
                .where(
                    ImportSession.id == session_id,
                    ImportSession.status == SESSION_RUNNING,
                    ImportSession.emails_processed + processed_delta
                    <= ImportSession.total_emails_found + found_delta
                )
                .values(
                    total_emails_found=ImportSession.total_emails_found + found_delta,
                    emails_processed=ImportSession.emails_processed + processed_delta,
                    subscriptions_found=ImportSession.subscriptions_found + subs_delta
                )
                .execution_options(synchronize_session=False)
            )
            result = session.execute(stmt)

            if result.rowcount == 0:
                scan = session.get(ImportSession, session_id)
                if scan is None:
                    raise NotFoundError("Import session not found", {'session_id': session_id})
                if scan.status != SESSION_RUNNING:
                    raise InvalidStateError("Import session is not running",
                                            current_state=scan.status,
                                            context={'session_id': session_id})
                raise ValidationError(
                    "emails_processed would exceed total_emails_found",
                    field='processed_delta', value=processed_delta
                )

            scan = session.get(ImportSession, session_id)
            session.refresh(scan)
            return scan

    def complete(self, session_id: int, now: Optional[datetime] = None) -> bool:
        return self._finish(session_id, SESSION_COMPLETED, now=now)

    def fail(self, session_id: int, reason: str, now: Optional[datetime] = None) -> bool:
        return self._finish(session_id, SESSION_FAILED, reason=reason, now=now)

    def cancel(self, session_id: int, now: Optional[datetime] = None) -> bool:
        return self._finish(session_id, SESSION_CANCELLED, now=now)

    def get(self, session_id: int) -> ImportSession:
        with self.db.transaction() as session:
            scan = session.get(ImportSession, session_id)
            if scan is None:
                raise NotFoundError("Import session not found", {'session_id': session_id})
            return scan

    def running_session(self, user_id: int) -> Optional[ImportSession]:
        with self.db.transaction() as session:
            return session.query(ImportSession).filter(
                ImportSession.user_id == user_id,
                ImportSession.status == SESSION_RUNNING
            ).first()

    def _finish(self, session_id: int, target: str, reason: Optional[str] = None,
                now: Optional[datetime] = None) -> bool:
        """
        Move a running session to ``target``.

        Returns:
            True if the transition happened, False if the session was already
            in ``target`` (idempotent no-op)

        Raises:
            InvalidStateError: the session is in a different terminal state
        """
        now = now or datetime.now()
        with self.db.transaction() as session:
            values = {'status': target, 'completed_at': now}
            if reason is not None:
                values['error_message'] = reason
            result = session.execute(
                update(ImportSession)
                .where(ImportSession.id == session_id, ImportSession.status == SESSION_RUNNING)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

            scan = session.get(ImportSession, session_id)
            if scan is None:
                raise NotFoundError("Import session not found", {'session_id': session_id})

            if result.rowcount == 0:
                if scan.status == target:
                    self.log.debug("Import session already finished", {'session_id': session_id, 'status': target})
                    return False
                raise InvalidStateError(
                    f"Cannot move session from {scan.status} to {target}",
                    current_state=scan.status,
                    context={'session_id': session_id}
                )

            session.refresh(scan)
            description = f"Inbox scan {target}: {scan.emails_processed} emails processed, " \
                          f"{scan.subscriptions_found} subscriptions found"
            if reason:
                description += f" ({reason})"
            ActivityLog.record(
                session, scan.user_id, _TERMINAL_ACTIVITY[target], description,
                session_id=scan.id,
                metadata={
                    'total_emails_found': scan.total_emails_found,
                    'emails_processed': scan.emails_processed,
                    'subscriptions_found': scan.subscriptions_found,
                    'error_message': reason,
                },
                now=now
            )
            if target == SESSION_COMPLETED:
                user = session.get(User, scan.user_id)
                user.last_scan_at = now

        self.log.transition('session', session_id, SESSION_RUNNING, target, {'reason': reason} if reason else None)
        return True
