"""
Audit sinks: the activity log and subscription events.

Both writers add rows to the caller's session so the audit records commit or
roll back together with the state change that produced them.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from .database.models import ActivityLogEntry, Subscription, SubscriptionEvent
from .constants import TRIGGER_SYSTEM

logger = logging.getLogger(__name__)


class ActivityLog:
    """Append-only activity log writer."""

    @staticmethod
    def record(
        session: Session,
        user_id: int,
        activity_type: str,
        description: str,
        subscription_id: Optional[int] = None,
        session_id: Optional[int] = None,
        action_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            user_id=user_id,
            activity_type=activity_type,
            activity_description=description,
            related_subscription_id=subscription_id,
            related_session_id=session_id,
            related_action_id=action_id,
            activity_metadata=_jsonable(metadata),
            created_at=now or datetime.now()
        )
        session.add(entry)
        logger.debug(f"Activity {activity_type} for user {user_id}: {description}")
        return entry


class AuditTrail:
    """Writes the paired subscription event and activity entry for one transition."""

    def __init__(self, component: str = TRIGGER_SYSTEM):
        self.component = component

    def record(
        self,
        session: Session,
        subscription: Subscription,
        event_type: str,
        activity_type: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        action_id: Optional[int] = None,
        session_id: Optional[int] = None,
        triggered_by: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> SubscriptionEvent:
        now = now or datetime.now()
        payload = dict(metadata or {})
        if action_id is not None:
            payload.setdefault('action_id', action_id)

        event = SubscriptionEvent(
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            event_type=event_type,
            event_description=description,
            event_metadata=_jsonable(payload),
            triggered_by=triggered_by or self.component,
            created_at=now
        )
        session.add(event)
        ActivityLog.record(
            session,
            user_id=subscription.user_id,
            activity_type=activity_type,
            description=description,
            subscription_id=subscription.id,
            session_id=session_id,
            action_id=action_id,
            metadata=payload,
            now=now
        )
        return event


def _jsonable(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Convert Decimal/datetime values so the dict fits a JSON column."""
    if data is None:
        return None
    result = {}
    for key, value in data.items():
        if isinstance(value, dict):
            result[key] = _jsonable(value)
        elif isinstance(value, (str, int, float, bool)) or value is None:
            result[key] = value
        elif isinstance(value, (list, tuple)):
            result[key] = [v if isinstance(v, (str, int, float, bool)) or v is None else str(v)
                           for v in value]
        else:
            result[key] = str(value)
    return result
