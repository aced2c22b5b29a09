"""
Subscription registry: merges observations into one current subscription per
(user, service).

Merge rules:

1. No current subscription: create one from the observation (``detected``).
2. Current subscription: a field is overwritten only when the observation's
   confidence is strictly greater than the stored confidence, or when the
   stored field is empty. A differing price or billing period always produces
   a ``price_change`` event, whether or not it was adopted.
3. Equal confidence with conflicting values: ``manual > llm > rule_based``,
   then the most recent observation wins.
4. Evidence ids accumulate without duplicates. A merge that changes only
   provenance (confidence, method, evidence, last seen date) emits ``verified``.

Every merge recomputes the owner's spend aggregates in the same transaction.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..audit import AuditTrail
from ..constants import (
    SUB_ACTIVE, SUB_CANCELLED, SUB_EXPIRED, SUB_CURRENT_STATES, DEFAULT_CURRENCY,
    DETECTION_METHOD_RANK,
    EVENT_DETECTED, EVENT_UPDATED, EVENT_VERIFIED, EVENT_PRICE_CHANGE, EVENT_RENEWAL_REMINDER,
    EVENT_EXPIRED,
    ACTIVITY_SUBSCRIPTION_DETECTED, ACTIVITY_SUBSCRIPTION_UPDATED, ACTIVITY_SUBSCRIPTION_VERIFIED,
    ACTIVITY_PRICE_CHANGE, ACTIVITY_RENEWAL_REMINDER, ACTIVITY_SUBSCRIPTION_EXPIRED
)
from ..database import DatabaseManager
from ..database.aggregates import refresh_user_aggregates
from ..database.locks import EntityLockManager, get_lock_manager, service_key, subscription_key
from ..database.models import Subscription, SubscriptionEvent, User
from ..exceptions import InvalidStateError, NotFoundError
from ..logging import WorkflowLogger
from ..types import MergeResult, Observation
from ..users import require_active_user
from .catalog import ServiceCatalog

COMMERCIAL_FIELDS = ('price', 'billing_period', 'currency')


def _same_value(stored: Any, observed: Any) -> bool:
    if isinstance(stored, Decimal) or isinstance(observed, Decimal):
        return Decimal(str(stored)) == Decimal(str(observed))
    return stored == observed


class SubscriptionRegistry:
    """Deduplicating, confidence-weighted store of detected subscriptions."""

    def __init__(self, db: DatabaseManager, lock_manager: Optional[EntityLockManager] = None):
        self.db = db
        self.locks = lock_manager or get_lock_manager()
        self.audit = AuditTrail('registry')
        self.log = WorkflowLogger('registry')

    def merge(self, observation: Observation, now: Optional[datetime] = None) -> MergeResult:
        """Merge one observation. See module docstring for the rules."""
        now = now or datetime.now()
        with self.log.bind(user_id=observation.user_id):
            with self.locks.hold(service_key(observation.user_id, observation.service_name)):
                try:
                    return self._merge_locked(observation, now)
                except IntegrityError:
                    # Another process created the active row first; merge into it
                    self.log.warning("Concurrent insert detected, retrying merge as update")
                    return self._merge_locked(observation, now)

    def _merge_locked(self, observation: Observation, now: datetime) -> MergeResult:
        current_id = self._current_subscription_id(observation.user_id, observation.service_name)
        keys = [subscription_key(current_id)] if current_id else []

        with self.locks.hold(*keys):
            with self.db.transaction() as session:
                require_active_user(session, observation.user_id)
                current = self._current_subscription(session, observation.user_id,
                                                     observation.service_name)
                if current is None:
                    result = self._create(session, observation, now)
                else:
                    result = self._update(session, current, observation, now)

                if result.subscription_id is not None:
                    if observation.from_catalog:
                        ServiceCatalog.record_detection(session, observation.service_name,
                                                        observation.price)
                    refresh_user_aggregates(session, observation.user_id)

        if result.created:
            self.log.transition('subscription', result.subscription_id, None, SUB_ACTIVE,
                                {'service_name': observation.service_name})
        self.log.info("Observation merged", {
            'subscription_id': result.subscription_id,
            'service_name': observation.service_name,
            'created': result.created,
            'skipped': result.skipped,
            'adopted_fields': list(result.adopted_fields),
            'price_changed': result.price_changed,
        })
        return result

    def _current_subscription_id(self, user_id: int, service_name: str) -> Optional[int]:
        with self.db.transaction() as session:
            current = self._current_subscription(session, user_id, service_name)
            return current.id if current else None

    @staticmethod
    def _current_subscription(session: Session, user_id: int, service_name: str) -> Optional[Subscription]:
        return session.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.service_name == service_name,
            Subscription.status.in_(SUB_CURRENT_STATES)
        ).order_by(Subscription.id.desc()).first()

    def _create(self, session: Session, observation: Observation, now: datetime) -> MergeResult:
        observed_at = observation.observed_at or now

        last_cancelled = session.query(func.max(Subscription.cancelled_at)).filter(
            Subscription.user_id == observation.user_id,
            Subscription.service_name == observation.service_name,
            Subscription.status == SUB_CANCELLED
        ).scalar()
        if last_cancelled is not None and observed_at <= last_cancelled:
            return MergeResult(subscription_id=None, skipped=True,
                               reason='observation predates the last cancellation')

        values = {k: v for k, v in observation.field_values().items() if v is not None}
        values.setdefault('currency', DEFAULT_CURRENCY)
        subscription = Subscription(
            user_id=observation.user_id,
            service_name=observation.service_name,
            status=SUB_ACTIVE,
            source_email_ids=[observation.evidence_id] if observation.evidence_id else [],
            detection_confidence=observation.confidence,
            detected_by=observation.method,
            first_detected_date=observed_at.date(),
            last_verified_date=observed_at,
            created_at=now,
            updated_at=now,
            **values
        )
        session.add(subscription)
        session.flush()

        self.audit.record(
            session, subscription, EVENT_DETECTED, ACTIVITY_SUBSCRIPTION_DETECTED,
            f"Detected {subscription.service_name} subscription",
            metadata={
                'price': observation.price,
                'billing_period': observation.billing_period,
                'confidence': observation.confidence,
                'method': observation.method,
                'evidence_id': observation.evidence_id,
            },
            now=now
        )
        return MergeResult(subscription_id=subscription.id, created=True,
                           adopted_fields=tuple(sorted(values)))

    def _update(self, session: Session, current: Subscription, observation: Observation,
                now: datetime) -> MergeResult:
        observed_at = observation.observed_at or now
        stored_confidence = current.detection_confidence or 0.0
        wins = self._observation_wins(current, observation, observed_at)

        previous_price = current.price
        previous_period = current.billing_period

        adopted: List[str] = []
        for name, value in observation.field_values().items():
            if value is None:
                continue
            stored = getattr(current, name)
            if stored is None:
                setattr(current, name, value)
                adopted.append(name)
            elif not _same_value(stored, value) and wins:
                setattr(current, name, value)
                adopted.append(name)

        price_changed = (
            (observation.price is not None and previous_price is not None
             and not _same_value(previous_price, observation.price))
            or (observation.billing_period is not None and previous_period is not None
                and observation.billing_period != previous_period)
        )

        provenance: List[str] = []
        if wins:
            confidence = max(stored_confidence, observation.confidence)
            if abs(confidence - stored_confidence) > 1e-9:
                provenance.append('detection_confidence')
            if current.detected_by != observation.method:
                provenance.append('detected_by')
            current.detection_confidence = confidence
            current.detected_by = observation.method
        if current.add_evidence(observation.evidence_id):
            provenance.append('source_email_ids')
        if current.last_verified_date is None or observed_at > current.last_verified_date:
            current.last_verified_date = observed_at
            provenance.append('last_verified_date')
        if current.first_detected_date is None or observed_at.date() < current.first_detected_date:
            current.first_detected_date = observed_at.date()
        current.updated_at = now
        session.flush()

        if price_changed:
            price_adopted = 'price' in adopted or 'billing_period' in adopted
            self.audit.record(
                session, current, EVENT_PRICE_CHANGE, ACTIVITY_PRICE_CHANGE,
                f"{current.service_name} price changed from {previous_price} ({previous_period}) "
                f"to {observation.price} ({observation.billing_period or previous_period})",
                metadata={
                    'previous_price': previous_price,
                    'previous_billing_period': previous_period,
                    'observed_price': observation.price,
                    'observed_billing_period': observation.billing_period,
                    'adopted': price_adopted,
                    'confidence': observation.confidence,
                    'method': observation.method,
                    'evidence_id': observation.evidence_id,
                },
                now=now
            )

        other_fields = [f for f in adopted if f not in COMMERCIAL_FIELDS]
        if other_fields:
            self.audit.record(
                session, current, EVENT_UPDATED, ACTIVITY_SUBSCRIPTION_UPDATED,
                f"Updated {current.service_name}: {', '.join(other_fields)}",
                metadata={'fields': other_fields, 'confidence': observation.confidence,
                          'method': observation.method, 'evidence_id': observation.evidence_id},
                now=now
            )
        elif provenance and not price_changed:
            # Provenance-only change: confidence, method, evidence or last seen date
            self.audit.record(
                session, current, EVENT_VERIFIED, ACTIVITY_SUBSCRIPTION_VERIFIED,
                f"{current.service_name} seen again in {observation.evidence_id or 'a new observation'}",
                metadata={'fields': provenance, 'confidence': current.detection_confidence,
                          'method': current.detected_by, 'evidence_id': observation.evidence_id,
                          'last_verified_date': current.last_verified_date},
                now=now
            )

        return MergeResult(subscription_id=current.id, created=False,
                           adopted_fields=tuple(adopted), price_changed=price_changed)

    @staticmethod
    def _observation_wins(current: Subscription, observation: Observation,
                          observed_at: datetime) -> bool:
        """Decide whether conflicting values from the observation replace stored ones."""
        stored_confidence = current.detection_confidence or 0.0
        if abs(observation.confidence - stored_confidence) > 1e-9:
            return observation.confidence > stored_confidence

        new_rank = DETECTION_METHOD_RANK.get(observation.method, 0)
        stored_rank = DETECTION_METHOD_RANK.get(current.detected_by, 0)
        if new_rank != stored_rank:
            return new_rank > stored_rank

        return current.last_verified_date is None or observed_at >= current.last_verified_date

    def emit_renewal_reminders(self, now: Optional[datetime] = None, within_days: int = 3) -> int:
        """
        Emit one ``renewal_reminder`` per active subscription renewing within
        ``within_days``. Re-running for the same renewal date emits nothing.
        """
        now = now or datetime.now()
        today = now.date()
        horizon = today + timedelta(days=within_days)

        with self.db.transaction() as session:
            due_ids = [row[0] for row in session.query(Subscription.id).join(User).filter(
                Subscription.status == SUB_ACTIVE,
                Subscription.next_renewal_date.isnot(None),
                Subscription.next_renewal_date >= today,
                Subscription.next_renewal_date <= horizon,
                User.deleted_at.is_(None)
            ).all()]

        emitted = 0
        for subscription_id in due_ids:
            with self.locks.hold(subscription_key(subscription_id)):
                with self.db.transaction() as session:
                    subscription = session.get(Subscription, subscription_id)
                    if subscription.status != SUB_ACTIVE or subscription.next_renewal_date is None:
                        continue
                    renewal = subscription.next_renewal_date.isoformat()
                    already_sent = any(
                        (event.event_metadata or {}).get('renewal_date') == renewal
                        for event in session.query(SubscriptionEvent).filter(
                            SubscriptionEvent.subscription_id == subscription_id,
                            SubscriptionEvent.event_type == EVENT_RENEWAL_REMINDER
                        )
                    )
                    if already_sent:
                        continue
                    self.audit.record(
                        session, subscription, EVENT_RENEWAL_REMINDER, ACTIVITY_RENEWAL_REMINDER,
                        f"{subscription.service_name} renews on {renewal}",
                        metadata={'renewal_date': renewal, 'price': subscription.price,
                                  'billing_period': subscription.billing_period},
                        now=now
                    )
                    emitted += 1

        self.log.info("Renewal reminders emitted", {'count': emitted})
        return emitted

    def mark_expired(self, subscription_id: int, now: Optional[datetime] = None) -> None:
        """Move an active subscription to ``expired``."""
        now = now or datetime.now()
        with self.locks.hold(subscription_key(subscription_id)):
            with self.db.transaction() as session:
                subscription = session.get(Subscription, subscription_id)
                if subscription is None:
                    raise NotFoundError("Subscription not found", {'subscription_id': subscription_id})
                result = session.execute(
                    update(Subscription)
                    .where(Subscription.id == subscription_id, Subscription.status == SUB_ACTIVE)
                    .values(status=SUB_EXPIRED, updated_at=now)
                    .execution_options(synchronize_session='fetch')
                )
                if result.rowcount == 0:
                    raise InvalidStateError("Only active subscriptions can expire",
                                            current_state=subscription.status,
                                            context={'subscription_id': subscription_id})
                self.audit.record(session, subscription, EVENT_EXPIRED, ACTIVITY_SUBSCRIPTION_EXPIRED,
                                  f"{subscription.service_name} subscription expired", now=now)
                refresh_user_aggregates(session, subscription.user_id)
        self.log.transition('subscription', subscription_id, SUB_ACTIVE, SUB_EXPIRED)

    def get(self, subscription_id: int) -> Subscription:
        with self.db.transaction() as session:
            subscription = session.get(Subscription, subscription_id)
            if subscription is None:
                raise NotFoundError("Subscription not found", {'subscription_id': subscription_id})
            return subscription

    def list_for_user(self, user_id: int, status: Optional[str] = None) -> List[Subscription]:
        with self.db.transaction() as session:
            query = session.query(Subscription).filter(Subscription.user_id == user_id)
            if status:
                query = query.filter(Subscription.status == status)
            return query.order_by(Subscription.service_name, Subscription.id).all()
