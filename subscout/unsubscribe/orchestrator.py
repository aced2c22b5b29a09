"""
Unsubscribe orchestrator: the state machine behind one cancellation attempt.

Action states::

    pending -> in_progress -> awaiting_confirmation -> {confirmed, failed}

The subscription follows along: ``active -> pending_cancellation`` when an
attempt starts, ``pending_cancellation -> cancelled`` when it is confirmed and
back to ``active`` when the attempt fails terminally.

Each transition runs under the subscription's lock inside one database
transaction that also writes the paired subscription event and activity
entry. The automated capability call is the one step that runs outside the
lock: the action is claimed with a lease first, the call is made, and the
lock is re-acquired only to record the outcome.
"""

import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ..audit import AuditTrail
from ..config import Config
from ..constants import (
    SUB_ACTIVE, SUB_PENDING_CANCELLATION, SUB_CANCELLED,
    ACTION_PENDING, ACTION_IN_PROGRESS, ACTION_AWAITING_CONFIRMATION, ACTION_CONFIRMED,
    ACTION_FAILED, ACTION_OPEN_STATES, STRATEGY_AUTOMATED,
    OUTCOME_CONFIRMED, OUTCOME_TIMED_OUT, TRIGGER_USER,
    EVENT_CANCELLATION_INITIATED, EVENT_CANCELLATION_STARTED, EVENT_CANCELLATION_RETRY,
    EVENT_CANCELLATION_SUBMITTED, EVENT_CANCELLATION_FAILED, EVENT_CANCELLED,
    EVENT_CANCELLATION_TIMED_OUT,
    ACTIVITY_CANCELLATION_INITIATED, ACTIVITY_CANCELLATION_STARTED, ACTIVITY_CANCELLATION_RETRY,
    ACTIVITY_CANCELLATION_SUBMITTED, ACTIVITY_CANCELLATION_FAILED,
    ACTIVITY_CANCELLATION_CONFIRMED, ACTIVITY_CANCELLATION_TIMED_OUT
)
from ..database import DatabaseManager
from ..database.aggregates import refresh_user_aggregates
from ..database.locks import EntityLockManager, get_lock_manager, subscription_key
from ..database.models import Subscription, UnsubscribeAction, User
from ..exceptions import (
    ConflictError, InvalidStateError, NotFoundError, TransientExecutionError, ValidationError
)
from ..logging import WorkflowLogger
from ..types import ActionContext, CapabilityResult, ExecutionReport
from ..users import require_active_user
from .capability import CancellationCapability, HttpCancellationCapability
from .strategies import UnsubscribeStrategy, get_strategy

# Extra lease time on top of the call timeout before another worker may take over
LEASE_GRACE = timedelta(seconds=60)


class UnsubscribeOrchestrator:
    """Drives unsubscribe actions through their state machine."""

    def __init__(
        self,
        db: DatabaseManager,
        capability: Optional[CancellationCapability] = None,
        lock_manager: Optional[EntityLockManager] = None,
        max_retries: Optional[int] = None,
        max_attempts: Optional[int] = None,
        monitoring_days: Optional[int] = None,
        retry_base_seconds: Optional[int] = None,
        retry_cap_seconds: Optional[int] = None,
        execute_timeout: Optional[float] = None,
        snippet_limit: Optional[int] = None
    ):
        """
        Initialize orchestrator.

        Args:
            db: Database manager
            capability: Cancellation automation; defaults to plain HTTP
            lock_manager: Per-entity locks shared with the other components
            max_retries: Transient retries allowed within one action
            max_attempts: Actions allowed per subscription
            monitoring_days: Length of the confirmation window
            retry_base_seconds: First backoff interval
            retry_cap_seconds: Upper bound for the backoff interval
            execute_timeout: Default timeout for the capability call
            snippet_limit: Maximum stored response characters
        """
        self.db = db
        self.capability = capability or HttpCancellationCapability()
        self.locks = lock_manager or get_lock_manager()
        self.max_retries = max_retries if max_retries is not None else Config.MAX_RETRIES
        self.max_attempts = max_attempts if max_attempts is not None else Config.MAX_ATTEMPTS
        self.monitoring_window = timedelta(
            days=monitoring_days if monitoring_days is not None else Config.MONITORING_DAYS)
        self.retry_base_seconds = retry_base_seconds if retry_base_seconds is not None \
            else Config.RETRY_BASE_SECONDS
        self.retry_cap_seconds = retry_cap_seconds if retry_cap_seconds is not None \
            else Config.RETRY_CAP_SECONDS
        self.execute_timeout = execute_timeout if execute_timeout is not None else Config.EXECUTE_TIMEOUT
        self.snippet_limit = snippet_limit or Config.RESPONSE_SNIPPET_LIMIT
        self.audit = AuditTrail('orchestrator')
        self.log = WorkflowLogger('orchestrator')

    def backoff_delay(self, retry_count: int) -> timedelta:
        """Exponential backoff from the base interval, capped."""
        exponent = max(retry_count - 1, 0)
        seconds = min(self.retry_base_seconds * (2 ** exponent), self.retry_cap_seconds)
        return timedelta(seconds=seconds)

    # ------------------------------------------------------------------
    # initiate
    # ------------------------------------------------------------------

    def initiate(
        self,
        subscription_id: int,
        strategy: str,
        target_url: Optional[str] = None,
        http_method: Optional[str] = None,
        form_data: Optional[Dict[str, Any]] = None,
        manual_instructions: Optional[str] = None,
        triggered_by: str = TRIGGER_USER,
        now: Optional[datetime] = None
    ) -> int:
        """
        Open a new cancellation attempt for an active subscription.

        Returns:
            The new action id

        Raises:
            ConflictError: an attempt is already open, or the attempt limit is reached
            InvalidStateError: the subscription is not active
            ValidationError: unknown strategy or missing target URL
        """
        now = now or datetime.now()
        strategy_impl = get_strategy(strategy)

        with self.log.bind(subscription_id=subscription_id):
            with self.locks.hold(subscription_key(subscription_id)):
                with self.db.transaction() as session:
                    subscription = self._load_subscription(session, subscription_id)
                    require_active_user(session, subscription.user_id)

                    open_action = session.query(UnsubscribeAction.id).filter(
                        UnsubscribeAction.subscription_id == subscription_id,
                        UnsubscribeAction.status.in_(ACTION_OPEN_STATES)
                    ).first()
                    if open_action:
                        raise ConflictError("Subscription already has a cancellation in progress",
                                            {'subscription_id': subscription_id,
                                             'action_id': open_action[0]})

                    if subscription.status != SUB_ACTIVE:
                        raise InvalidStateError("Only active subscriptions can be cancelled",
                                                current_state=subscription.status,
                                                context={'subscription_id': subscription_id})

                    attempts = session.query(UnsubscribeAction).filter(
                        UnsubscribeAction.subscription_id == subscription_id
                    ).count()
                    if attempts >= self.max_attempts:
                        raise ConflictError("Cancellation attempt limit reached",
                                            {'subscription_id': subscription_id,
                                             'attempts': attempts,
                                             'max_attempts': self.max_attempts})

                    url = target_url or subscription.unsubscribe_link
                    strategy_impl.validate(url)

                    self._move_subscription(session, subscription, SUB_ACTIVE, SUB_PENDING_CANCELLATION, now)

                    action = UnsubscribeAction(
                        subscription_id=subscription_id,
                        user_id=subscription.user_id,
                        action_type=strategy_impl.name,
                        status=ACTION_PENDING,
                        unsubscribe_url=url,
                        http_method=(http_method or ('POST' if form_data else 'GET')).upper(),
                        form_data=form_data,
                        retry_count=0,
                        max_retries=self.max_retries,
                        manual_instructions=manual_instructions or strategy_impl.default_instructions(subscription),
                        initiated_at=now
                    )
                    session.add(action)
                    session.flush()

                    self.audit.record(
                        session, subscription, EVENT_CANCELLATION_INITIATED, ACTIVITY_CANCELLATION_INITIATED,
                        f"Cancellation of {subscription.service_name} initiated ({strategy_impl.name})",
                        metadata={'strategy': strategy_impl.name, 'attempt': attempts + 1,
                                  'from_status': SUB_ACTIVE, 'to_status': SUB_PENDING_CANCELLATION},
                        action_id=action.id,
                        triggered_by=triggered_by,
                        now=now
                    )
                    refresh_user_aggregates(session, subscription.user_id)
                    action_id = action.id

            self.log.transition('action', action_id, None, ACTION_PENDING, {'strategy': strategy})
        return action_id

    # ------------------------------------------------------------------
    # execute
    # ------------------------------------------------------------------

    def execute(self, action_id: int, now: Optional[datetime] = None,
                timeout: Optional[float] = None) -> ExecutionReport:
        """
        Run one step of an action.

        Manual strategies move straight to ``awaiting_confirmation``. The
        automated strategy invokes the capability and records the outcome:
        success opens the monitoring window, a transient failure schedules a
        retry (or fails the action once retries are exhausted), any other
        failure fails the action.

        Raises:
            InvalidStateError: the action is not pending/in_progress, or its retry is not due yet
            ConflictError: another worker is executing the action
        """
        explicit_now = now is not None
        now = now or datetime.now()
        timeout = timeout if timeout is not None else self.execute_timeout
        subscription_id = self._subscription_id_for(action_id)

        with self.log.bind(action_id=action_id, subscription_id=subscription_id):
            with self.locks.hold(subscription_key(subscription_id)):
                with self.db.transaction() as session:
                    action = self._load_action(session, action_id)
                    subscription = action.subscription
                    require_active_user(session, action.user_id)
                    strategy_impl = get_strategy(action.action_type)

                    if action.status not in (ACTION_PENDING, ACTION_IN_PROGRESS):
                        raise InvalidStateError("Action cannot be executed in its current state",
                                                current_state=action.status,
                                                context={'action_id': action_id})
                    previous_status = action.status

                    if not strategy_impl.requires_execution:
                        self._await_confirmation(session, action, subscription, now,
                                                 description=f"Waiting for the user to cancel "
                                                             f"{subscription.service_name} ({action.action_type})")
                        report = self._report(action)
                        self.log.transition('action', action_id, previous_status, ACTION_AWAITING_CONFIRMATION,
                                            {'strategy': action.action_type})
                        return report

                    claim = self._claim(session, action, subscription, timeout, now)
                    request = (action.unsubscribe_url, action.http_method, action.form_data)

            result, transient = self._invoke(strategy_impl, request, timeout)
            recorded_at = now if explicit_now else datetime.now()

            with self.locks.hold(subscription_key(subscription_id)):
                with self.db.transaction() as session:
                    action = self._load_action(session, action_id)
                    subscription = action.subscription
                    if action.claim_token != claim:
                        raise ConflictError("Execution lease expired before the outcome was recorded",
                                            {'action_id': action_id})
                    action.claim_token = None
                    action.claimed_until = None

                    if transient is not None:
                        self._record_transient(session, action, subscription, transient, recorded_at)
                    elif result.is_success:
                        action.http_status_code = result.status_code
                        action.response_body_snippet = self._snippet(result.body_snippet)
                        action.next_attempt_at = None
                        action.error_message = None
                        self._await_confirmation(session, action, subscription, recorded_at,
                                                 description=f"Cancellation request for "
                                                             f"{subscription.service_name} accepted "
                                                             f"(HTTP {result.status_code})")
                    else:
                        action.http_status_code = result.status_code
                        action.response_body_snippet = self._snippet(result.body_snippet)
                        reason = result.error or f"Cancellation rejected (HTTP {result.status_code})"
                        self._fail(session, action, subscription, reason, recorded_at,
                                   EVENT_CANCELLATION_FAILED, ACTIVITY_CANCELLATION_FAILED)

                    report = self._report(action)

            if report.status == previous_status:
                self.log.info("Retry scheduled", report.to_dict())
            else:
                self.log.transition('action', action_id, previous_status, report.status, report.to_dict())
        return report

    def _claim(self, session: Session, action: UnsubscribeAction, subscription: Subscription,
               timeout: float, now: datetime) -> str:
        """Take the execution lease, moving a pending action to in_progress."""
        if action.status == ACTION_IN_PROGRESS and action.next_attempt_at and now < action.next_attempt_at:
            raise InvalidStateError("Retry is not due yet", current_state=action.status,
                                    context={'action_id': action.id,
                                             'next_attempt_at': action.next_attempt_at})
        if action.claim_token and action.claimed_until and action.claimed_until > now:
            raise ConflictError("Action is already being executed",
                                {'action_id': action.id, 'claimed_until': action.claimed_until})

        token = str(uuid.uuid4())
        previous_status = action.status
        result = session.execute(
            update(UnsubscribeAction)
            .where(
                UnsubscribeAction.id == action.id,
                UnsubscribeAction.status == previous_status,
                or_(UnsubscribeAction.claim_token.is_(None), UnsubscribeAction.claimed_until <= now)
            )
            .values(
                status=ACTION_IN_PROGRESS,
                claim_token=token,
                claimed_until=now + timedelta(seconds=timeout) + LEASE_GRACE
            )
            .execution_options(synchronize_session='fetch')
        )
        if result.rowcount == 0:
            raise ConflictError("Action is already being executed", {'action_id': action.id})

        if previous_status == ACTION_PENDING:
            self.audit.record(
                session, subscription, EVENT_CANCELLATION_STARTED, ACTIVITY_CANCELLATION_STARTED,
                f"Submitting cancellation request for {subscription.service_name}",
                metadata={'from_status': ACTION_PENDING, 'to_status': ACTION_IN_PROGRESS,
                          'target_url': action.unsubscribe_url, 'http_method': action.http_method},
                action_id=action.id,
                now=now
            )
        return token

    def _invoke(self, strategy_impl: UnsubscribeStrategy, request: Tuple, timeout: float
                ) -> Tuple[Optional[CapabilityResult], Optional[TransientExecutionError]]:
        """
        Call the capability with a hard timeout. Never raises for capability failures.

        Every call gets its own daemon thread, so a hung endpoint only holds
        its own attempt. A call still running at the deadline is abandoned.
        """
        target_url, http_method, form_data = request
        outcome: Dict[str, Any] = {}

        def call():
            try:
                outcome['result'] = strategy_impl.perform(self.capability, target_url, http_method,
                                                          form_data, timeout)
            except Exception as e:
                outcome['error'] = e

        caller = threading.Thread(target=call, name='cancellation-capability', daemon=True)
        caller.start()
        caller.join(timeout)

        if caller.is_alive():
            self.log.warning("Capability call timed out", {'timeout_seconds': timeout})
            return None, TransientExecutionError(f"Cancellation request timed out after {timeout} seconds")

        error = outcome.get('error')
        if error is None:
            return outcome.get('result'), None
        if isinstance(error, TransientExecutionError):
            self.log.warning("Transient capability failure", {'error': str(error)})
            return None, error
        self.log.log_exception(error, {'stage': 'capability'})
        return None, TransientExecutionError(f"Capability error: {error}")

    def _record_transient(self, session: Session, action: UnsubscribeAction, subscription: Subscription,
                          error: TransientExecutionError, now: datetime) -> None:
        action.retry_count = (action.retry_count or 0) + 1
        action.error_message = str(error)
        if error.status_code is not None:
            action.http_status_code = error.status_code
        if error.body_snippet:
            action.response_body_snippet = self._snippet(error.body_snippet)

        if action.retry_count >= action.max_retries:
            self._fail(session, action, subscription,
                       f"Automation exhausted after {action.retry_count} attempts: {error}", now,
                       EVENT_CANCELLATION_FAILED, ACTIVITY_CANCELLATION_FAILED)
            return

        action.next_attempt_at = now + self.backoff_delay(action.retry_count)
        self.audit.record(
            session, subscription, EVENT_CANCELLATION_RETRY, ACTIVITY_CANCELLATION_RETRY,
            f"Cancellation request for {subscription.service_name} failed, retry "
            f"{action.retry_count} of {action.max_retries} scheduled",
            metadata={'retry_count': action.retry_count, 'max_retries': action.max_retries,
                      'next_attempt_at': action.next_attempt_at, 'error': str(error)},
            action_id=action.id,
            now=now
        )

    # ------------------------------------------------------------------
    # finalize
    # ------------------------------------------------------------------

    def finalize(
        self,
        action_id: int,
        outcome: str,
        message_ref: Optional[str] = None,
        observed_at: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> bool:
        """
        Close an action that is awaiting confirmation.

        Returns:
            True if the action was finalized, False if it had already left
            ``awaiting_confirmation`` (re-finalizing is a no-op)
        """
        if outcome not in (OUTCOME_CONFIRMED, OUTCOME_TIMED_OUT):
            raise ValidationError("Unknown finalization outcome", field='outcome', value=outcome)
        now = now or datetime.now()
        subscription_id = self._subscription_id_for(action_id)

        with self.locks.hold(subscription_key(subscription_id)):
            with self.db.transaction() as session:
                if outcome == OUTCOME_CONFIRMED:
                    values = {
                        'status': ACTION_CONFIRMED,
                        'confirmation_email_id': message_ref,
                        'confirmation_detected_at': observed_at or now,
                        'completed_at': now,
                        'error_message': None,
                    }
                else:
                    values = {
                        'status': ACTION_FAILED,
                        'requires_manual_action': True,
                        'error_message': "Cancellation could not be verified within the monitoring window",
                        'completed_at': now,
                    }

                result = session.execute(
                    update(UnsubscribeAction)
                    .where(UnsubscribeAction.id == action_id,
                           UnsubscribeAction.status == ACTION_AWAITING_CONFIRMATION)
                    .values(**values)
                    .execution_options(synchronize_session='fetch')
                )
                if result.rowcount == 0:
                    self.log.debug("Action already finalized", {'action_id': action_id})
                    return False

                action = self._load_action(session, action_id)
                subscription = action.subscription

                if outcome == OUTCOME_CONFIRMED:
                    self._move_subscription(session, subscription, SUB_PENDING_CANCELLATION, SUB_CANCELLED,
                                            now, cancelled_at=now)
                    self.audit.record(
                        session, subscription, EVENT_CANCELLED, ACTIVITY_CANCELLATION_CONFIRMED,
                        f"{subscription.service_name} cancellation confirmed",
                        metadata={'from_status': ACTION_AWAITING_CONFIRMATION, 'to_status': ACTION_CONFIRMED,
                                  'confirmation_email_id': message_ref,
                                  'confirmation_detected_at': observed_at or now},
                        action_id=action_id,
                        now=now
                    )
                else:
                    self._move_subscription(session, subscription, SUB_PENDING_CANCELLATION, SUB_ACTIVE, now)
                    self.audit.record(
                        session, subscription, EVENT_CANCELLATION_TIMED_OUT, ACTIVITY_CANCELLATION_TIMED_OUT,
                        f"No confirmation for {subscription.service_name} cancellation; manual action required",
                        metadata={'from_status': ACTION_AWAITING_CONFIRMATION, 'to_status': ACTION_FAILED,
                                  'monitoring_until': action.monitoring_until},
                        action_id=action_id,
                        now=now
                    )
                refresh_user_aggregates(session, subscription.user_id)

        self.log.transition('action', action_id, ACTION_AWAITING_CONFIRMATION, values['status'],
                            {'outcome': outcome})
        return True

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def get_action(self, action_id: int) -> UnsubscribeAction:
        with self.db.transaction() as session:
            return self._load_action(session, action_id)

    def actions_for_subscription(self, subscription_id: int) -> List[UnsubscribeAction]:
        with self.db.transaction() as session:
            return session.query(UnsubscribeAction).filter(
                UnsubscribeAction.subscription_id == subscription_id
            ).order_by(UnsubscribeAction.id).all()

    def due_automated_actions(self, now: Optional[datetime] = None) -> List[Tuple[int, int]]:
        """(user_id, action_id) pairs of automated actions ready to execute."""
        now = now or datetime.now()
        with self.db.transaction() as session:
            rows = session.query(UnsubscribeAction.user_id, UnsubscribeAction.id).join(
                User, User.id == UnsubscribeAction.user_id
            ).filter(
                User.deleted_at.is_(None),
                UnsubscribeAction.action_type == STRATEGY_AUTOMATED,
                UnsubscribeAction.status.in_((ACTION_PENDING, ACTION_IN_PROGRESS)),
                or_(UnsubscribeAction.next_attempt_at.is_(None), UnsubscribeAction.next_attempt_at <= now),
                or_(UnsubscribeAction.claim_token.is_(None), UnsubscribeAction.claimed_until <= now)
            ).order_by(UnsubscribeAction.id).all()
            return [(row[0], row[1]) for row in rows]

    def awaiting_confirmation(self) -> List[ActionContext]:
        """Contexts of every action in the monitoring window, tombstoned users excluded."""
        with self.db.transaction() as session:
            rows = session.query(UnsubscribeAction, Subscription).join(
                Subscription, Subscription.id == UnsubscribeAction.subscription_id
            ).join(
                User, User.id == UnsubscribeAction.user_id
            ).filter(
                UnsubscribeAction.status == ACTION_AWAITING_CONFIRMATION,
                User.deleted_at.is_(None)
            ).order_by(UnsubscribeAction.monitoring_until, UnsubscribeAction.id).all()
            return [
                ActionContext(
                    action_id=action.id,
                    user_id=action.user_id,
                    subscription_id=subscription.id,
                    service_name=subscription.service_name,
                    service_domain=subscription.service_domain,
                    strategy=action.action_type,
                    initiated_at=action.initiated_at,
                    target_url=action.unsubscribe_url
                )
                for action, subscription in rows
            ]

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _await_confirmation(self, session: Session, action: UnsubscribeAction, subscription: Subscription,
                            now: datetime, description: str) -> None:
        previous_status = action.status
        action.status = ACTION_AWAITING_CONFIRMATION
        action.monitoring_until = now + self.monitoring_window
        self.audit.record(
            session, subscription, EVENT_CANCELLATION_SUBMITTED, ACTIVITY_CANCELLATION_SUBMITTED,
            description,
            metadata={'from_status': previous_status, 'to_status': ACTION_AWAITING_CONFIRMATION,
                      'monitoring_until': action.monitoring_until,
                      'http_status_code': action.http_status_code,
                      'manual_instructions': action.manual_instructions},
            action_id=action.id,
            now=now
        )

    def _fail(self, session: Session, action: UnsubscribeAction, subscription: Subscription,
              reason: str, now: datetime, event_type: str, activity_type: str) -> None:
        """Fail the action terminally and hand the subscription back to the user."""
        previous_status = action.status
        action.status = ACTION_FAILED
        action.requires_manual_action = True
        action.error_message = reason
        action.completed_at = now
        action.next_attempt_at = None
        self._move_subscription(session, subscription, SUB_PENDING_CANCELLATION, SUB_ACTIVE, now)
        self.audit.record(
            session, subscription, event_type, activity_type,
            f"Cancellation of {subscription.service_name} failed: {reason}",
            metadata={'from_status': previous_status, 'to_status': ACTION_FAILED,
                      'retry_count': action.retry_count, 'requires_manual_action': True},
            action_id=action.id,
            now=now
        )
        refresh_user_aggregates(session, subscription.user_id)
        self.log.warning("Action failed", {'action_id': action.id, 'reason': reason})

    def _move_subscription(self, session: Session, subscription: Subscription, expected: str, target: str,
                           now: datetime, cancelled_at: Optional[datetime] = None) -> None:
        """Check-and-set the subscription status."""
        values = {'status': target, 'updated_at': now}
        if cancelled_at is not None:
            values['cancelled_at'] = cancelled_at
        result = session.execute(
            update(Subscription)
            .where(Subscription.id == subscription.id, Subscription.status == expected)
            .values(**values)
            .execution_options(synchronize_session='fetch')
        )
        if result.rowcount == 0:
            session.refresh(subscription)
            if target == SUB_PENDING_CANCELLATION:
                raise ConflictError("Subscription changed state concurrently",
                                    {'subscription_id': subscription.id, 'status': subscription.status})
            self.log.warning("Subscription not in expected state", {
                'subscription_id': subscription.id, 'expected': expected,
                'actual': subscription.status, 'target': target
            })
        else:
            self.log.transition('subscription', subscription.id, expected, target)

    def _snippet(self, body: Optional[str]) -> Optional[str]:
        if body is None:
            return None
        return body[:self.snippet_limit]

    def _subscription_id_for(self, action_id: int) -> int:
        with self.db.transaction() as session:
            row = session.query(UnsubscribeAction.subscription_id).filter(
                UnsubscribeAction.id == action_id
            ).first()
            if row is None:
                raise NotFoundError("Unsubscribe action not found", {'action_id': action_id})
            return row[0]

    @staticmethod
    def _load_action(session: Session, action_id: int) -> UnsubscribeAction:
        action = session.get(UnsubscribeAction, action_id)
        if action is None:
            raise NotFoundError("Unsubscribe action not found", {'action_id': action_id})
        return action

    @staticmethod
    def _load_subscription(session: Session, subscription_id: int) -> Subscription:
        subscription = session.get(Subscription, subscription_id)
        if subscription is None:
            raise NotFoundError("Subscription not found", {'subscription_id': subscription_id})
        return subscription

    @staticmethod
    def _report(action: UnsubscribeAction) -> ExecutionReport:
        return ExecutionReport(
            action_id=action.id,
            status=action.status,
            strategy=action.action_type,
            retry_count=action.retry_count or 0,
            http_status_code=action.http_status_code,
            next_attempt_at=action.next_attempt_at,
            monitoring_until=action.monitoring_until,
            requires_manual_action=bool(action.requires_manual_action),
            manual_instructions=action.manual_instructions,
            error_message=action.error_message
        )
