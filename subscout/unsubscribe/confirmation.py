"""
Confirmation monitoring for submitted cancellations.

``ConfirmationMonitor.sweep`` is the timeout enforcer for the monitoring
window: it asks a confirmation source about every action awaiting
confirmation and finalizes the ones that were confirmed or whose window has
lapsed. Finalizing one action is the unit of atomicity, so a sweep can be
interrupted between actions and simply leaves the rest for the next pass.
"""

import re
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Iterable, Optional

from bs4 import BeautifulSoup

from ..constants import (
    ACTION_AWAITING_CONFIRMATION, CONFIRMATION_PHRASES, OUTCOME_CONFIRMED, OUTCOME_TIMED_OUT
)
from ..database.models import UnsubscribeAction
from ..logging import WorkflowLogger
from ..types import ActionContext, ConfirmationSignal, InboxMessage, SweepReport
from .orchestrator import UnsubscribeOrchestrator


class ConfirmationSource(ABC):
    """Answers whether a cancellation has been confirmed."""

    @abstractmethod
    def has_confirmation(self, context: ActionContext, since: datetime) -> Optional[ConfirmationSignal]:
        """
        Look for a confirmation observed at or after ``since``.

        Returns:
            ConfirmationSignal for the first matching message, or None
        """


class InboxConfirmationSource(ConfirmationSource):
    """Finds confirmation emails through an inbox client.

    ``fetch_messages(user_id, since)`` is supplied by the caller and returns
    the user's messages received since the given time.
    """

    def __init__(self, fetch_messages: Callable[[int, datetime], Iterable[InboxMessage]],
                 phrases: Optional[Iterable[str]] = None):
        self.fetch_messages = fetch_messages
        self.phrases = [p.lower() for p in (phrases or CONFIRMATION_PHRASES)]

    def has_confirmation(self, context: ActionContext, since: datetime) -> Optional[ConfirmationSignal]:
        for message in self.fetch_messages(context.user_id, since):
            received_at = message.received_at or since
            if received_at < since:
                continue
            if not self._from_service(message, context):
                continue
            if self._mentions_cancellation(message):
                return ConfirmationSignal(message_ref=message.message_ref, observed_at=received_at)
        return None

    @staticmethod
    def _from_service(message: InboxMessage, context: ActionContext) -> bool:
        sender_domain = message.sender_domain
        if context.service_domain:
            domain = context.service_domain.lower()
            if sender_domain == domain or sender_domain.endswith('.' + domain):
                return True
        # Fall back to the service name appearing in the sender domain
        token = re.sub(r'[^a-z0-9]', '', context.service_name.lower())
        return bool(token) and token in re.sub(r'[^a-z0-9.]', '', sender_domain)

    def _mentions_cancellation(self, message: InboxMessage) -> bool:
        text = BeautifulSoup(message.body or '', 'html.parser').get_text(separator=' ')
        haystack = ' '.join(f"{message.subject or ''} {text}".lower().split())
        return any(phrase in haystack for phrase in self.phrases)


class ConfirmationMonitor:
    """Periodic sweep over actions awaiting confirmation."""

    def __init__(self, orchestrator: UnsubscribeOrchestrator, source: ConfirmationSource):
        self.orchestrator = orchestrator
        self.db = orchestrator.db
        self.source = source
        self.log = WorkflowLogger('confirmation_monitor')

    def sweep(self, now: Optional[datetime] = None,
              stop_event: Optional[threading.Event] = None) -> SweepReport:
        """
        Examine every action in ``awaiting_confirmation`` once.

        Safe to run concurrently with itself: finalization is a conditional
        update, so an action finalized by another sweep is counted as skipped.
        """
        now = now or datetime.now()
        report = SweepReport()

        with self.log.timed('sweep'):
            for context in self.orchestrator.awaiting_confirmation():
                if stop_event is not None and stop_event.is_set():
                    report.interrupted = True
                    self.log.info("Sweep interrupted", {'examined': report.examined})
                    break

                report.examined += 1
                with self.log.bind(user_id=context.user_id, subscription_id=context.subscription_id,
                                   action_id=context.action_id):
                    self._examine(context, now, report)

        self.log.info("Sweep finished", report.to_dict())
        return report

    def _examine(self, context: ActionContext, now: datetime, report: SweepReport) -> None:
        monitoring_until = self._monitoring_until(context.action_id)
        if monitoring_until is None:
            # Finalized since the listing was taken
            report.skipped += 1
            return

        try:
            signal = self.source.has_confirmation(context, context.initiated_at)
        except Exception as e:
            self.log.log_exception(e, {'stage': 'confirmation_source'})
            report.errors += 1
            return

        if signal is not None and signal.observed_at >= context.initiated_at:
            finalized = self.orchestrator.finalize(
                context.action_id, OUTCOME_CONFIRMED,
                message_ref=signal.message_ref, observed_at=signal.observed_at, now=now
            )
            self._count(report, context.action_id, finalized, 'confirmed')
        elif now >= monitoring_until:
            finalized = self.orchestrator.finalize(context.action_id, OUTCOME_TIMED_OUT, now=now)
            self._count(report, context.action_id, finalized, 'timed_out')
        else:
            report.unchanged += 1

    @staticmethod
    def _count(report: SweepReport, action_id: int, finalized: bool, counter: str) -> None:
        if finalized:
            setattr(report, counter, getattr(report, counter) + 1)
            report.finalized_action_ids.append(action_id)
        else:
            report.skipped += 1

    def _monitoring_until(self, action_id: int) -> Optional[datetime]:
        """Deadline of an action still awaiting confirmation, None otherwise."""
        with self.db.transaction() as session:
            action = session.get(UnsubscribeAction, action_id)
            if action is None or action.status != ACTION_AWAITING_CONFIRMATION:
                return None
            return action.monitoring_until
