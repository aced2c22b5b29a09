"""
Subscription detection from classified emails.

This module turns classifier facts into normalized observations and feeds
them to the registry, optionally keeping an import session's counters current.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, Optional

from ..database import DatabaseManager
from ..database.locks import EntityLockManager
from ..exceptions import AmbiguousServiceError, ValidationError
from ..import_sessions import ImportSessionManager
from ..types import ClassifiedEmail, MergeResult, Observation
from .catalog import ServiceCatalog, extract_domain
from .registry import SubscriptionRegistry
from .validators import validate_classified_email

# Set up logging
logger = logging.getLogger(__name__)


class SubscriptionDetector:
    """Proposes subscription observations from classifier output."""

    def __init__(
        self,
        db: DatabaseManager,
        catalog: Optional[ServiceCatalog] = None,
        registry: Optional[SubscriptionRegistry] = None,
        sessions: Optional[ImportSessionManager] = None,
        lock_manager: Optional[EntityLockManager] = None
    ):
        self.db = db
        self.catalog = catalog or ServiceCatalog(db)
        self.registry = registry or SubscriptionRegistry(db, lock_manager)
        self.sessions = sessions or ImportSessionManager(db, lock_manager)

    def normalize(self, fact: ClassifiedEmail) -> Observation:
        """
        Resolve the fact's service hint to a canonical identity.

        Falls back to the raw hint when the catalog has no match or the match
        is ambiguous.
        """
        match = None
        try:
            match = self.catalog.match(fact.service_hint, fact.sender_domain)
        except AmbiguousServiceError as e:
            logger.warning(f"Ambiguous service hint, using raw hint: {e}")

        hint = fact.service_hint.strip()
        if match is not None:
            service_name = match.service_name
            service_domain = match.service_domain or fact.sender_domain
            logo_url = match.logo_url
            category = match.category
        else:
            service_name = (extract_domain(hint) or hint) if '@' in hint else hint
            service_domain = fact.sender_domain or extract_domain(hint)
            logo_url = None
            category = None

        return Observation(
            user_id=fact.user_id,
            service_name=service_name,
            confidence=float(fact.confidence),
            method=fact.method,
            evidence_id=fact.raw_email_ref or None,
            price=fact.price,
            billing_period=fact.billing_period,
            currency=fact.currency.upper() if fact.currency else None,
            service_domain=service_domain,
            service_logo_url=logo_url,
            service_category=category,
            next_renewal_date=fact.next_renewal_date,
            unsubscribe_link=fact.unsubscribe_link,
            manage_account_link=fact.manage_account_link,
            subscription_tier=fact.subscription_tier,
            observed_at=fact.observed_at,
            from_catalog=match is not None
        )

    def process(self, fact: ClassifiedEmail, now: Optional[datetime] = None) -> MergeResult:
        """Validate, normalize and merge a single classifier fact."""
        validate_classified_email(fact)
        observation = self.normalize(fact)
        return self.registry.merge(observation, now=now)

    def consume(self, session_id: int, facts: Iterable[ClassifiedEmail],
                now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Process a batch of facts inside an import session.

        Invalid facts are skipped and counted rather than aborting the batch.

        Returns:
            Dict with counts: {'created': int, 'updated': int, 'skipped': int}
        """
        batch = list(facts)
        scan = self.sessions.get(session_id)
        self.sessions.record_progress(session_id, found_delta=len(batch))

        created = 0
        updated = 0
        skipped = 0

        for fact in batch:
            result = None
            if fact.user_id != scan.user_id:
                logger.warning(f"Skipping {fact.raw_email_ref}: belongs to user {fact.user_id}, "
                               f"session is for user {scan.user_id}")
                skipped += 1
            else:
                try:
                    result = self.process(fact, now=now)
                except ValidationError as e:
                    logger.warning(f"Skipping {fact.raw_email_ref}: {e}")
                    skipped += 1

            if result is not None:
                if result.created:
                    created += 1
                elif result.skipped:
                    skipped += 1
                else:
                    updated += 1

            self.sessions.record_progress(
                session_id,
                processed_delta=1,
                subs_delta=1 if result is not None and result.created else 0
            )

        return {
            'created': created,
            'updated': updated,
            'skipped': skipped
        }
