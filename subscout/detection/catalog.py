"""
Service catalog lookup.

Maps a raw service hint from the classifier (a sender address, a domain or a
free-text name) to the canonical service identity used to deduplicate
subscriptions. Matching weighs:

- exact service name match
- sender domain matching one of the entry's email domains (suffix match)
- fuzzy similarity between the hint and the service name
- keyword hits in the hint

The catalog is reference data; the pipeline only mutates its detection
statistics through ``record_detection``.
"""

import logging
import re
from decimal import Decimal
from difflib import SequenceMatcher
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..constants import MONEY_QUANTUM
from ..database import DatabaseManager
from ..database.models import ServiceCatalogEntry
from ..exceptions import AmbiguousServiceError, ValidationError
from ..types import CatalogMatch

logger = logging.getLogger(__name__)

WEIGHT_EXACT_NAME = 10.0
WEIGHT_DOMAIN = 6.0
WEIGHT_FUZZY_NAME = 4.0
WEIGHT_KEYWORD = 1.0
FUZZY_THRESHOLD = 0.85

_DOMAIN_PATTERN = re.compile(r'([a-z0-9-]+(?:\.[a-z0-9-]+)+)')


def extract_domain(hint: str) -> Optional[str]:
    """Pull a domain out of a sender address, URL or bare domain."""
    if not hint:
        return None
    text = hint.strip().lower()
    if '@' in text:
        text = text.rsplit('@', 1)[1]
    text = re.sub(r'^[a-z]+://', '', text)
    match = _DOMAIN_PATTERN.search(text)
    return match.group(1) if match else None


def _normalize_name(value: str) -> str:
    return re.sub(r'[^a-z0-9]+', ' ', value.lower()).strip()


def _domain_matches(domain: str, candidate: str) -> bool:
    candidate = candidate.lower().lstrip('.')
    return domain == candidate or domain.endswith('.' + candidate)


class ServiceCatalog:
    """Read-mostly lookup over ``ServiceCatalogEntry`` rows."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def match(self, hint: str, sender_domain: Optional[str] = None) -> Optional[CatalogMatch]:
        """
        Resolve a hint to one catalog entry.

        Returns:
            The best match, or None when nothing matches

        Raises:
            AmbiguousServiceError: two or more entries share the top weight
        """
        with self.db.transaction() as session:
            entries = session.query(ServiceCatalogEntry).all()
            scored = self._score_entries(entries, hint, sender_domain)

        if not scored:
            return None

        scored.sort(key=lambda item: item[0], reverse=True)
        top_weight = scored[0][0]
        leaders = [match for weight, match in scored if weight == top_weight]
        if len(leaders) > 1:
            raise AmbiguousServiceError(
                "Service hint matches several catalog entries",
                hint=hint,
                candidates=[m.service_name for m in leaders]
            )
        return leaders[0]

    def _score_entries(self, entries: Iterable[ServiceCatalogEntry], hint: str,
                       sender_domain: Optional[str]) -> List[Tuple[float, CatalogMatch]]:
        normalized_hint = _normalize_name(hint)
        domain = (sender_domain or extract_domain(hint) or '').lower()
        scored = []

        for entry in entries:
            weight = 0.0
            normalized_name = _normalize_name(entry.service_name)

            if normalized_hint == normalized_name:
                weight += WEIGHT_EXACT_NAME
            elif normalized_name and SequenceMatcher(None, normalized_hint, normalized_name).ratio() >= FUZZY_THRESHOLD:
                weight += WEIGHT_FUZZY_NAME

            domains = list(entry.email_domains or [])
            if entry.service_domain:
                domains.append(entry.service_domain)
            if domain and any(_domain_matches(domain, d) for d in domains):
                weight += WEIGHT_DOMAIN

            for keyword in entry.keywords or []:
                if keyword and re.search(r'\b' + re.escape(keyword.lower()) + r'\b', hint.lower()):
                    weight += WEIGHT_KEYWORD

            if weight > 0:
                scored.append((weight, CatalogMatch(
                    service_name=entry.service_name,
                    service_domain=entry.service_domain,
                    logo_url=entry.logo_url,
                    category=entry.category,
                    weight=weight
                )))
        return scored

    def upsert_entry(self, service_name: str, service_domain: Optional[str] = None,
                     logo_url: Optional[str] = None, category: Optional[str] = None,
                     email_domains: Optional[List[str]] = None,
                     keywords: Optional[List[str]] = None) -> int:
        """Insert or update reference data for one service."""
        if not service_name or not service_name.strip():
            raise ValidationError("Catalog entries need a service name", field='service_name',
                                  value=service_name)
        with self.db.transaction() as session:
            entry = session.query(ServiceCatalogEntry).filter(
                ServiceCatalogEntry.service_name == service_name
            ).first()
            if entry is None:
                entry = ServiceCatalogEntry(service_name=service_name)
                session.add(entry)
            entry.service_domain = service_domain
            entry.logo_url = logo_url
            entry.category = category
            entry.email_domains = [d.lower() for d in (email_domains or [])]
            entry.keywords = list(keywords or [])
            session.flush()
            return entry.id

    def load(self, records: Iterable[Dict[str, Any]]) -> int:
        """Seed the catalog from decoded JSON records. Returns the number loaded."""
        count = 0
        for record in records:
            self.upsert_entry(
                service_name=record.get('service_name'),
                service_domain=record.get('service_domain'),
                logo_url=record.get('logo_url'),
                category=record.get('category'),
                email_domains=record.get('email_domains'),
                keywords=record.get('keywords')
            )
            count += 1
        logger.info(f"Loaded {count} catalog entries")
        return count

    def get_entry(self, service_name: str) -> Optional[ServiceCatalogEntry]:
        with self.db.transaction() as session:
            return session.query(ServiceCatalogEntry).filter(
                ServiceCatalogEntry.service_name == service_name
            ).first()

    @staticmethod
    def record_detection(session: Session, service_name: str, price: Optional[Decimal]) -> bool:
        """
        Bump detection statistics inside the caller's transaction.

        ``avg_price`` is a running mean over detections that carried a price.
        Returns False when the service is not in the catalog.
        """
        entry = session.query(ServiceCatalogEntry).filter(
            ServiceCatalogEntry.service_name == service_name
        ).with_for_update().first()
        if entry is None:
            return False

        entry.times_detected = (entry.times_detected or 0) + 1
        if price is not None:
            if entry.avg_price is None:
                entry.avg_price = Decimal(price).quantize(MONEY_QUANTUM)
            else:
                n = entry.times_detected
                running = Decimal(entry.avg_price) + (Decimal(price) - Decimal(entry.avg_price)) / n
                entry.avg_price = running.quantize(MONEY_QUANTUM)
        return True
