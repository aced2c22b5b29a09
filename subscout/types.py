"""
Type-safe dataclasses passed between the pipeline components.

Inputs from external collaborators (classifier facts, capability results,
confirmation signals) and results returned to callers are modelled as
immutable dataclasses instead of ad-hoc dicts.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, List, Optional, Tuple

from .exceptions import ValidationError


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if not isinstance(value, datetime):
        try:
            value = datetime.fromisoformat(str(value))
        except ValueError:
            raise ValidationError("Invalid timestamp", field='observed_at', value=value)
    if value.tzinfo is not None:
        # Stored timestamps are naive local time
        value = value.astimezone().replace(tzinfo=None)
    return value


def _parse_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError("Invalid date", field='next_renewal_date', value=value)


def _parse_price(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, Decimal):
        return value
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("Invalid price", field='price', value=value)
    if not price.is_finite():
        raise ValidationError("Price must be a finite amount", field='price', value=value)
    return price


@dataclass(frozen=True)
class ClassifiedEmail:
    """One fact produced by the external classifier for a single email."""

    user_id: int
    raw_email_ref: str
    service_hint: str
    confidence: float
    method: str
    price: Optional[Decimal] = None
    billing_period: Optional[str] = None
    currency: Optional[str] = None
    sender_domain: Optional[str] = None
    observed_at: Optional[datetime] = None
    next_renewal_date: Optional[date] = None
    unsubscribe_link: Optional[str] = None
    manage_account_link: Optional[str] = None
    subscription_tier: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClassifiedEmail':
        """Build a fact from a decoded JSON record."""
        try:
            return cls(
                user_id=int(data['user_id']),
                raw_email_ref=str(data.get('raw_email_ref') or data.get('message_ref') or ''),
                service_hint=data.get('service_hint') or '',
                confidence=float(data.get('confidence', 0.0)),
                method=data.get('method', ''),
                price=_parse_price(data.get('price')),
                billing_period=data.get('billing_period'),
                currency=data.get('currency'),
                sender_domain=data.get('sender_domain'),
                observed_at=_parse_datetime(data.get('observed_at')),
                next_renewal_date=_parse_date(data.get('next_renewal_date')),
                unsubscribe_link=data.get('unsubscribe_link'),
                manage_account_link=data.get('manage_account_link'),
                subscription_tier=data.get('subscription_tier'),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed classifier record: {e}")


@dataclass(frozen=True)
class CatalogMatch:
    """Canonical service identity resolved from the service catalog."""

    service_name: str
    service_domain: Optional[str] = None
    logo_url: Optional[str] = None
    category: Optional[str] = None
    weight: float = 0.0


@dataclass(frozen=True)
class Observation:
    """A normalized subscription observation ready to merge into the registry."""

    user_id: int
    service_name: str
    confidence: float
    method: str
    evidence_id: Optional[str] = None
    price: Optional[Decimal] = None
    billing_period: Optional[str] = None
    currency: Optional[str] = None
    service_domain: Optional[str] = None
    service_logo_url: Optional[str] = None
    service_category: Optional[str] = None
    next_renewal_date: Optional[date] = None
    unsubscribe_link: Optional[str] = None
    manage_account_link: Optional[str] = None
    subscription_tier: Optional[str] = None
    observed_at: Optional[datetime] = None
    from_catalog: bool = False

    def field_values(self) -> Dict[str, Any]:
        """Mergeable subscription fields carried by this observation."""
        return {
            'price': self.price,
            'currency': self.currency,
            'billing_period': self.billing_period,
            'service_domain': self.service_domain,
            'service_logo_url': self.service_logo_url,
            'service_category': self.service_category,
            'next_renewal_date': self.next_renewal_date,
            'unsubscribe_link': self.unsubscribe_link,
            'manage_account_link': self.manage_account_link,
            'subscription_tier': self.subscription_tier,
        }


@dataclass(frozen=True)
class MergeResult:
    """Outcome of merging one observation."""

    subscription_id: Optional[int]
    created: bool = False
    skipped: bool = False
    adopted_fields: Tuple[str, ...] = ()
    price_changed: bool = False
    reason: Optional[str] = None


@dataclass(frozen=True)
class CapabilityResult:
    """What the cancellation-automation capability returned."""

    status_code: Optional[int]
    body_snippet: str = ''
    retryable: bool = False
    accepted: bool = True
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return (self.status_code is not None
                and 200 <= self.status_code < 300
                and self.accepted
                and not self.retryable)


@dataclass(frozen=True)
class ConfirmationSignal:
    """A confirmation message observed in the user's inbox."""

    message_ref: str
    observed_at: datetime


@dataclass(frozen=True)
class ActionContext:
    """Everything a confirmation source needs to look for a confirmation."""

    action_id: int
    user_id: int
    subscription_id: int
    service_name: str
    service_domain: Optional[str]
    strategy: str
    initiated_at: datetime
    target_url: Optional[str] = None


@dataclass(frozen=True)
class InboxMessage:
    """A message returned by the inbox client."""

    message_ref: str
    sender: str
    subject: str = ''
    body: str = ''
    received_at: Optional[datetime] = None

    @property
    def sender_domain(self) -> str:
        return self.sender.rsplit('@', 1)[-1].strip('> ').lower()


@dataclass(frozen=True)
class ExecutionReport:
    """State of an unsubscribe action after an execute() call."""

    action_id: int
    status: str
    strategy: str
    retry_count: int = 0
    http_status_code: Optional[int] = None
    next_attempt_at: Optional[datetime] = None
    monitoring_until: Optional[datetime] = None
    requires_manual_action: bool = False
    manual_instructions: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SweepReport:
    """Counters for one confirmation sweep pass."""

    examined: int = 0
    confirmed: int = 0
    timed_out: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: int = 0
    interrupted: bool = False
    finalized_action_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
