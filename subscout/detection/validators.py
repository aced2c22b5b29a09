"""
Validation of classifier output.

Classifier facts are untrusted input: confidence must sit in [0, 1], the
service hint must be non-empty and the enumerated fields must use known
values.
"""

import math
from decimal import Decimal, InvalidOperation
from typing import Optional

from ..constants import DETECTION_METHOD_RANK, MONTHLY_DIVISOR
from ..exceptions import ValidationError
from ..types import ClassifiedEmail


def validate_classified_email(fact: ClassifiedEmail) -> None:
    """Raise ValidationError describing the first problem found."""
    if fact.user_id is None:
        raise ValidationError("Classifier fact has no user", field='user_id', value=None)

    if not fact.service_hint or not fact.service_hint.strip():
        raise ValidationError("Service hint must not be empty", field='service_hint',
                              value=fact.service_hint)

    confidence = _as_confidence(fact.confidence)
    if confidence is None or not 0.0 <= confidence <= 1.0:
        raise ValidationError("Confidence must be within [0, 1]", field='confidence', value=fact.confidence)

    if fact.method not in DETECTION_METHOD_RANK:
        raise ValidationError("Unknown detection method", field='method', value=fact.method)

    if fact.billing_period is not None and fact.billing_period not in MONTHLY_DIVISOR:
        raise ValidationError("Unknown billing period", field='billing_period',
                              value=fact.billing_period)

    if fact.price is not None:
        price = _as_price(fact.price)
        if price is None or not price.is_finite():
            raise ValidationError("Price must be a finite amount", field='price', value=fact.price)
        if price < 0:
            raise ValidationError("Price must not be negative", field='price', value=fact.price)

    if fact.currency is not None and len(fact.currency) != 3:
        raise ValidationError("Currency must be an ISO 4217 code", field='currency', value=fact.currency)


def _as_confidence(value) -> Optional[float]:
    # NaN fails every comparison, so it is treated as unparseable
    if value is None or isinstance(value, bool):
        return None
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(confidence) else confidence


def _as_price(value) -> Optional[Decimal]:
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        return None
