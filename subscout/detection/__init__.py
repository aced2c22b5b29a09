"""
Subscription detection pipeline.

Turns classified emails into deduplicated subscription records:
- Catalog normalization of service hints
- Validation of untrusted classifier output
- Confidence-weighted merging into one current subscription per service
"""

from .catalog import ServiceCatalog
from .detector import SubscriptionDetector
from .registry import SubscriptionRegistry
from .validators import validate_classified_email

__all__ = [
    'ServiceCatalog',
    'SubscriptionDetector',
    'SubscriptionRegistry',
    'validate_classified_email'
]
