"""
Test helpers: a scripted cancellation capability and classifier fact builders.
"""

from datetime import datetime
from decimal import Decimal

from subscout.types import CapabilityResult, ClassifiedEmail
from subscout.unsubscribe.capability import CancellationCapability

T0 = datetime(2024, 3, 1, 9, 0, 0)


class ScriptedCapability(CancellationCapability):
    """Returns queued results in order; exceptions in the queue are raised."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def invoke(self, target_url, http_method='GET', form_data=None, timeout=None):
        self.calls.append((target_url, http_method, form_data, timeout))
        result = self.results.pop(0) if self.results else CapabilityResult(status_code=200, body_snippet='ok')
        if isinstance(result, Exception):
            raise result
        return result


def ok(body='Your subscription has been cancelled'):
    return CapabilityResult(status_code=200, body_snippet=body)


def server_error():
    return CapabilityResult(status_code=503, body_snippet='Service Unavailable', retryable=True,
                            accepted=False, error='HTTP 503')


def rejected(status=404):
    return CapabilityResult(status_code=status, body_snippet='Not Found', accepted=False,
                            error=f'HTTP {status}')


def fact(user_id, service_hint='Netflix', confidence=0.9, method='llm', price='15.49',
         billing_period='monthly', ref='msg-1', **kwargs):
    return ClassifiedEmail(
        user_id=user_id,
        raw_email_ref=ref,
        service_hint=service_hint,
        confidence=confidence,
        method=method,
        price=Decimal(price) if price is not None else None,
        billing_period=billing_period,
        **kwargs
    )
