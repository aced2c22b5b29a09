"""
Unsubscribe strategies.

Every strategy shares the same action state machine; they differ in what
``execute`` does. The automated strategy calls the cancellation capability.
The manual strategies have nothing to run: the user acts out-of-band, so the
action goes straight to monitoring and the caller gets instructions.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..constants import (
    STRATEGY_AUTOMATED, STRATEGY_MANUAL_LINK, STRATEGY_MANUAL_PHONE, STRATEGY_EMAIL_REQUIRED
)
from ..database.models import Subscription
from ..exceptions import TransientExecutionError, ValidationError
from ..types import CapabilityResult
from .capability import CancellationCapability


class UnsubscribeStrategy(ABC):
    """Abstract base class for all strategies."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the strategy name stored on the action."""
        pass

    @property
    def requires_execution(self) -> bool:
        """True when execute() must call the cancellation capability."""
        return False

    def validate(self, target_url: Optional[str]) -> None:
        """Check that the action has what this strategy needs."""

    def default_instructions(self, subscription: Subscription) -> Optional[str]:
        return None

    def perform(
        self,
        capability: CancellationCapability,
        target_url: str,
        http_method: str,
        form_data: Optional[Dict[str, Any]],
        timeout: Optional[float]
    ) -> CapabilityResult:
        raise NotImplementedError(f"Strategy {self.name} has nothing to execute")


class AutomatedStrategy(UnsubscribeStrategy):
    """Submit the cancellation through the automation capability."""

    @property
    def name(self) -> str:
        return STRATEGY_AUTOMATED

    @property
    def requires_execution(self) -> bool:
        return True

    def validate(self, target_url: Optional[str]) -> None:
        if not target_url:
            raise ValidationError("Automated cancellation needs a target URL", field='target_url',
                                  value=target_url)
        if not target_url.lower().startswith(('http://', 'https://')):
            raise ValidationError("Target URL must be http(s)", field='target_url', value=target_url)

    def perform(
        self,
        capability: CancellationCapability,
        target_url: str,
        http_method: str,
        form_data: Optional[Dict[str, Any]],
        timeout: Optional[float]
    ) -> CapabilityResult:
        """
        Invoke the capability.

        Raises:
            TransientExecutionError: the capability reported a retryable failure
        """
        result = capability.invoke(target_url, http_method, form_data, timeout=timeout)
        if result.retryable:
            raise TransientExecutionError(
                result.error or f"Retryable failure (HTTP {result.status_code})",
                status_code=result.status_code,
                body_snippet=result.body_snippet
            )
        return result


class ManualLinkStrategy(UnsubscribeStrategy):
    """User cancels through the service's account page."""

    @property
    def name(self) -> str:
        return STRATEGY_MANUAL_LINK

    def default_instructions(self, subscription: Subscription) -> Optional[str]:
        link = subscription.manage_account_link or subscription.unsubscribe_link
        if link:
            return f"Open {link} and cancel your {subscription.service_name} subscription."
        return f"Sign in to your {subscription.service_name} account and cancel the subscription."


class ManualPhoneStrategy(UnsubscribeStrategy):
    """User cancels by calling the service."""

    @property
    def name(self) -> str:
        return STRATEGY_MANUAL_PHONE

    def default_instructions(self, subscription: Subscription) -> Optional[str]:
        return f"Call {subscription.service_name} customer support and ask them to cancel your subscription."


class EmailRequiredStrategy(UnsubscribeStrategy):
    """User cancels by sending an email to the service."""

    @property
    def name(self) -> str:
        return STRATEGY_EMAIL_REQUIRED

    def default_instructions(self, subscription: Subscription) -> Optional[str]:
        domain = subscription.service_domain
        target = f"support@{domain}" if domain else f"{subscription.service_name} support"
        return f"Email {target} from your account address requesting cancellation."


_STRATEGIES = {
    strategy.name: strategy
    for strategy in (AutomatedStrategy(), ManualLinkStrategy(), ManualPhoneStrategy(), EmailRequiredStrategy())
}


def get_strategy(name: str) -> UnsubscribeStrategy:
    """Look up a strategy by name."""
    strategy = _STRATEGIES.get(name)
    if strategy is None:
        raise ValidationError("Unknown unsubscribe strategy", field='strategy', value=name)
    return strategy
