"""
Constants shared across the detection pipeline and the unsubscribe workflow.

This module contains status vocabularies, event and activity types, and the
default policy values used when no configuration overrides them.
"""

from decimal import Decimal
from typing import Dict, List, Optional

# Import session states
SESSION_RUNNING = "running"
SESSION_COMPLETED = "completed"
SESSION_FAILED = "failed"
SESSION_CANCELLED = "cancelled"
SESSION_TERMINAL_STATES = (SESSION_COMPLETED, SESSION_FAILED, SESSION_CANCELLED)

# Subscription states
SUB_ACTIVE = "active"
SUB_PENDING_CANCELLATION = "pending_cancellation"
SUB_CANCELLED = "cancelled"
SUB_EXPIRED = "expired"
# Rows that new observations merge into
SUB_CURRENT_STATES = (SUB_ACTIVE, SUB_PENDING_CANCELLATION)

# Unsubscribe action states
ACTION_PENDING = "pending"
ACTION_IN_PROGRESS = "in_progress"
ACTION_AWAITING_CONFIRMATION = "awaiting_confirmation"
ACTION_CONFIRMED = "confirmed"
ACTION_FAILED = "failed"
ACTION_OPEN_STATES = (ACTION_PENDING, ACTION_IN_PROGRESS, ACTION_AWAITING_CONFIRMATION)
ACTION_TERMINAL_STATES = (ACTION_CONFIRMED, ACTION_FAILED)

# Unsubscribe strategies
STRATEGY_AUTOMATED = "automated"
STRATEGY_MANUAL_LINK = "manual_link"
STRATEGY_MANUAL_PHONE = "manual_phone"
STRATEGY_EMAIL_REQUIRED = "email_required"
STRATEGIES: List[str] = [
    STRATEGY_AUTOMATED, STRATEGY_MANUAL_LINK, STRATEGY_MANUAL_PHONE, STRATEGY_EMAIL_REQUIRED
]

# Finalization outcomes
OUTCOME_CONFIRMED = "confirmed"
OUTCOME_TIMED_OUT = "timed_out"

# Detection methods, ranked for confidence ties (higher wins)
METHOD_RULE_BASED = "rule_based"
METHOD_LLM = "llm"
METHOD_MANUAL = "manual"
DETECTION_METHOD_RANK: Dict[str, int] = {
    METHOD_RULE_BASED: 1,
    METHOD_LLM: 2,
    METHOD_MANUAL: 3,
}

# Billing periods and their divisor to a monthly equivalent (None = excluded)
BILLING_MONTHLY = "monthly"
BILLING_QUARTERLY = "quarterly"
BILLING_ANNUALLY = "annually"
BILLING_ONE_TIME = "one-time"
MONTHLY_DIVISOR: Dict[str, Optional[int]] = {
    BILLING_MONTHLY: 1,
    BILLING_QUARTERLY: 3,
    BILLING_ANNUALLY: 12,
    BILLING_ONE_TIME: None,
}
ANNUAL_MULTIPLIER: Dict[str, Optional[int]] = {
    BILLING_MONTHLY: 12,
    BILLING_QUARTERLY: 4,
    BILLING_ANNUALLY: 1,
    BILLING_ONE_TIME: None,
}

# Subscription event types
EVENT_DETECTED = "detected"
EVENT_UPDATED = "updated"
EVENT_VERIFIED = "verified"
EVENT_PRICE_CHANGE = "price_change"
EVENT_RENEWAL_REMINDER = "renewal_reminder"
EVENT_EXPIRED = "expired"
EVENT_CANCELLATION_INITIATED = "cancellation_initiated"
EVENT_CANCELLATION_STARTED = "cancellation_started"
EVENT_CANCELLATION_RETRY = "cancellation_retry_scheduled"
EVENT_CANCELLATION_SUBMITTED = "cancellation_submitted"
EVENT_CANCELLATION_FAILED = "cancellation_failed"
EVENT_CANCELLED = "cancelled"
EVENT_CANCELLATION_TIMED_OUT = "cancellation_timed_out"

# Activity log types
ACTIVITY_USER_CREATED = "user_created"
ACTIVITY_USER_DELETED = "user_deleted"
ACTIVITY_SCAN_STARTED = "scan_started"
ACTIVITY_SCAN_COMPLETED = "scan_completed"
ACTIVITY_SCAN_FAILED = "scan_failed"
ACTIVITY_SCAN_CANCELLED = "scan_cancelled"
ACTIVITY_SUBSCRIPTION_DETECTED = "subscription_detected"
ACTIVITY_SUBSCRIPTION_UPDATED = "subscription_updated"
ACTIVITY_SUBSCRIPTION_VERIFIED = "subscription_verified"
ACTIVITY_PRICE_CHANGE = "price_change_detected"
ACTIVITY_RENEWAL_REMINDER = "renewal_reminder"
ACTIVITY_SUBSCRIPTION_EXPIRED = "subscription_expired"
ACTIVITY_CANCELLATION_INITIATED = "cancellation_initiated"
ACTIVITY_CANCELLATION_STARTED = "cancellation_started"
ACTIVITY_CANCELLATION_RETRY = "cancellation_retry_scheduled"
ACTIVITY_CANCELLATION_SUBMITTED = "cancellation_submitted"
ACTIVITY_CANCELLATION_FAILED = "cancellation_failed"
ACTIVITY_CANCELLATION_CONFIRMED = "cancellation_confirmed"
ACTIVITY_CANCELLATION_TIMED_OUT = "cancellation_timed_out"

# Who triggered an event
TRIGGER_SYSTEM = "system"
TRIGGER_USER = "user"

# Default policy values
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_MONITORING_DAYS = 7
DEFAULT_RETRY_BASE_SECONDS = 60
DEFAULT_RETRY_CAP_SECONDS = 3600
DEFAULT_RESPONSE_SNIPPET_LIMIT = 500
DEFAULT_ACTIVITY_WINDOW_DAYS = 30
DEFAULT_CURRENCY = "USD"

MONEY_QUANTUM = Decimal("0.01")

# Phrases that identify a cancellation confirmation message
CONFIRMATION_PHRASES: List[str] = [
    'subscription has been cancelled', 'subscription has been canceled',
    'membership has been cancelled', 'membership has been canceled',
    'cancellation confirmed', 'cancellation confirmation',
    'we have cancelled', 'we have canceled',
    'your cancellation', 'successfully cancelled', 'successfully canceled',
    'sorry to see you go', 'you have been unsubscribed',
]
