"""
Custom exceptions for the subscription workflow engine with error context.

Every exception carries an optional ``context`` dict that is rendered in
``str()`` so that log lines and CLI errors explain which entity was involved.
"""

from typing import Dict, Any, Optional


class SubScoutError(Exception):
    """Base class for all workflow errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}

    def __str__(self) -> str:
        base_message = super().__str__()
        if self.context:
            context_info = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{base_message} (context: {context_info})"
        return base_message


class ConflictError(SubScoutError):
    """An invariant would be violated (duplicate running session, duplicate active action).

    Never retried automatically.
    """


class InvalidStateError(SubScoutError):
    """Operation is not valid in the entity's current state."""

    def __init__(self, message: str, current_state: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        context = dict(context or {})
        if current_state is not None:
            context.setdefault('current_state', current_state)
        super().__init__(message, context)
        self.current_state = current_state


class TransientExecutionError(SubScoutError):
    """The cancellation capability failed in a recoverable way (timeout, 5xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 body_snippet: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        context = dict(context or {})
        if status_code is not None:
            context.setdefault('status_code', status_code)
        super().__init__(message, context)
        self.status_code = status_code
        self.body_snippet = body_snippet


class AmbiguousServiceError(SubScoutError):
    """A service hint matched several catalog entries with equal weight."""

    def __init__(self, message: str, hint: str, candidates: Optional[list] = None):
        super().__init__(message, {'hint': hint, 'candidates': ', '.join(candidates or [])})
        self.hint = hint
        self.candidates = list(candidates or [])


class NotFoundError(SubScoutError):
    """Referenced entity does not exist."""


class ValidationError(SubScoutError):
    """Untrusted input failed validation."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        context = {}
        if field:
            context['field'] = field
            context['value'] = value
        super().__init__(message, context)
        self.field = field
        self.value = value
