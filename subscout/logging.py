"""
Structured logging for the subscription workflow.

Every record written through ``WorkflowLogger`` is one JSON object carrying
the component that wrote it and the workflow entities bound on the current
thread (user, subscription, action, import session), so one cancellation can
be followed across the orchestrator, the confirmation monitor and the worker
pool. State changes get their own record shape via ``transition``.

Unsubscribe links routinely carry one-click tokens and recipient ids in the
query string. They are masked before anything reaches a handler, including
records from the plain ``logging`` loggers elsewhere in the package.
"""

import json
import logging
import re
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

ROOT_LOGGER_NAME = "subscout"

ENTITY_KEYS = ('user_id', 'subscription_id', 'action_id', 'session_id')

MASK = '***'

_URL_SECRET = re.compile(
    r'([?&;](?:token|t|sig|signature|auth|key|code|hash|uid|u|email)=)[^&;#\s"\']+',
    re.IGNORECASE
)
_INLINE_SECRET = re.compile(
    r'\b(password|secret|api_key|access_token)(["\']?\s*[:=]\s*["\']?)[^"\'\s&,]+',
    re.IGNORECASE
)
_SECRET_FIELDS = frozenset({
    'credential_handle', 'password', 'secret', 'api_key', 'token', 'access_token',
    'authorization', 'cookie',
})

_bound = threading.local()


def redact(value: Any) -> Any:
    """Mask credentials and unsubscribe tokens in strings, dicts and lists."""
    if isinstance(value, str):
        value = _URL_SECRET.sub(r'\1' + MASK, value)
        return _INLINE_SECRET.sub(lambda m: m.group(1) + m.group(2) + MASK, value)
    if isinstance(value, dict):
        return {key: MASK if str(key).lower() in _SECRET_FIELDS else redact(item)
                for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def bound_entities() -> Dict[str, Any]:
    return dict(getattr(_bound, 'entities', {}))


@contextmanager
def bind_entities(**entities: Any) -> Iterator[None]:
    """
    Attach entity ids to every structured record written on this thread.

    Bindings nest: an inner block adds to the outer one and the outer set is
    restored on exit. ``None`` values are ignored.
    """
    unknown = set(entities) - set(ENTITY_KEYS)
    if unknown:
        raise ValueError(f"Unknown log entities: {', '.join(sorted(unknown))}")
    previous = getattr(_bound, 'entities', {})
    _bound.entities = {**previous, **{k: v for k, v in entities.items() if v is not None}}
    try:
        yield
    finally:
        _bound.entities = previous


class RedactingFilter(logging.Filter):
    """Handler filter masking secrets in records from plain ``logging`` loggers."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, 'structured', False):
            record.msg = redact(record.getMessage())
            record.args = None
        return True


class WorkflowLogger:
    """JSON logger for one workflow component."""

    def __init__(self, component: str):
        self.component = component
        self.logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")

    def bind(self, **entities: Any):
        return bind_entities(**entities)

    def _write(self, level: int, event: str, message: str, fields: Optional[Dict[str, Any]] = None,
               exc_info: bool = False, **sections: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        record = {
            'ts': datetime.now(timezone.utc).isoformat(),
            'level': logging.getLevelName(level),
            'component': self.component,
            'event': event,
            'message': redact(message),
        }
        entities = bound_entities()
        if entities:
            record['entities'] = entities
        for name, section in sections.items():
            record[name] = redact(section)
        if fields:
            record['fields'] = redact(fields)
        self.logger.log(level, json.dumps(record, default=str), exc_info=exc_info,
                        extra={'structured': True})

    def debug(self, message: str, fields: Optional[Dict[str, Any]] = None):
        self._write(logging.DEBUG, 'message', message, fields)

    def info(self, message: str, fields: Optional[Dict[str, Any]] = None):
        self._write(logging.INFO, 'message', message, fields)

    def warning(self, message: str, fields: Optional[Dict[str, Any]] = None):
        self._write(logging.WARNING, 'message', message, fields)

    def error(self, message: str, fields: Optional[Dict[str, Any]] = None):
        self._write(logging.ERROR, 'message', message, fields)

    def transition(self, entity: str, entity_id: Any, from_state: Optional[str], to_state: str,
                   fields: Optional[Dict[str, Any]] = None) -> None:
        """Record one state change of a subscription, action or import session."""
        self._write(
            logging.INFO, 'transition',
            f"{entity} {entity_id}: {from_state or 'new'} -> {to_state}",
            fields,
            transition={'entity': entity, 'id': entity_id, 'from': from_state, 'to': to_state}
        )

    def log_exception(self, error: Exception, fields: Optional[Dict[str, Any]] = None):
        """Record an exception with its traceback and any context it carries."""
        details = {'type': type(error).__name__, 'message': str(error)}
        if getattr(error, 'context', None):
            details['context'] = error.context
        self._write(logging.ERROR, 'exception', str(error), fields, exc_info=True, error=details)

    @contextmanager
    def timed(self, operation: str) -> Iterator[None]:
        """Record how long the block took, and whether it raised."""
        started = time.monotonic()
        try:
            yield
        except Exception as e:
            self._write(logging.ERROR, 'operation', f"{operation} failed", {
                'operation': operation,
                'duration_seconds': round(time.monotonic() - started, 3),
                'error': str(e),
            })
            raise
        self._write(logging.INFO, 'operation', f"{operation} finished", {
            'operation': operation,
            'duration_seconds': round(time.monotonic() - started, 3),
        })


def configure_workflow_logging(level: str = "INFO", format: str = "json", output: str = "console",
                               filename: Optional[str] = None) -> logging.Logger:
    """Send the ``subscout`` logger tree to the console, a file or both."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handlers = []
    if output in ("console", "both"):
        handlers.append(logging.StreamHandler())
    if output in ("file", "both") and filename:
        handlers.append(logging.FileHandler(filename))

    pattern = '%(message)s' if format == "json" else '%(asctime)s %(levelname)s [%(name)s] %(message)s'
    for handler in handlers:
        handler.setFormatter(logging.Formatter(pattern))
        handler.addFilter(RedactingFilter())
        root.addHandler(handler)
    return root
