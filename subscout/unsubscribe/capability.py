"""
Cancellation-automation capability.

The orchestrator treats the capability as opaque: it hands over a target
URL, an HTTP method and optional form data, and gets back a status code, a
bounded response snippet and whether a failure is worth retrying.

``HttpCancellationCapability`` is the default implementation. It submits a
plain HTTP GET, or a POST carrying form data or the RFC 8058 one-click body.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from ..config import Config
from ..types import CapabilityResult

RETRYABLE_STATUS_CODES = {408, 425, 429}


class CancellationCapability(ABC):
    """Interface of the external automation that submits a cancellation."""

    @abstractmethod
    def invoke(
        self,
        target_url: str,
        http_method: str = 'GET',
        form_data: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> CapabilityResult:
        """
        Submit a cancellation request.

        Returns:
            CapabilityResult with ``retryable`` set for recoverable failures
        """


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in RETRYABLE_STATUS_CODES


class HttpCancellationCapability(CancellationCapability):
    """Submit cancellations with plain HTTP requests."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        verify_ssl: Optional[bool] = None,
        snippet_limit: Optional[int] = None
    ):
        """
        Initialize HTTP capability.

        Args:
            timeout: Default request timeout in seconds
            user_agent: User-Agent header for requests
            verify_ssl: Verify TLS certificates
            snippet_limit: Maximum number of response characters returned
        """
        self.timeout = timeout if timeout is not None else Config.REQUEST_TIMEOUT
        self.user_agent = user_agent or Config.USER_AGENT
        self.verify_ssl = Config.VERIFY_SSL if verify_ssl is None else verify_ssl
        self.snippet_limit = snippet_limit or Config.RESPONSE_SNIPPET_LIMIT

    def invoke(
        self,
        target_url: str,
        http_method: str = 'GET',
        form_data: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> CapabilityResult:
        method = (http_method or 'GET').upper()
        timeout = min(t for t in (timeout, self.timeout) if t is not None)
        headers = {
            'User-Agent': self.user_agent
        }

        try:
            if method == 'GET':
                response = requests.get(
                    target_url,
                    headers=headers,
                    timeout=timeout,
                    allow_redirects=True,
                    verify=self.verify_ssl
                )
            elif method == 'POST':
                # RFC 8058 one-click body when no form was captured
                data = form_data if form_data else {'List-Unsubscribe': 'One-Click'}
                response = requests.post(
                    target_url,
                    data=data,
                    headers=headers,
                    timeout=timeout,
                    allow_redirects=True,
                    verify=self.verify_ssl
                )
            else:
                return CapabilityResult(
                    status_code=None,
                    retryable=False,
                    accepted=False,
                    error=f'Unsupported HTTP method: {method}'
                )

        except requests.exceptions.Timeout:
            return CapabilityResult(
                status_code=None,
                retryable=True,
                accepted=False,
                error=f'Request timed out after {timeout} seconds'
            )

        except requests.exceptions.ConnectionError as e:
            return CapabilityResult(
                status_code=None,
                retryable=True,
                accepted=False,
                error=f'Connection error: {str(e)}'
            )

        except requests.exceptions.RequestException as e:
            return CapabilityResult(
                status_code=None,
                retryable=False,
                accepted=False,
                error=f'Request error: {str(e)}'
            )

        status_code = response.status_code
        success = 200 <= status_code < 300
        return CapabilityResult(
            status_code=status_code,
            body_snippet=(response.text or '')[:self.snippet_limit],
            retryable=not success and is_retryable_status(status_code),
            accepted=success,
            error=None if success else f'HTTP {status_code}'
        )
