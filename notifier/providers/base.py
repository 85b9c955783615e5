"""Base transport classes shared by all delivery providers.

A transport wraps exactly one provider (an SMTP relay or an HTTP API). It
either returns a TransportReceipt or raises a TransportError; choosing the
next provider is the send adapter's job.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from notifier.logging import get_logger

from .exceptions import (
    TransportConfigurationError,
    TransportConnectionError,
    TransportHTTPError,
    TransportResponseError,
    TransportTimeoutError,
)
from .models import TransportReceipt

logger = get_logger(__name__, component="provider")


class Transport(ABC):
    """A single delivery provider.

    Attributes:
        name: Provider name reported in delivery results (e.g. "smtp")
        channel: Channel the transport serves ("email", "sms" or "push")
    """

    name: str = ""
    channel: str = ""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether credentials for this provider are present."""

    @abstractmethod
    def send(self, message: Any) -> TransportReceipt:
        """Deliver a message.

        Raises:
            TransportError: If the provider did not accept the message
        """

    @abstractmethod
    def check_health(self) -> None:
        """Check the provider.

        Raises:
            TransportError: If the provider is unreachable or rejects the credentials
        """

    def close(self) -> None:
        """Release held resources."""


class HttpTransport(Transport):
    """Transport backed by an HTTP API.

    Provides shared HTTP request handling and maps requests failures onto
    the transport exception hierarchy.
    """

    def __init__(self, timeout: int = 15, user_agent: str = "Notifier/1.0") -> None:
        """Initialize HTTP transport.

        Args:
            timeout: HTTP request timeout in seconds (1-300)
            user_agent: User-Agent header for requests

        Raises:
            TransportConfigurationError: If timeout is outside valid range or user_agent is empty
        """
        if not 1 <= timeout <= 300:
            raise TransportConfigurationError(
                f"Timeout must be between 1 and 300 seconds, got: {timeout}"
            )
        if not user_agent or not user_agent.strip():
            raise TransportConfigurationError("user_agent cannot be empty")

        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"User-Agent": user_agent.strip()})

    def close(self) -> None:
        self._session.close()

    def _request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        json_data: Optional[Dict[str, Any]] = None,
        form_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        auth: Optional[tuple] = None,
    ) -> requests.Response:
        """Call the provider API; only responses below 400 are returned.

        Raises:
            TransportTimeoutError: If no answer came within ``timeout``
            TransportConnectionError: If the provider could not be reached
            TransportHTTPError: On a 4xx or 5xx status
        """
        context = {"provider": self.name, "method": method, "url": url}
        logger.debug(f"{self.name}: {method} {url}", extra={"event": "provider.http.request", **context})

        try:
            response = self._session.request(
                method=method,
                url=url,
                headers=headers,
                json=json_data,
                data=form_data,
                params=params,
                auth=auth,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            message = f"{self.name}: no response from {url} within {self.timeout}s"
            logger.warning(message, extra={"event": "provider.http.timeout", "timeout": self.timeout, **context})
            raise TransportTimeoutError(message, url=url) from e
        except requests.exceptions.RequestException as e:
            message = f"{self.name}: {method} {url} failed: {e}"
            logger.error(
                message,
                extra={"event": "provider.http.error", "error_type": type(e).__name__, **context},
            )
            raise TransportConnectionError(message) from e

        status = response.status_code
        if status >= 400:
            logger.log(
                logging.WARNING if status >= 500 else logging.ERROR,
                f"{self.name}: HTTP {status} from {url}",
                extra={"event": "provider.http.status_error", "status_code": status, **context},
            )
            raise TransportHTTPError(f"HTTP {status}: {response.reason}", status_code=status, url=url)

        return response

    def _json(self, response: requests.Response, url: str) -> Dict[str, Any]:
        """Decode a JSON object body.

        Raises:
            TransportResponseError: If the body is not JSON or not an object
        """
        try:
            body = response.json()
        except ValueError as e:
            raise TransportResponseError(f"Failed to parse JSON response from {url}: {e}") from e
        if not isinstance(body, dict):
            raise TransportResponseError(f"Expected a JSON object from {url}, got {type(body).__name__}")
        return body
