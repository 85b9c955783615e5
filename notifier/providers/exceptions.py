"""Custom exceptions for delivery transports."""

from typing import Optional


class TransportError(Exception):
    """Base exception for all transport errors.

    Catching this exception covers any failure of a single provider; the
    send adapter moves on to the next transport when it sees one.
    """

    pass


class TransportConfigurationError(TransportError):
    """Transport is missing credentials or was given invalid settings."""

    pass


class TransportHTTPError(TransportError):
    """Provider API answered with a 4xx or 5xx status."""

    def __init__(self, message: str, status_code: int, url: str) -> None:
        """Initialize HTTP error with status code and URL.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (e.g., 401, 503)
            url: URL that failed
        """
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class TransportTimeoutError(TransportError):
    """Provider call did not complete within the configured timeout."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class TransportConnectionError(TransportError):
    """Provider could not be reached (DNS, refused connection, TLS)."""

    pass


class TransportResponseError(TransportError):
    """Provider answered but the response could not be parsed or reports a rejection."""

    pass
