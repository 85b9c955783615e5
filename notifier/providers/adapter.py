"""Provider failover for one channel.

The adapter walks its transports in priority order and returns on the
first success. In development and test environments a mock result stands
in when no provider succeeded, so local runs work without credentials.
"""

import time
from typing import Any, Dict, List, Sequence, Union

from notifier.logging import get_logger
from notifier.utils.masking import mask_recipient

from .base import Transport
from .exceptions import TransportError
from .models import DeliveryResult, EmailEnvelope, PushEnvelope, SmsEnvelope

logger = get_logger(__name__, component="provider")

MOCK_PROVIDER = "mock"


class ProviderSendAdapter:
    """Sends a message through the first transport that accepts it.

    Attributes:
        channel: "email", "sms" or "push"
        transports: Transports in priority order (primary first)
        allow_mock: Whether to synthesize a mock success when all providers fail
    """

    def __init__(self, channel: str, transports: Sequence[Transport], allow_mock: bool = False):
        self.channel = channel
        self.transports: List[Transport] = list(transports)
        self.allow_mock = allow_mock

    @property
    def configured_providers(self) -> List[str]:
        return [transport.name for transport in self.transports if transport.is_configured]

    def send(self, message: Union[EmailEnvelope, SmsEnvelope, PushEnvelope]) -> DeliveryResult:
        """Deliver a message with failover.

        Unconfigured transports are skipped. A TransportError moves on to
        the next transport.

        Returns:
            DeliveryResult; ``success=False`` with ``retryable=True`` when
            every provider failed and mocking is not allowed
        """
        started = time.monotonic()
        recipient = mask_recipient(self.channel, message.to)
        attempted: List[str] = []
        errors: Dict[str, str] = {}

        for transport in self.transports:
            if not transport.is_configured:
                continue
            attempted.append(transport.name)
            try:
                receipt = transport.send(message)
            except TransportError as e:
                errors[transport.name] = str(e)
                logger.warning(
                    f"{transport.name} failed, trying next provider",
                    extra={
                        "event": "provider.send.failed",
                        "provider": transport.name,
                        "channel": self.channel,
                        "recipient": recipient,
                        "error_type": type(e).__name__,
                        "error": str(e),
                    },
                )
                continue

            response_time_ms = _elapsed_ms(started)
            logger.info(
                f"Message sent via {transport.name}",
                extra={
                    "event": "provider.send.succeeded",
                    "provider": transport.name,
                    "channel": self.channel,
                    "recipient": recipient,
                    "message_id": receipt.message_id,
                    "response_time_ms": response_time_ms,
                },
            )
            return DeliveryResult(
                success=True,
                provider=transport.name,
                message_id=receipt.message_id,
                response_time_ms=response_time_ms,
                details={"response": receipt.response} if receipt.response else {},
            )

        response_time_ms = _elapsed_ms(started)

        if self.allow_mock:
            message_id = f"mock-{self.channel}-{int(time.time() * 1000)}"
            logger.info(
                "No provider delivered the message, returning mock result",
                extra={
                    "event": "provider.send.mocked",
                    "channel": self.channel,
                    "recipient": recipient,
                    "message_id": message_id,
                    "attempted_services": attempted,
                },
            )
            return DeliveryResult(
                success=True,
                provider=MOCK_PROVIDER,
                message_id=message_id,
                response_time_ms=response_time_ms,
                fallback=True,
                details={"attempted_services": attempted} if attempted else {},
            )

        logger.error(
            f"All {self.channel} providers failed",
            extra={
                "event": "provider.send.exhausted",
                "channel": self.channel,
                "recipient": recipient,
                "attempted_services": attempted,
            },
        )
        return DeliveryResult(
            success=False,
            error=f"All {self.channel} providers failed",
            response_time_ms=response_time_ms,
            details={"attempted_services": attempted, "errors": errors},
            retryable=True,
        )

    def health_check(self) -> Dict[str, Any]:
        """Check every configured transport.

        Returns:
            Dict with ``healthy`` (any configured provider healthy) and a
            per-provider ``configured`` / ``status`` / ``error`` entry
        """
        providers: Dict[str, Dict[str, Any]] = {}
        for transport in self.transports:
            entry: Dict[str, Any] = {"configured": transport.is_configured, "status": "not_configured"}
            if transport.is_configured:
                try:
                    transport.check_health()
                    entry["status"] = "healthy"
                except TransportError as e:
                    entry["status"] = "unhealthy"
                    entry["error"] = str(e)
            providers[transport.name] = entry

        return {
            "channel": self.channel,
            "healthy": any(entry["status"] == "healthy" for entry in providers.values()),
            "mock_fallback": self.allow_mock,
            "providers": providers,
        }

    def close(self) -> None:
        for transport in self.transports:
            transport.close()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
