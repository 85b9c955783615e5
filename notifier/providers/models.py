"""Data models for outgoing messages and delivery results."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional


@dataclass
class EmailEnvelope:
    """A rendered email ready for a transport."""

    to: str
    subject: str
    html: Optional[str]
    text: str
    sender_email: str
    sender_name: str
    reply_to: Optional[str] = None

    @property
    def sender(self) -> str:
        """Formatted From header value."""
        return f'"{self.sender_name}" <{self.sender_email}>'


@dataclass
class SmsEnvelope:
    """A rendered SMS ready for a transport."""

    to: str
    body: str


@dataclass
class TransportReceipt:
    """What a transport reports after accepting a message."""

    message_id: Optional[str]
    response: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryResult:
    """Outcome of a send attempt.

    ``skipped`` results (preferences) are successful. ``retryable`` tells
    the queue whether another attempt could succeed.
    """

    success: bool
    provider: Optional[str] = None
    message_id: Optional[str] = None
    response_time_ms: Optional[int] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    skipped: bool = False
    reason: Optional[str] = None
    fallback: bool = False
    retryable: bool = True
    notification_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view without unset fields."""
        data = {key: value for key, value in asdict(self).items() if value is not None and value != {}}
        for flag in ("skipped", "fallback"):
            if not data[flag]:
                del data[flag]
        if self.success:
            del data["retryable"]
        return data


@dataclass
class PushEnvelope:
    """A rendered push notification ready for a transport.

    ``data`` values are sent as strings; FCM rejects anything else.
    """

    to: str
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
    sound: str = "default"
    priority: str = "high"
    badge: Optional[int] = None
    ttl: int = 86400
