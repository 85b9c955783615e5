"""Delivery providers and the per-channel failover adapter."""

from .adapter import MOCK_PROVIDER, ProviderSendAdapter
from .base import HttpTransport, Transport
from .exceptions import (
    TransportConfigurationError,
    TransportConnectionError,
    TransportError,
    TransportHTTPError,
    TransportResponseError,
    TransportTimeoutError,
)
from .expo import ExpoTransport
from .factory import build_email_adapter, build_push_adapter, build_sms_adapter
from .fcm import FcmTransport
from .models import DeliveryResult, EmailEnvelope, PushEnvelope, SmsEnvelope, TransportReceipt
from .sendgrid import SendGridTransport
from .smtp import SmtpTransport
from .twilio import TwilioTransport
from .vonage import VonageTransport

__all__ = [
    "ProviderSendAdapter",
    "MOCK_PROVIDER",
    "Transport",
    "HttpTransport",
    "SmtpTransport",
    "SendGridTransport",
    "TwilioTransport",
    "VonageTransport",
    "FcmTransport",
    "ExpoTransport",
    "build_email_adapter",
    "build_sms_adapter",
    "build_push_adapter",
    "DeliveryResult",
    "EmailEnvelope",
    "SmsEnvelope",
    "PushEnvelope",
    "TransportReceipt",
    "TransportError",
    "TransportConfigurationError",
    "TransportConnectionError",
    "TransportHTTPError",
    "TransportResponseError",
    "TransportTimeoutError",
]
