"""Expo push transport (secondary push provider, Expo device tokens only)."""

import re
from typing import Any, Dict, Optional

from .base import HttpTransport
from .exceptions import TransportError, TransportResponseError
from .models import PushEnvelope, TransportReceipt

EXPO_TOKEN_RE = re.compile(r"^Expo(nent)?PushToken\[.+\]$")


def is_expo_token(token: str) -> bool:
    return bool(token) and EXPO_TOKEN_RE.match(token) is not None


class ExpoTransport(HttpTransport):
    """Sends push notifications through the Expo push service.

    API Details:
        Endpoint: POST https://exp.host/--/api/v2/push/send
        Authentication: Bearer access token
        Response: JSON ``data`` ticket with ``status`` ("ok" or "error") and ``id``
    """

    name = "expo"
    channel = "push"
    API_BASE_URL = "https://exp.host/--/api/v2/push"

    def __init__(self, access_token: Optional[str], timeout: int = 15, user_agent: str = "Notifier/1.0"):
        super().__init__(timeout=timeout, user_agent=user_agent)
        self.access_token = access_token

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    def send(self, message: PushEnvelope) -> TransportReceipt:
        """Send a push notification via Expo.

        Raises:
            TransportError: If the token is not an Expo token or Expo rejects the message
        """
        if not is_expo_token(message.to):
            raise TransportError("Expo only delivers to Expo push tokens")

        url = f"{self.API_BASE_URL}/send"
        response = self._request(url, method="POST", headers=self._headers(), json_data=build_ticket_request(message))
        ticket = self._json(response, url).get("data")
        if isinstance(ticket, list):
            ticket = ticket[0] if ticket else None
        if not isinstance(ticket, dict):
            raise TransportResponseError("Expo response did not include a push ticket")
        if ticket.get("status") != "ok":
            raise TransportResponseError(f"Expo error: {ticket.get('message', 'unknown error')}")
        return TransportReceipt(message_id=ticket.get("id"), response={"status": "ok"})

    def check_health(self) -> None:
        """Request receipts for no tickets to verify the token and the service."""
        url = f"{self.API_BASE_URL}/getReceipts"
        self._json(self._request(url, method="POST", headers=self._headers(), json_data={"ids": []}), url)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}


def build_ticket_request(message: PushEnvelope) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "to": message.to,
        "title": message.title,
        "body": message.body,
        "data": message.data,
        "sound": message.sound,
        "priority": message.priority,
        "ttl": message.ttl,
    }
    if message.badge is not None:
        payload["badge"] = message.badge
    return payload
