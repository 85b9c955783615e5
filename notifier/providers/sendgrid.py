"""SendGrid transport (secondary email provider)."""

from typing import Any, Dict, Optional

from .base import HttpTransport
from .models import EmailEnvelope, TransportReceipt


class SendGridTransport(HttpTransport):
    """Sends email through the SendGrid v3 API.

    API Details:
        Endpoint: POST https://api.sendgrid.com/v3/mail/send
        Authentication: Bearer API key
        Response: 202 Accepted, message id in the X-Message-Id header
    """

    name = "sendgrid"
    channel = "email"
    API_BASE_URL = "https://api.sendgrid.com/v3"

    def __init__(self, api_key: Optional[str], timeout: int = 15, user_agent: str = "Notifier/1.0"):
        super().__init__(timeout=timeout, user_agent=user_agent)
        self.api_key = api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def send(self, message: EmailEnvelope) -> TransportReceipt:
        """Send an email via SendGrid.

        Raises:
            TransportError: If the API rejects the request
        """
        url = f"{self.API_BASE_URL}/mail/send"
        response = self._request(
            url,
            method="POST",
            headers=self._headers(),
            json_data=build_payload(message),
        )
        message_id = response.headers.get("X-Message-Id")
        return TransportReceipt(
            message_id=message_id, response={"status_code": response.status_code}
        )

    def check_health(self) -> None:
        """Verify the API key by listing its scopes."""
        self._request(f"{self.API_BASE_URL}/scopes", headers=self._headers())

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}


def build_payload(message: EmailEnvelope) -> Dict[str, Any]:
    """Build the SendGrid mail/send payload."""
    content = [{"type": "text/plain", "value": message.text or " "}]
    if message.html:
        content.append({"type": "text/html", "value": message.html})

    payload: Dict[str, Any] = {
        "personalizations": [{"to": [{"email": message.to}]}],
        "from": {"email": message.sender_email, "name": message.sender_name},
        "subject": message.subject,
        "content": content,
    }
    if message.reply_to:
        payload["reply_to"] = {"email": message.reply_to}
    return payload
