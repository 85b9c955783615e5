"""Vonage transport (secondary SMS provider)."""

from typing import Optional

from .base import HttpTransport
from .exceptions import TransportResponseError
from .models import SmsEnvelope, TransportReceipt


class VonageTransport(HttpTransport):
    """Sends SMS through the Vonage SMS API.

    API Details:
        Endpoint: POST https://rest.nexmo.com/sms/json
        Authentication: api_key / api_secret in the body
        Response: JSON with ``messages``; status "0" means accepted
    """

    name = "vonage"
    channel = "sms"
    SMS_URL = "https://rest.nexmo.com/sms/json"
    BALANCE_URL = "https://rest.nexmo.com/account/get-balance"

    def __init__(
        self,
        api_key: Optional[str],
        api_secret: Optional[str],
        from_number: str = "EventPlanner",
        timeout: int = 15,
        user_agent: str = "Notifier/1.0",
    ):
        super().__init__(timeout=timeout, user_agent=user_agent)
        self.api_key = api_key
        self.api_secret = api_secret
        self.from_number = from_number

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def send(self, message: SmsEnvelope) -> TransportReceipt:
        """Send an SMS via Vonage.

        Raises:
            TransportError: If the API rejects the message
        """
        response = self._request(
            self.SMS_URL,
            method="POST",
            form_data={
                "api_key": self.api_key,
                "api_secret": self.api_secret,
                "from": self.from_number,
                "to": message.to.lstrip("+"),
                "text": message.body,
            },
        )
        data = self._json(response, self.SMS_URL)
        messages = data.get("messages") or []
        if not messages:
            raise TransportResponseError("Vonage response did not include any message")

        first = messages[0]
        if str(first.get("status")) != "0":
            raise TransportResponseError(f"Vonage error: {first.get('error-text', 'unknown error')}")
        return TransportReceipt(
            message_id=first.get("message-id"),
            response={"remaining_balance": first.get("remaining-balance")},
        )

    def check_health(self) -> None:
        """Query the account balance to verify credentials."""
        self._json(
            self._request(
                self.BALANCE_URL, params={"api_key": self.api_key, "api_secret": self.api_secret}
            ),
            self.BALANCE_URL,
        )
