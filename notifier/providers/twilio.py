"""Twilio transport (primary SMS provider)."""

from typing import Optional

from .base import HttpTransport
from .exceptions import TransportResponseError
from .models import SmsEnvelope, TransportReceipt


class TwilioTransport(HttpTransport):
    """Sends SMS through the Twilio REST API.

    API Details:
        Endpoint: POST https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json
        Authentication: HTTP basic (account SID, auth token)
        Body: form-encoded To, From, Body
        Response: JSON message resource with ``sid`` and ``status``
    """

    name = "twilio"
    channel = "sms"
    API_BASE_URL = "https://api.twilio.com/2010-04-01"

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        timeout: int = 15,
        user_agent: str = "Notifier/1.0",
    ):
        super().__init__(timeout=timeout, user_agent=user_agent)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number

    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def send(self, message: SmsEnvelope) -> TransportReceipt:
        """Send an SMS via Twilio.

        Raises:
            TransportError: If the API rejects the message
        """
        url = f"{self.API_BASE_URL}/Accounts/{self.account_sid}/Messages.json"
        response = self._request(
            url,
            method="POST",
            form_data={"To": message.to, "From": self.from_number, "Body": message.body},
            auth=(self.account_sid, self.auth_token),
        )
        data = self._json(response, url)
        if not data.get("sid"):
            raise TransportResponseError("Twilio response did not include a message sid")
        return TransportReceipt(message_id=data["sid"], response={"status": data.get("status")})

    def check_health(self) -> None:
        """Fetch the account resource to verify credentials."""
        url = f"{self.API_BASE_URL}/Accounts/{self.account_sid}.json"
        self._json(self._request(url, auth=(self.account_sid, self.auth_token)), url)
