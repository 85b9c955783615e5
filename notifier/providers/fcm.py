"""Firebase Cloud Messaging transport (primary push provider)."""

from typing import Any, Dict, Optional

from .base import HttpTransport
from .exceptions import TransportResponseError
from .models import PushEnvelope, TransportReceipt


class FcmTransport(HttpTransport):
    """Sends push notifications through the FCM HTTP v1 API.

    The OAuth access token is minted outside the process (service account
    or workload identity) and handed in through FCM_ACCESS_TOKEN.

    API Details:
        Endpoint: POST https://fcm.googleapis.com/v1/projects/{project}/messages:send
        Authentication: Bearer OAuth 2.0 access token
        Response: JSON with ``name`` ("projects/{project}/messages/{id}")
    """

    name = "fcm"
    channel = "push"
    API_BASE_URL = "https://fcm.googleapis.com/v1"
    TOKEN_INFO_URL = "https://oauth2.googleapis.com/tokeninfo"

    def __init__(
        self,
        project_id: Optional[str],
        access_token: Optional[str],
        timeout: int = 15,
        user_agent: str = "Notifier/1.0",
    ):
        super().__init__(timeout=timeout, user_agent=user_agent)
        self.project_id = project_id
        self.access_token = access_token

    @property
    def is_configured(self) -> bool:
        return bool(self.project_id and self.access_token)

    def send(self, message: PushEnvelope) -> TransportReceipt:
        """Send a push notification via FCM.

        Raises:
            TransportError: If the API rejects the message
        """
        url = f"{self.API_BASE_URL}/projects/{self.project_id}/messages:send"
        response = self._request(
            url,
            method="POST",
            headers={"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"},
            json_data={"message": build_message(message)},
        )
        data = self._json(response, url)
        if not data.get("name"):
            raise TransportResponseError("FCM response did not include a message name")
        return TransportReceipt(message_id=data["name"])

    def check_health(self) -> None:
        """Ask Google whether the access token is still valid."""
        self._json(
            self._request(self.TOKEN_INFO_URL, params={"access_token": self.access_token}),
            self.TOKEN_INFO_URL,
        )


def build_message(message: PushEnvelope) -> Dict[str, Any]:
    """Build the FCM v1 ``message`` object."""
    aps: Dict[str, Any] = {"sound": message.sound}
    if message.badge is not None:
        aps["badge"] = message.badge
    return {
        "token": message.to,
        "notification": {"title": message.title, "body": message.body},
        "data": message.data,
        "android": {
            "priority": message.priority,
            "ttl": f"{message.ttl}s",
            "notification": {"sound": message.sound},
        },
        "apns": {"payload": {"aps": aps}},
    }
