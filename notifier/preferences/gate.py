"""Decides whether a user accepts messages on a channel.

Default policy when the user has no explicit row: email and other channels
are allowed, SMS is not. A failing lookup lets the message through, so an
outage of the preference store never blocks delivery.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol

from notifier.domain.models import Channel, Preference
from notifier.logging import get_logger
from notifier.persistence import Database, PreferenceRepository

logger = get_logger(__name__, component="preferences")

REASON_NO_USER_ID = "no_user_id"
REASON_DEFAULT = "default_preferences"
REASON_ALLOWED = "allowed"
REASON_DISABLED = "channel_disabled"
REASON_ERROR = "error_fallback"


@dataclass(frozen=True)
class PreferenceDecision:
    should_send: bool
    reason: str


class PreferenceSource(Protocol):
    def get(self, user_id: int, channel: str) -> Optional[Preference]: ...


class DatabasePreferenceSource:
    """Reads and writes preference rows, one short session per call."""

    def __init__(self, database: Database):
        self.database = database

    def get(self, user_id: int, channel: str) -> Optional[Preference]:
        with self.database.session() as session:
            return PreferenceRepository(session).get(user_id, channel)

    def set(self, user_id: int, channel: str, is_enabled: bool, now: datetime) -> Preference:
        """Store an explicit choice for (user, channel).

        Raises:
            PersistenceError: If the row cannot be written
        """
        with self.database.session() as session:
            preference = PreferenceRepository(session).set(user_id, channel, is_enabled, now)
        logger.info(
            f"User {user_id} {'enabled' if is_enabled else 'disabled'} {channel}",
            extra={"event": "preferences.updated", "user_id": user_id, "channel": channel, "is_enabled": is_enabled},
        )
        return preference


def normalize_user_id(user_id: Any) -> Optional[int]:
    """Positive integer user id, or None.

    Accepts positive ints and strings of digits; anything else (including
    booleans, zero and negative numbers) yields None.
    """
    if isinstance(user_id, bool):
        return None
    if isinstance(user_id, int):
        return user_id if user_id > 0 else None
    if isinstance(user_id, str):
        stripped = user_id.strip()
        if stripped.isdigit():
            value = int(stripped)
            return value if value > 0 else None
    return None


def default_allowed(channel: str) -> bool:
    return channel != Channel.SMS.value


class PreferenceGate:
    """Answers should_send(user_id, channel) from stored preferences."""

    def __init__(self, source: PreferenceSource):
        self.source = source

    def should_send(self, user_id: Any, channel: str) -> PreferenceDecision:
        """Decide whether to deliver.

        Args:
            user_id: Raw user id (int or digit string); invalid values count as absent
            channel: "email", "sms", "push" or "in_app"

        Returns:
            PreferenceDecision with the outcome and the reason for it
        """
        normalized = normalize_user_id(user_id)
        if normalized is None:
            return PreferenceDecision(default_allowed(channel), REASON_NO_USER_ID)

        try:
            preference = self.source.get(normalized, channel)
        except Exception as e:
            logger.error(
                f"Preference lookup failed, allowing delivery: {e}",
                extra={
                    "event": "preferences.lookup_failed",
                    "user_id": normalized,
                    "channel": channel,
                    "error_type": type(e).__name__,
                },
            )
            return PreferenceDecision(True, REASON_ERROR)

        if preference is None:
            return PreferenceDecision(default_allowed(channel), REASON_DEFAULT)

        if preference.is_enabled:
            return PreferenceDecision(True, REASON_ALLOWED)
        return PreferenceDecision(False, REASON_DISABLED)
