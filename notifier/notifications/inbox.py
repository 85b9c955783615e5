"""In-app inbox: notifications stored for a user and read from the app.

In-app notifications are ordinary notification rows on the in_app channel.
Every query is scoped to one user; a notification id belonging to someone
else behaves as if it did not exist.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from notifier.domain.models import Channel, InAppCategory, Notification, NotificationStatus
from notifier.logging import get_logger
from notifier.persistence import Database, NotificationRepository, RecordNotFoundError
from notifier.utils.timestamps import format_timestamp, utc_now

logger = get_logger(__name__, component="inbox")

IN_APP = Channel.IN_APP.value
MAX_PAGE_SIZE = 100


@dataclass
class InboxPage:
    """One page of a user's inbox, newest first."""

    notifications: List[Notification]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.notifications) < self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notifications": [notification.to_dict() for notification in self.notifications],
            "pagination": {
                "total": self.total,
                "limit": self.limit,
                "offset": self.offset,
                "has_more": self.has_more,
            },
        }


def parse_category(value: Any) -> Optional[str]:
    """Category value for filters and new notifications.

    Raises:
        ValueError: If the value is not a known category
    """
    if value is None or value == "":
        return None
    try:
        return InAppCategory(str(value).strip().lower()).value
    except ValueError:
        valid = ", ".join(category.value for category in InAppCategory)
        raise ValueError(f"Unknown in-app category '{value}'. Valid categories: {valid}") from None


class InAppInbox:
    """Creates, lists and updates a user's in-app notifications.

    Example:
        >>> inbox = InAppInbox(database)
        >>> inbox.create(42, "Ticket confirmed!", "Your ticket is ready", category="success")
        >>> inbox.list_for_user(42, unread_only=True).total
        1
    """

    def __init__(self, database: Database, clock: Callable[[], datetime] = utc_now):
        self.database = database
        self.clock = clock

    def create(
        self,
        user_id: int,
        title: str,
        message: str,
        category: Any = InAppCategory.INFO.value,
        template_name: str = "custom",
    ) -> Notification:
        """Store a delivered in-app notification.

        Raises:
            ValueError: If the category is unknown
            PersistenceError: If the row cannot be written
        """
        now = self.clock()
        with self.database.session() as session:
            created = NotificationRepository(session).create(
                Notification(
                    user_id=user_id,
                    template_name=template_name,
                    channel=IN_APP,
                    subject=title,
                    content=message,
                    status=NotificationStatus.SENT.value,
                    category=parse_category(category) or InAppCategory.INFO.value,
                    sent_at=now,
                ),
                created_at=now,
            )

        logger.info(
            f"In-app notification {created.id} created for user {user_id}",
            extra={
                "event": "inbox.created",
                "notification_id": created.id,
                "user_id": user_id,
                "category": created.category,
            },
        )
        return created

    def list_for_user(
        self,
        user_id: int,
        limit: int = 50,
        offset: int = 0,
        unread_only: bool = False,
        is_read: Optional[bool] = None,
        category: Any = None,
    ) -> InboxPage:
        """A page of the user's notifications.

        Args:
            user_id: Owner of the inbox
            limit: Page size (1-100)
            offset: Rows to skip
            unread_only: Shorthand for ``is_read=False``
            is_read: Only read (True) or unread (False) notifications
            category: Only this category

        Raises:
            ValueError: On an invalid page or an unknown category
        """
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}, got {limit}")
        if offset < 0:
            raise ValueError(f"offset cannot be negative, got {offset}")
        if unread_only:
            is_read = False
        category = parse_category(category)

        with self.database.session() as session:
            repo = NotificationRepository(session)
            notifications = repo.list_for_user(user_id, IN_APP, limit, offset, is_read, category)
            total = repo.count_for_user(user_id, IN_APP, is_read, category)
        return InboxPage(notifications=notifications, total=total, limit=limit, offset=offset)

    def mark_read(self, notification_id: int, user_id: int) -> Notification:
        """Mark one notification read.

        Raises:
            RecordNotFoundError: If the notification does not exist or is not the user's
        """
        with self.database.session() as session:
            notification = NotificationRepository(session).mark_read(
                notification_id, user_id, IN_APP, self.clock()
            )
        if notification is None:
            raise RecordNotFoundError(f"Notification {notification_id} not found or access denied")

        logger.debug(
            f"Notification {notification_id} marked read",
            extra={"event": "inbox.marked_read", "notification_id": notification_id, "user_id": user_id},
        )
        return notification

    def mark_all_read(self, user_id: int, category: Any = None) -> int:
        """Mark every unread notification of the user read. Returns how many changed."""
        category = parse_category(category)
        with self.database.session() as session:
            updated = NotificationRepository(session).mark_all_read(user_id, IN_APP, self.clock(), category)
        logger.info(
            f"Marked {updated} notification(s) read for user {user_id}",
            extra={"event": "inbox.marked_all_read", "user_id": user_id, "count": updated, "category": category},
        )
        return updated

    def delete(self, notification_id: int, user_id: int) -> bool:
        with self.database.session() as session:
            deleted = NotificationRepository(session).delete_for_user(notification_id, user_id, IN_APP)
        if deleted:
            logger.info(
                f"Notification {notification_id} deleted",
                extra={"event": "inbox.deleted", "notification_id": notification_id, "user_id": user_id},
            )
        return deleted

    def stats(self, user_id: int) -> Dict[str, Any]:
        """Totals for the user's inbox, with a count for every category."""
        with self.database.session() as session:
            raw = NotificationRepository(session).stats_for_user(user_id, IN_APP)
        by_category = {category.value: 0 for category in InAppCategory}
        for category, count in raw["by_category"].items():
            by_category[category] = by_category.get(category, 0) + count
        return {
            "user_id": user_id,
            "total": raw["total"],
            "unread": raw["unread"],
            "by_category": by_category,
            "last_notification_at": format_timestamp(raw["last_created_at"]),
        }
