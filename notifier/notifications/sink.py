"""Notification records for user-facing sends.

The sink never fails a send: storage errors are logged and the caller gets
None instead of a notification id.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from notifier.domain.models import Notification, NotificationLog, NotificationStatus
from notifier.logging import get_logger
from notifier.persistence import Database, NotificationRepository, PersistenceError
from notifier.providers.models import DeliveryResult
from notifier.utils.timestamps import utc_now

logger = get_logger(__name__, component="notification")

# Stored content is a summary, not the full rendered body
CONTENT_SUMMARY_LENGTH = 500


@dataclass
class DeliveryRecord:
    """What the send path knows about one attempt."""

    user_id: int
    template_name: str
    channel: str
    subject: Optional[str]
    content: Optional[str]
    job_id: Optional[str] = None


class NotificationSink:
    """Writes notification rows and provider logs."""

    def __init__(self, database: Database, clock: Callable[[], datetime] = utc_now):
        self.database = database
        self.clock = clock

    def record(self, record: DeliveryRecord, result: DeliveryResult, retry_pending: bool = False) -> Optional[int]:
        """Store the outcome of a send attempt.

        When ``job_id`` is set, a record created by an earlier attempt of
        the same job is updated rather than duplicated.

        Args:
            record: Recipient-independent details of the send
            result: Provider outcome
            retry_pending: The queue will retry; store ``pending`` instead of ``failed``

        Returns:
            Notification id, or None if the record could not be written
        """
        status = self._status_for(result, retry_pending)
        now = self.clock()
        sent_at = now if status == NotificationStatus.SENT.value else None

        try:
            with self.database.session() as session:
                repo = NotificationRepository(session)
                existing = repo.get_by_job_id(record.job_id) if record.job_id else None

                if existing is not None:
                    notification_id = existing.id
                    repo.update_status(notification_id, status, updated_at=now, sent_at=sent_at)
                else:
                    created = repo.create(
                        Notification(
                            user_id=record.user_id,
                            template_name=record.template_name,
                            channel=record.channel,
                            subject=record.subject,
                            content=_summarize(record.content),
                            status=status,
                            job_id=record.job_id,
                            sent_at=sent_at,
                        ),
                        created_at=now,
                    )
                    notification_id = created.id

                repo.add_log(
                    NotificationLog(
                        notification_id=notification_id,
                        provider=result.provider,
                        response=_log_response(result),
                        error_message=result.error,
                    ),
                    created_at=now,
                )
        except (PersistenceError, SQLAlchemyError) as e:
            logger.error(
                f"Failed to record notification: {e}",
                extra={
                    "event": "notification.record_failed",
                    "template": record.template_name,
                    "channel": record.channel,
                    "job_id": record.job_id,
                    "error_type": type(e).__name__,
                },
            )
            return None

        logger.debug(
            f"Recorded notification {notification_id} as {status}",
            extra={
                "event": "notification.recorded",
                "notification_id": notification_id,
                "status": status,
                "job_id": record.job_id,
            },
        )
        return notification_id

    @staticmethod
    def _status_for(result: DeliveryResult, retry_pending: bool) -> str:
        if result.success:
            return NotificationStatus.SENT.value
        if retry_pending:
            return NotificationStatus.PENDING.value
        return NotificationStatus.FAILED.value


def _summarize(content: Optional[str]) -> Optional[str]:
    if content is None or len(content) <= CONTENT_SUMMARY_LENGTH:
        return content
    return content[: CONTENT_SUMMARY_LENGTH - 3] + "..."


def _log_response(result: DeliveryResult):
    response = {"success": result.success, "message_id": result.message_id}
    if result.response_time_ms is not None:
        response["response_time_ms"] = result.response_time_ms
    if result.fallback:
        response["fallback"] = True
    if result.details:
        response["details"] = result.details
    return response
