"""Dispatcher: the surface collaborators use to send notifications.

Every operation returns a structured result. Validation problems come
back as ``error="validation_failed"``; anything unexpected is logged with
its traceback and returned as ``error="internal_error"``.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from notifier.domain.models import Channel, JobType, Template
from notifier.logging import get_logger
from notifier.notifications import VALIDATION_FAILED, InAppInbox, NotificationService
from notifier.persistence import RecordNotFoundError
from notifier.preferences import DatabasePreferenceSource, default_allowed, normalize_user_id
from notifier.providers import DeliveryResult, ProviderSendAdapter
from notifier.queue import (
    BulkProcessor,
    BulkResult,
    CancelResult,
    CleanupResult,
    JobQueueEngine,
    JobStatusResult,
    JobValidationError,
)
from notifier.queue.bulk import BULK_CHANNELS
from notifier.templates import DatabaseTemplateSource
from notifier.utils.timestamps import format_timestamp, utc_now

logger = get_logger(__name__, component="dispatcher")

INTERNAL_ERROR = "internal_error"
NOT_FOUND = "not_found"
SEND_CHANNELS = tuple(channel.value for channel in Channel)
# Channels with a queue lane
QUEUED_CHANNELS = (Channel.EMAIL.value, Channel.SMS.value, Channel.PUSH.value)
BULK_JOB_TYPES = {
    Channel.EMAIL.value: JobType.BULK_EMAIL.value,
    Channel.SMS.value: JobType.BULK_SMS.value,
    Channel.PUSH.value: JobType.BULK_PUSH.value,
}


@dataclass
class QueueSubmission:
    """Outcome of handing work to the queue."""

    success: bool
    job_id: Optional[str] = None
    lane: Optional[str] = None
    job_type: Optional[str] = None
    run_at: Optional[str] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value not in (None, {})}


@dataclass
class OperationResult:
    """Outcome of an inbox, template or preference operation."""

    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value not in (None, {})}


@dataclass
class HealthReport:
    """Provider and queue health.

    ``push`` is reported but only counts toward ``healthy`` once a push
    provider is configured.
    """

    healthy: bool
    email: Dict[str, Any]
    sms: Dict[str, Any]
    queues: Dict[str, Any]
    push: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Dispatcher:
    """Facade over the send path, the queue, the inbox and provider health."""

    def __init__(
        self,
        service: NotificationService,
        engine: JobQueueEngine,
        bulk: BulkProcessor,
        email_adapter: ProviderSendAdapter,
        sms_adapter: ProviderSendAdapter,
        push_adapter: Optional[ProviderSendAdapter] = None,
        inbox: Optional[InAppInbox] = None,
        templates: Optional[DatabaseTemplateSource] = None,
        preferences: Optional[DatabasePreferenceSource] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.service = service
        self.engine = engine
        self.bulk = bulk
        self.email_adapter = email_adapter
        self.sms_adapter = sms_adapter
        self.push_adapter = push_adapter
        self.inbox = inbox
        self.templates = templates
        self.preferences = preferences
        self.clock = clock

    def send_now(
        self,
        channel: str,
        recipient: Any,
        template: str,
        data: Optional[Mapping[str, Any]] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> DeliveryResult:
        """Deliver immediately on the calling thread.

        ``recipient`` is the user id for in-app notifications.
        """
        problem = _validate_single(channel, recipient, template, SEND_CHANNELS)
        if problem:
            return DeliveryResult(success=False, error=VALIDATION_FAILED, retryable=False, details={"message": problem})
        try:
            return self.service.send(channel, recipient, template, data, options)
        except Exception as e:
            _log_internal_error("send_now", e)
            return DeliveryResult(success=False, error=INTERNAL_ERROR, details={"message": str(e)})

    def send_later(
        self,
        channel: str,
        recipient: str,
        template: str,
        data: Optional[Mapping[str, Any]] = None,
        options: Optional[Mapping[str, Any]] = None,
        job_type: str = JobType.TRANSACTIONAL.value,
        delay_ms: int = 0,
        max_attempts: Optional[int] = None,
    ) -> QueueSubmission:
        """Queue a single-recipient send on the channel's lane.

        For typed job types (welcome, otp, ...) the fields the type needs
        (``user``, ``otp_code``, ...) are read from ``data``.
        """
        problem = _validate_single(channel, recipient, template, QUEUED_CHANNELS)
        if problem:
            return QueueSubmission(success=False, error=VALIDATION_FAILED, details={"message": problem})

        data = dict(data or {})
        payload = {
            **data,
            "recipient": recipient,
            "template": template,
            "data": data,
            "options": dict(options or {}),
        }
        return self._enqueue(channel, job_type, payload, delay_ms, max_attempts)

    def send_bulk(
        self,
        channel: Union[str, Sequence[str]],
        recipients: Sequence[Any],
        template: str,
        data: Optional[Mapping[str, Any]] = None,
        options: Optional[Mapping[str, Any]] = None,
        inline: bool = False,
        delay_ms: int = 0,
    ) -> Union[QueueSubmission, BulkResult]:
        """Send one template to many recipients.

        Args:
            channel: "email", "sms", "push" or a list of them
            recipients: Address strings or recipient dicts
            inline: Run the fan-out now and return its BulkResult instead of queueing

        Returns:
            QueueSubmission, or BulkResult when ``inline``
        """
        channels = [channel] if isinstance(channel, str) else list(channel)
        problem = _validate_bulk(channels, recipients, template)
        if problem:
            return QueueSubmission(success=False, error=VALIDATION_FAILED, details={"message": problem})

        if inline:
            try:
                return self.bulk.process_bulk(list(recipients), template, data, options, channels=channels)
            except Exception as e:
                _log_internal_error("send_bulk", e)
                return QueueSubmission(success=False, error=INTERNAL_ERROR, details={"message": str(e)})

        payload = {
            "recipients": list(recipients),
            "template": template,
            "data": dict(data or {}),
            "options": dict(options or {}),
        }
        if len(channels) == 1:
            job_type = BULK_JOB_TYPES[channels[0]]
        else:
            job_type = JobType.BULK.value
            payload["channels"] = channels
        return self._enqueue("bulk", job_type, payload, delay_ms, None)

    def job_status(self, job_id: str, lane: Optional[str] = None) -> JobStatusResult:
        try:
            return self.engine.status(job_id, lane)
        except JobValidationError as e:
            return JobStatusResult(found=False, error=str(e))
        except Exception as e:
            _log_internal_error("job_status", e)
            return JobStatusResult(found=False, error=INTERNAL_ERROR)

    def cancel_job(self, job_id: str, lane: Optional[str] = None) -> CancelResult:
        try:
            return self.engine.cancel(job_id, lane)
        except JobValidationError as e:
            return CancelResult(job_id=job_id, found=False, cancelled=False, error=str(e))
        except Exception as e:
            _log_internal_error("cancel_job", e)
            return CancelResult(job_id=job_id, found=False, cancelled=False, error=INTERNAL_ERROR)

    def lane_stats(self) -> Dict[str, Dict[str, int]]:
        return {lane: stats.to_dict() for lane, stats in self.engine.stats().items()}

    def cleanup_jobs(self, lane: Optional[str] = None, older_than: Optional[timedelta] = None) -> CleanupResult:
        return self.engine.cleanup(lane, older_than)

    # In-app inbox

    def list_inbox(
        self,
        user_id: Any,
        limit: int = 50,
        offset: int = 0,
        unread_only: bool = False,
        category: Optional[str] = None,
    ) -> OperationResult:
        """A page of the user's in-app notifications, under ``data``."""
        return self._operate(
            "list_inbox",
            lambda: self._require_inbox()
            .list_for_user(_user_id(user_id), limit, offset, unread_only=unread_only, category=category)
            .to_dict(),
        )

    def mark_read(self, notification_id: int, user_id: Any) -> OperationResult:
        return self._operate(
            "mark_read",
            lambda: self._require_inbox().mark_read(notification_id, _user_id(user_id)).to_dict(),
        )

    def mark_all_read(self, user_id: Any, category: Optional[str] = None) -> OperationResult:
        return self._operate(
            "mark_all_read",
            lambda: {"updated_count": self._require_inbox().mark_all_read(_user_id(user_id), category)},
        )

    def delete_notification(self, notification_id: int, user_id: Any) -> OperationResult:
        def delete() -> Dict[str, Any]:
            if not self._require_inbox().delete(notification_id, _user_id(user_id)):
                raise RecordNotFoundError(f"Notification {notification_id} not found or access denied")
            return {"deleted": True, "notification_id": notification_id}

        return self._operate("delete_notification", delete)

    def inbox_stats(self, user_id: Any) -> OperationResult:
        return self._operate("inbox_stats", lambda: self._require_inbox().stats(_user_id(user_id)))

    # Stored templates and preferences

    def set_template(
        self,
        name: str,
        channel: str,
        body: str,
        subject: Optional[str] = None,
        variables: Optional[Sequence[str]] = None,
    ) -> OperationResult:
        """Store a template for (name, channel); it takes precedence over files and defaults."""

        def save() -> Dict[str, Any]:
            if self.templates is None:
                raise RuntimeError("Template storage is not configured")
            template = Template(
                name=name,
                channel=channel,
                subject_template=subject,
                body_template=body,
                variables=list(variables or []),
            )
            saved = self.templates.save(template, self.clock())
            return {
                "name": saved.name,
                "channel": saved.channel,
                "version": saved.version,
                "updated_at": format_timestamp(saved.updated_at),
            }

        return self._operate("set_template", save)

    def get_preference(self, user_id: Any, channel: str) -> OperationResult:
        """The user's choice for a channel; ``explicit`` is False when the default applies."""

        def lookup() -> Dict[str, Any]:
            owner, channel_value = _user_id(user_id), _channel(channel)
            preference = self._require_preferences().get(owner, channel_value)
            if preference is None:
                return {
                    "user_id": owner,
                    "channel": channel_value,
                    "is_enabled": default_allowed(channel_value),
                    "explicit": False,
                }
            return {
                "user_id": owner,
                "channel": channel_value,
                "is_enabled": preference.is_enabled,
                "explicit": True,
                "updated_at": format_timestamp(preference.updated_at),
            }

        return self._operate("get_preference", lookup)

    def set_preference(self, user_id: Any, channel: str, enabled: bool) -> OperationResult:
        def store() -> Dict[str, Any]:
            preference = self._require_preferences().set(_user_id(user_id), _channel(channel), enabled, self.clock())
            return {
                "user_id": preference.user_id,
                "channel": preference.channel,
                "is_enabled": preference.is_enabled,
                "explicit": True,
                "updated_at": format_timestamp(preference.updated_at),
            }

        return self._operate("set_preference", store)

    def health(self) -> HealthReport:
        """Provider and queue health.

        A channel counts as healthy when a configured provider answers, or
        when the environment allows the mock provider.
        """
        email = self.email_adapter.health_check()
        sms = self.sms_adapter.health_check()
        push = self.push_adapter.health_check() if self.push_adapter is not None else {}
        try:
            queues: Dict[str, Any] = {"healthy": True, "lanes": self.lane_stats()}
        except Exception as e:
            _log_internal_error("health", e)
            queues = {"healthy": False, "error": str(e)}

        reports = [email, sms]
        if self.push_adapter is not None and self.push_adapter.configured_providers:
            reports.append(push)
        healthy = all(report["healthy"] or report["mock_fallback"] for report in reports) and queues["healthy"]
        return HealthReport(healthy=healthy, email=email, sms=sms, push=push, queues=queues)

    def _require_inbox(self) -> InAppInbox:
        if self.inbox is None:
            raise RuntimeError("In-app inbox is not configured")
        return self.inbox

    def _require_preferences(self) -> DatabasePreferenceSource:
        if self.preferences is None:
            raise RuntimeError("Preference storage is not configured")
        return self.preferences

    def _operate(self, operation: str, action: Callable[[], Dict[str, Any]]) -> OperationResult:
        try:
            return OperationResult(success=True, data=action())
        except RecordNotFoundError as e:
            return OperationResult(success=False, error=NOT_FOUND, details={"message": str(e)})
        except ValueError as e:
            return OperationResult(success=False, error=VALIDATION_FAILED, details={"message": str(e)})
        except Exception as e:
            _log_internal_error(operation, e)
            return OperationResult(success=False, error=INTERNAL_ERROR, details={"message": str(e)})

    def _enqueue(
        self,
        lane: str,
        job_type: str,
        payload: Dict[str, Any],
        delay_ms: int,
        max_attempts: Optional[int],
    ) -> QueueSubmission:
        try:
            queued = self.engine.enqueue(lane, job_type, payload, delay_ms=delay_ms, max_attempts=max_attempts)
        except JobValidationError as e:
            return QueueSubmission(success=False, error=VALIDATION_FAILED, details={"message": str(e)})
        except Exception as e:
            _log_internal_error("enqueue", e)
            return QueueSubmission(success=False, error=INTERNAL_ERROR, details={"message": str(e)})
        data = queued.to_dict()
        return QueueSubmission(success=True, **data)


def _user_id(value: Any) -> int:
    user_id = normalize_user_id(value)
    if user_id is None:
        raise ValueError(f"user_id must be a positive integer, got {value!r}")
    return user_id


def _channel(value: Any) -> str:
    if value not in SEND_CHANNELS:
        raise ValueError(f"Unsupported channel: {value}")
    return value


def _validate_single(channel: str, recipient: Any, template: Any, channels: Sequence[str]) -> Optional[str]:
    if channel not in channels:
        return f"Unsupported channel: {channel}"
    if channel == Channel.IN_APP.value:
        if normalize_user_id(recipient) is None:
            return "Recipient must be a user id for in-app notifications"
    elif not recipient or not isinstance(recipient, str):
        return "Recipient is required"
    if not template or not isinstance(template, str):
        return "Template is required"
    return None


def _validate_bulk(channels: List[str], recipients: Any, template: Any) -> Optional[str]:
    if not channels:
        return "At least one channel is required"
    for channel in channels:
        if channel not in BULK_CHANNELS:
            return f"Unsupported channel: {channel}"
    if isinstance(recipients, (str, bytes)) or not recipients:
        return "Recipients must be a non-empty list"
    if not template or not isinstance(template, str):
        return "Template is required"
    return None


def _log_internal_error(operation: str, error: Exception) -> None:
    logger.error(
        f"Unexpected error in {operation}: {error}",
        extra={"event": "dispatcher.internal_error", "operation": operation, "error_type": type(error).__name__},
        exc_info=True,
    )
