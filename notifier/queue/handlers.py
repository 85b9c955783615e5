"""Job type dispatch for the queue lanes.

Every (lane, job type) pair the lanes accept has exactly one handler;
the table is checked when JobHandlers is built. Handlers turn an
unsuccessful delivery into JobDeliveryError so the queue's backoff drives
retries; payload problems raise NonRetryableJobError.
"""

from typing import Any, Callable, Dict, Mapping, Tuple

from notifier.domain.models import LANE_JOB_TYPES, Channel, Job, JobType, Lane
from notifier.logging import get_logger
from notifier.notifications import NotificationService
from notifier.providers import DeliveryResult

from .bulk import BulkProcessor
from .exceptions import JobDeliveryError, NonRetryableJobError

logger = get_logger(__name__, component="queue")

Handler = Callable[[Job, Dict[str, Any]], Dict[str, Any]]


class JobHandlers:
    """Runs queued jobs against the notification service and bulk processor."""

    def __init__(self, service: NotificationService, bulk: BulkProcessor):
        self.service = service
        self.bulk = bulk
        self.table: Dict[Tuple[str, str], Handler] = self._build_table()

    def _build_table(self) -> Dict[Tuple[str, str], Handler]:
        email, sms, push, bulk = Lane.EMAIL.value, Lane.SMS.value, Lane.PUSH.value, Lane.BULK.value
        table = {
            (email, JobType.TRANSACTIONAL.value): self._send_template,
            (email, JobType.EMAIL_RETRY.value): self._send_template,
            (email, JobType.WELCOME.value): self._welcome_email,
            (email, JobType.PASSWORD_RESET.value): self._password_reset_email,
            (email, JobType.EVENT_CONFIRMATION.value): self._event_confirmation_email,
            (email, JobType.EVENT_NOTIFICATION.value): self._event_notification_email,
            (sms, JobType.TRANSACTIONAL.value): self._send_template,
            (sms, JobType.SMS_RETRY.value): self._send_template,
            (sms, JobType.WELCOME.value): self._welcome_sms,
            (sms, JobType.PASSWORD_RESET.value): self._password_reset_sms,
            (sms, JobType.EVENT_CONFIRMATION.value): self._event_confirmation_sms,
            (sms, JobType.EVENT_REMINDER.value): self._event_reminder_sms,
            (sms, JobType.OTP.value): self._otp_sms,
            (push, JobType.TRANSACTIONAL.value): self._send_template,
            (push, JobType.PUSH_RETRY.value): self._send_template,
            (push, JobType.EVENT_REMINDER.value): self._event_reminder_push,
            (bulk, JobType.BULK_EMAIL.value): self._bulk,
            (bulk, JobType.BULK_SMS.value): self._bulk,
            (bulk, JobType.BULK_PUSH.value): self._bulk,
            (bulk, JobType.BULK.value): self._bulk,
        }

        expected = {(lane.value, job_type.value) for lane, types in LANE_JOB_TYPES.items() for job_type in types}
        missing = expected - set(table)
        if missing:
            raise ValueError(f"No handler for {', '.join(f'{lane}/{t}' for lane, t in sorted(missing))}")
        unrouted = {job_type.value for job_type in JobType} - {job_type for _, job_type in expected}
        if unrouted:
            raise ValueError(f"Job types accepted by no lane: {', '.join(sorted(unrouted))}")
        return table

    def processors(self) -> Dict[str, Callable[[Job], Dict[str, Any]]]:
        """Lane processors for JobQueueEngine."""
        return {lane.value: self.process for lane in Lane}

    def process(self, job: Job) -> Dict[str, Any]:
        """Run one attempt of a job.

        Raises:
            NonRetryableJobError: Unknown type for the lane or unusable payload
            JobDeliveryError: The send returned an unsuccessful result
        """
        handler = self.table.get((job.lane, job.type))
        if handler is None:
            raise NonRetryableJobError(f"No handler for {job.type} on lane {job.lane}")

        options = dict(job.payload.get("options") or {})
        options["job_id"] = job.id
        options["final_attempt"] = job.attempts_made + 1 >= job.max_attempts
        return handler(job, options)

    # Single-recipient handlers

    def _send_template(self, job: Job, options: Dict[str, Any]) -> Dict[str, Any]:
        template = _require(job, "template")
        result = self.service.send(job.lane, _recipient(job), template, job.payload.get("data") or {}, options)
        return _check(job, result)

    def _welcome_email(self, job: Job, options: Dict[str, Any]) -> Dict[str, Any]:
        result = self.service.send_welcome_email(
            _recipient(job), _mapping(job, "user"), options, login_url=job.payload.get("login_url")
        )
        return _check(job, result)

    def _password_reset_email(self, job: Job, options: Dict[str, Any]) -> Dict[str, Any]:
        kwargs = _pick(job.payload, "reset_url", "expires_in")
        result = self.service.send_password_reset_email(_recipient(job), _require(job, "reset_token"), options, **kwargs)
        return _check(job, result)

    def _event_confirmation_email(self, job: Job, options: Dict[str, Any]) -> Dict[str, Any]:
        result = self.service.send_event_confirmation_email(
            _recipient(job),
            _mapping(job, "event"),
            _mapping(job, "ticket"),
            options,
            view_ticket_url=job.payload.get("view_ticket_url"),
        )
        return _check(job, result)

    def _event_notification_email(self, job: Job, options: Dict[str, Any]) -> Dict[str, Any]:
        kwargs = _pick(job.payload, "notification_type")
        result = self.service.send_event_notification_email(_recipient(job), _mapping(job, "event"), options, **kwargs)
        return _check(job, result)

    def _welcome_sms(self, job: Job, options: Dict[str, Any]) -> Dict[str, Any]:
        return _check(job, self.service.send_welcome_sms(_recipient(job), _mapping(job, "user"), options))

    def _password_reset_sms(self, job: Job, options: Dict[str, Any]) -> Dict[str, Any]:
        kwargs = _pick(job.payload, "expires_in")
        result = self.service.send_password_reset_sms(_recipient(job), _require(job, "reset_code"), options, **kwargs)
        return _check(job, result)

    def _event_confirmation_sms(self, job: Job, options: Dict[str, Any]) -> Dict[str, Any]:
        result = self.service.send_event_confirmation_sms(
            _recipient(job), _mapping(job, "event"), _mapping(job, "ticket"), options
        )
        return _check(job, result)

    def _event_reminder_sms(self, job: Job, options: Dict[str, Any]) -> Dict[str, Any]:
        kwargs = _pick(job.payload, "time")
        result = self.service.send_event_reminder_sms(_recipient(job), _mapping(job, "event"), options, **kwargs)
        return _check(job, result)

    def _otp_sms(self, job: Job, options: Dict[str, Any]) -> Dict[str, Any]:
        kwargs = _pick(job.payload, "purpose", "expires_in")
        result = self.service.send_otp_sms(_recipient(job), _require(job, "otp_code"), options=options, **kwargs)
        return _check(job, result)

    def _event_reminder_push(self, job: Job, options: Dict[str, Any]) -> Dict[str, Any]:
        result = self.service.send_event_reminder_push(
            _recipient(job), _mapping(job, "event"), _require(job, "time_until_start"), options
        )
        return _check(job, result)

    # Bulk

    def _bulk(self, job: Job, options: Dict[str, Any]) -> Dict[str, Any]:
        """Fan out a bulk job.

        Completes with the aggregate result even when some recipients
        failed, so recipients that were already served are never resent.
        """
        recipients = job.payload.get("recipients")
        if not isinstance(recipients, list) or not recipients:
            raise NonRetryableJobError("Bulk job needs a non-empty recipients list")

        options.pop("job_id", None)
        options.pop("final_attempt", None)
        try:
            result = self.bulk.process_bulk(
                recipients,
                _require(job, "template"),
                job.payload.get("data") or {},
                options,
                channels=_bulk_channels(job),
            )
        except ValueError as e:
            raise NonRetryableJobError(str(e)) from e
        return result.to_dict()


def _bulk_channels(job: Job) -> Tuple[str, ...]:
    if job.type == JobType.BULK_EMAIL.value:
        return (Channel.EMAIL.value,)
    if job.type == JobType.BULK_SMS.value:
        return (Channel.SMS.value,)
    if job.type == JobType.BULK_PUSH.value:
        return (Channel.PUSH.value,)
    channels = job.payload.get("channels") or job.payload.get("channel") or Channel.EMAIL.value
    if isinstance(channels, str):
        return (channels,)
    return tuple(channels)


def _recipient(job: Job) -> str:
    for key in ("recipient", "to", "phone_number", "token"):
        value = job.payload.get(key)
        if value:
            return value
    raise NonRetryableJobError(f"Job {job.id} has no recipient")


def _require(job: Job, key: str) -> Any:
    value = job.payload.get(key)
    if value in (None, ""):
        raise NonRetryableJobError(f"Job {job.id} payload is missing '{key}'")
    return value


def _mapping(job: Job, key: str) -> Mapping[str, Any]:
    value = job.payload.get(key) or {}
    if not isinstance(value, Mapping):
        raise NonRetryableJobError(f"Job {job.id} payload field '{key}' must be an object")
    return value


def _pick(payload: Mapping[str, Any], *keys: str) -> Dict[str, Any]:
    return {key: payload[key] for key in keys if payload.get(key) is not None}


def _check(job: Job, result: DeliveryResult) -> Dict[str, Any]:
    if not result.success:
        raise JobDeliveryError(
            result.error or "Delivery failed",
            retryable=result.retryable,
            result=result.to_dict(),
        )
    if result.skipped:
        logger.info(
            f"Job {job.id} skipped by user preferences",
            extra={"event": "queue.job.skipped", "reason": result.reason},
        )
    return result.to_dict()
