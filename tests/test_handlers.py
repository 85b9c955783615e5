"""Unit tests for queue job handlers."""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from notifier.domain.models import Job
from notifier.providers import DeliveryResult
from notifier.queue import BulkResult, JobDeliveryError, JobHandlers, NonRetryableJobError

NOW = datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc)
EVENT = {"title": "Gala", "date": "2025-12-01"}


def make_job(lane, job_type, payload, attempts_made=0, max_attempts=3):
    return Job(
        id="job_1762257600000_0123456789abcdef",
        lane=lane,
        type=job_type,
        payload=payload,
        attempts_made=attempts_made,
        max_attempts=max_attempts,
        created_at=NOW,
        run_at=NOW,
    )


@pytest.fixture
def service():
    service = Mock()
    ok = DeliveryResult(success=True, provider="fake", message_id="m-1")
    for name in (
        "send",
        "send_welcome_email",
        "send_password_reset_email",
        "send_event_confirmation_email",
        "send_event_notification_email",
        "send_welcome_sms",
        "send_password_reset_sms",
        "send_event_confirmation_sms",
        "send_event_reminder_sms",
        "send_otp_sms",
        "send_event_reminder_push",
    ):
        getattr(service, name).return_value = ok
    return service


@pytest.fixture
def bulk():
    return Mock()


@pytest.fixture
def handlers(service, bulk):
    return JobHandlers(service, bulk)


class TestRouting:
    """Tests for the handler table."""

    def test_processors_cover_all_lanes(self, handlers):
        assert set(handlers.processors()) == {"email", "sms", "push", "bulk"}
        assert len(handlers.table) == 20

    def test_options_carry_job_id_and_final_attempt(self, handlers, service):
        """Test that the send sees the job id and whether a retry is left."""
        job = make_job(
            "email",
            "transactional",
            {"recipient": "ana@example.com", "template": "promo", "data": {"a": 1}, "options": {"user_id": 7}},
            attempts_made=2,
        )

        result = handlers.process(job)

        service.send.assert_called_once_with(
            "email",
            "ana@example.com",
            "promo",
            {"a": 1},
            {"user_id": 7, "job_id": job.id, "final_attempt": True},
        )
        assert result == {"success": True, "provider": "fake", "message_id": "m-1"}

    def test_not_final_attempt(self, handlers, service):
        job = make_job("sms", "sms-retry", {"to": "+33612345678", "template": "promo"})

        handlers.process(job)

        assert service.send.call_args.args[4]["final_attempt"] is False


class TestTypedHandlers:
    """Tests for typed job payloads."""

    def test_welcome_email(self, handlers, service):
        job = make_job("email", "welcome", {"recipient": "ana@example.com", "user": {"firstName": "Ana"}})

        handlers.process(job)

        args, kwargs = service.send_welcome_email.call_args
        assert args[:2] == ("ana@example.com", {"firstName": "Ana"})
        assert kwargs == {"login_url": None}

    def test_password_reset_email(self, handlers, service):
        job = make_job(
            "email", "password-reset", {"recipient": "ana@example.com", "reset_token": "tok", "expires_in": "2 hours"}
        )

        handlers.process(job)

        args, kwargs = service.send_password_reset_email.call_args
        assert args[:2] == ("ana@example.com", "tok")
        assert kwargs == {"expires_in": "2 hours"}

    def test_otp_sms(self, handlers, service):
        job = make_job("sms", "otp", {"phone_number": "+33612345678", "otp_code": "123456", "purpose": "login"})

        handlers.process(job)

        args, kwargs = service.send_otp_sms.call_args
        assert args == ("+33612345678", "123456")
        assert kwargs["purpose"] == "login"
        assert kwargs["options"]["job_id"] == job.id

    def test_event_handlers(self, handlers, service):
        handlers.process(make_job("email", "event-confirmation", {"recipient": "a@b.co", "event": EVENT, "ticket": {"id": 1}}))
        handlers.process(make_job("email", "event-notification", {"recipient": "a@b.co", "event": EVENT}))
        handlers.process(make_job("sms", "event-reminder", {"recipient": "+33612345678", "event": EVENT, "time": "19:00"}))
        handlers.process(make_job("sms", "event-confirmation", {"recipient": "+33612345678", "event": EVENT}))

        assert service.send_event_confirmation_email.call_args.args[2] == {"id": 1}
        assert service.send_event_notification_email.called
        assert service.send_event_reminder_sms.call_args.kwargs == {"time": "19:00"}
        assert service.send_event_confirmation_sms.call_args.args[2] == {}

    def test_sms_welcome_and_reset(self, handlers, service):
        handlers.process(make_job("sms", "welcome", {"recipient": "+33612345678", "user": {"name": "Bo"}}))
        handlers.process(make_job("sms", "password-reset", {"recipient": "+33612345678", "reset_code": "9876"}))

        assert service.send_welcome_sms.call_args.args[1] == {"name": "Bo"}
        assert service.send_password_reset_sms.call_args.args[1] == "9876"

    def test_event_reminder_push(self, handlers, service):
        job = make_job(
            "push",
            "event-reminder",
            {"token": "ExponentPushToken[abc]", "event": EVENT, "time_until_start": "2 hours"},
        )

        handlers.process(job)

        args = service.send_event_reminder_push.call_args.args
        assert args[:3] == ("ExponentPushToken[abc]", EVENT, "2 hours")
        assert args[3]["job_id"] == job.id

    def test_push_transactional(self, handlers, service):
        handlers.process(make_job("push", "push-retry", {"token": "ExponentPushToken[abc]", "template": "welcome"}))

        assert service.send.call_args.args[:3] == ("push", "ExponentPushToken[abc]", "welcome")


class TestFailures:
    """Tests for errors raised to the queue."""

    def test_missing_recipient(self, handlers):
        with pytest.raises(NonRetryableJobError, match="has no recipient"):
            handlers.process(make_job("email", "transactional", {"template": "promo"}))

    def test_missing_required_field(self, handlers):
        with pytest.raises(NonRetryableJobError, match="'otp_code'"):
            handlers.process(make_job("sms", "otp", {"recipient": "+33612345678"}))

    def test_non_mapping_field(self, handlers):
        with pytest.raises(NonRetryableJobError, match="must be an object"):
            handlers.process(make_job("email", "welcome", {"recipient": "a@b.co", "user": "Ana"}))

    def test_unhandled_lane_type(self, handlers):
        with pytest.raises(NonRetryableJobError, match="No handler"):
            handlers.process(make_job("email", "otp", {"recipient": "a@b.co"}))

    def test_unsuccessful_delivery(self, handlers, service):
        """Test that a failed send becomes JobDeliveryError with its retry flag."""
        service.send.return_value = DeliveryResult(success=False, error="All email providers failed", retryable=True)

        with pytest.raises(JobDeliveryError) as exc_info:
            handlers.process(make_job("email", "transactional", {"recipient": "a@b.co", "template": "promo"}))

        assert exc_info.value.retryable is True
        assert exc_info.value.result["error"] == "All email providers failed"

    def test_validation_failure_not_retryable(self, handlers, service):
        service.send.return_value = DeliveryResult(success=False, error="validation_failed", retryable=False)

        with pytest.raises(JobDeliveryError) as exc_info:
            handlers.process(make_job("email", "transactional", {"recipient": "nope", "template": "promo"}))

        assert exc_info.value.retryable is False

    def test_skipped_is_success(self, handlers, service):
        service.send.return_value = DeliveryResult(success=True, skipped=True, reason="user_preferences")

        result = handlers.process(make_job("sms", "transactional", {"recipient": "+33612345678", "template": "promo"}))

        assert result["skipped"] is True


class TestBulkHandler:
    """Tests for bulk jobs."""

    def bulk_result(self, success=True):
        failed = 0 if success else 1
        return BulkResult(
            success=success,
            sent=1,
            failed=failed,
            skipped=0,
            total=1 + failed,
            errors=[],
            processed_at=NOW,
            chunks=1,
        )

    @pytest.mark.parametrize(
        "job_type,payload,channels",
        [
            ("bulk-email", {}, ("email",)),
            ("bulk-sms", {}, ("sms",)),
            ("bulk-push", {}, ("push",)),
            ("bulk", {"channels": ["email", "sms"]}, ("email", "sms")),
            ("bulk", {"channel": "sms"}, ("sms",)),
            ("bulk", {}, ("email",)),
        ],
    )
    def test_channels(self, handlers, bulk, job_type, payload, channels):
        bulk.process_bulk.return_value = self.bulk_result()
        job = make_job("bulk", job_type, {"recipients": ["a@b.co"], "template": "news", **payload})

        handlers.process(job)

        assert bulk.process_bulk.call_args.kwargs["channels"] == channels

    def test_partial_failure_completes(self, handlers, bulk):
        """Test that a bulk job with failed recipients still completes."""
        bulk.process_bulk.return_value = self.bulk_result(success=False)
        job = make_job(
            "bulk", "bulk-email", {"recipients": ["a@b.co", "c@d.co"], "template": "news", "options": {"reply_to": "x@y.co"}}
        )

        result = handlers.process(job)

        assert result["success"] is False
        assert result["failed"] == 1
        assert bulk.process_bulk.call_args.args[3] == {"reply_to": "x@y.co"}

    def test_empty_recipients(self, handlers):
        with pytest.raises(NonRetryableJobError, match="non-empty recipients"):
            handlers.process(make_job("bulk", "bulk-email", {"recipients": [], "template": "news"}))

    def test_invalid_channel(self, handlers, bulk):
        bulk.process_bulk.side_effect = ValueError("Unsupported bulk channel: fax")

        with pytest.raises(NonRetryableJobError, match="fax"):
            handlers.process(make_job("bulk", "bulk", {"recipients": ["a"], "template": "news", "channels": ["fax"]}))
