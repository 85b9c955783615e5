"""Integration tests for immediate sends, stored templates and health."""

from datetime import datetime, timezone

import pytest

from notifier.bootstrap import build_application
from notifier.config.environment import EnvironmentConfig
from notifier.config.models import AppConfig
from notifier.domain.models import Template
from notifier.persistence import NotificationRepository, PreferenceRepository, TemplateRepository
from notifier.providers import ProviderSendAdapter

from tests.helpers import FakeClock, FakeTransport, make_database

NOW = datetime(2025, 11, 1, tzinfo=timezone.utc)


@pytest.fixture
def smtp():
    return FakeTransport("smtp", "email")


@pytest.fixture
def sendgrid():
    return FakeTransport("sendgrid", "email")


@pytest.fixture
def twilio():
    return FakeTransport("twilio", "sms")


@pytest.fixture
def fcm():
    return FakeTransport("fcm", "push")


@pytest.fixture
def app(tmp_path, smtp, sendgrid, twilio, fcm):
    application = build_application(
        AppConfig(),
        EnvironmentConfig(environment="production", from_email="noreply@example.com"),
        database=make_database(tmp_path),
        email_adapter=ProviderSendAdapter("email", [smtp, sendgrid]),
        sms_adapter=ProviderSendAdapter("sms", [twilio]),
        push_adapter=ProviderSendAdapter("push", [fcm]),
        clock=FakeClock(),
    )
    yield application
    application.close()


class TestSendNow:
    """dispatcher.send_now end to end."""

    def test_stored_template_wins_over_default(self, app, smtp):
        """Test that a template stored in the database is rendered first."""
        with app.database.session() as session:
            TemplateRepository(session).upsert(
                Template(
                    name="welcome",
                    channel="email",
                    subject_template="Hello {{user.firstName}}",
                    body_template="<p>Stored welcome for {{user.firstName}}</p>",
                ),
                NOW,
            )

        result = app.dispatcher.send_now(
            "email", "ana@example.com", "welcome", {"user": {"firstName": "Ana"}}, {"user_id": 3}
        )

        assert result.success
        assert smtp.sent[0].subject == "Hello Ana"
        assert smtp.sent[0].html == "<p>Stored welcome for Ana</p>"

    def test_failover_recorded_with_provider(self, app, smtp, sendgrid):
        smtp.fail = True

        result = app.dispatcher.send_now("email", "ana@example.com", "promo", {}, {"user_id": 3})

        assert result.success
        assert result.provider == "sendgrid"
        with app.database.session() as session:
            repo = NotificationRepository(session)
            notification = repo.get(result.notification_id)
            logs = repo.get_logs(notification.id)
        assert notification.status == "sent"
        assert logs[0].provider == "sendgrid"
        assert logs[0].response["success"] is True

    def test_opt_in_enables_sms(self, app, twilio):
        """Test that a stored preference overrides the SMS opt-out default."""
        with app.database.session() as session:
            PreferenceRepository(session).set(3, "sms", True, NOW)

        result = app.dispatcher.send_now(
            "sms", "+33612345678", "event-reminder", {"event": {"title": "Gala", "time": "20:00"}}, {"user_id": 3}
        )

        assert result.success
        assert not result.skipped
        assert "Gala" in twilio.sent[0].body

    def test_opt_out_skips_email(self, app, smtp):
        with app.database.session() as session:
            PreferenceRepository(session).set(3, "email", False, NOW)

        result = app.dispatcher.send_now("email", "ana@example.com", "promo", {}, {"user_id": 3})

        assert result.success
        assert result.skipped
        assert smtp.sent == []

    def test_inline_bulk_across_channels(self, app, smtp, twilio):
        """Test per-delivery counts: a missing phone fails, SMS without opt-in is skipped."""
        recipients = [
            {"email": "ana@example.com", "phone": "+33612345678"},
            {"email": "bob@example.com"},
        ]

        result = app.dispatcher.send_bulk(["email", "sms"], recipients, "newsletter", inline=True)

        assert (result.sent, result.failed, result.skipped, result.total) == (3, 1, 1, 4)
        assert result.errors[0]["error"] == "No sms address"
        assert len(smtp.sent) == 2
        assert twilio.sent == []


class TestPushAndInApp:
    """Push sends, the in-app inbox and stored settings end to end."""

    def test_push_with_stored_template(self, app, fcm):
        """Test that a template stored through the dispatcher is used for push."""
        stored = app.dispatcher.set_template("promo", "push", "{{deal}} today only", subject="Sale at {{shop}}")
        assert stored.success

        result = app.dispatcher.send_now("push", "ExponentPushToken[abc]", "promo", {"deal": "50%", "shop": "Acme"})

        assert result.success
        assert (fcm.sent[0].title, fcm.sent[0].body) == ("Sale at Acme", "50% today only")
        assert app.dispatcher.set_template("promo", "push", "x").data["version"] == 2

    def test_inbox_round_trip(self, app):
        """Test send -> list -> mark read -> stats for one user."""
        sent = app.dispatcher.send_now(
            "in_app", 42, "payment-success", {"amount": 30}, {"category": "success"}
        )
        app.dispatcher.send_now("in_app", "42", "mystery", {"title": "Hi", "message": "Hello"})

        listing = app.dispatcher.list_inbox(42)
        assert listing.data["pagination"]["total"] == 2
        assert listing.data["notifications"][1]["message"] == "Your payment of 30€ has been confirmed"

        assert app.dispatcher.mark_read(sent.notification_id, 7).error == "not_found"
        assert app.dispatcher.mark_read(sent.notification_id, 42).data["read"] is True

        stats = app.dispatcher.inbox_stats(42).data
        assert (stats["total"], stats["unread"]) == (2, 1)
        assert stats["by_category"]["success"] == 1

    def test_preference_disables_in_app(self, app):
        app.dispatcher.set_preference(42, "in_app", False)

        result = app.dispatcher.send_now("in_app", 42, "welcome")

        assert result.skipped
        assert app.dispatcher.get_preference(42, "in_app").data["is_enabled"] is False
        assert app.dispatcher.list_inbox(42).data["pagination"]["total"] == 0


class TestHealth:
    """Health report across adapters and the queue."""

    def test_all_healthy(self, app):
        app.dispatcher.send_later("email", "ana@example.com", "promo")

        report = app.dispatcher.health()

        assert report.healthy
        assert report.queues["lanes"]["email"]["waiting"] == 1
        assert report.email["providers"]["smtp"]["status"] == "healthy"

    def test_channel_down_without_mock(self, app, twilio):
        """Test that production reports unhealthy when every SMS provider is down."""
        twilio.healthy = False

        report = app.dispatcher.health()

        assert not report.healthy
        assert report.sms["providers"]["twilio"]["status"] == "unhealthy"
