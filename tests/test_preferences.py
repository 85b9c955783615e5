"""Unit tests for the preference gate."""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from notifier.domain.models import Preference
from notifier.persistence import PreferenceRepository
from notifier.preferences import DatabasePreferenceSource, PreferenceGate, default_allowed, normalize_user_id

from tests.helpers import make_database

NOW = datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc)


class TestNormalizeUserId:
    """Tests for user id normalization."""

    @pytest.mark.parametrize("raw,expected", [(42, 42), ("42", 42), (" 7 ", 7)])
    def test_valid(self, raw, expected):
        assert normalize_user_id(raw) == expected

    @pytest.mark.parametrize("raw", [None, 0, -3, "0", "abc", "4.2", 4.0, True, False, [], ""])
    def test_invalid(self, raw):
        assert normalize_user_id(raw) is None


class TestPreferenceGate:
    """Tests for PreferenceGate decisions with a mock source."""

    def gate(self, preference=None, error=None):
        source = Mock()
        if error is not None:
            source.get.side_effect = error
        else:
            source.get.return_value = preference
        return PreferenceGate(source), source

    def test_no_user_id_uses_channel_default(self):
        """Test that anonymous sends get email but not SMS."""
        gate, source = self.gate()

        email = gate.should_send(None, "email")
        sms = gate.should_send("not-a-number", "sms")

        assert (email.should_send, email.reason) == (True, "no_user_id")
        assert (sms.should_send, sms.reason) == (False, "no_user_id")
        source.get.assert_not_called()

    def test_default_preferences(self):
        """Test defaults when the user has no stored row."""
        gate, source = self.gate(preference=None)

        assert gate.should_send(5, "email").should_send is True
        assert gate.should_send(5, "push").should_send is True
        decision = gate.should_send("5", "sms")

        assert (decision.should_send, decision.reason) == (False, "default_preferences")
        source.get.assert_called_with(5, "sms")

    def test_enabled_row(self):
        gate, _ = self.gate(Preference(user_id=5, channel="sms", is_enabled=True))

        decision = gate.should_send(5, "sms")

        assert (decision.should_send, decision.reason) == (True, "allowed")

    def test_disabled_row(self):
        gate, _ = self.gate(Preference(user_id=5, channel="email", is_enabled=False))

        decision = gate.should_send(5, "email")

        assert (decision.should_send, decision.reason) == (False, "channel_disabled")

    def test_lookup_error_allows(self):
        """Test that a failing store never blocks delivery."""
        gate, _ = self.gate(error=RuntimeError("database is locked"))

        decision = gate.should_send(5, "sms")

        assert (decision.should_send, decision.reason) == (True, "error_fallback")


class TestDatabasePreferenceSource:
    """Tests for the database-backed source."""

    def test_reads_stored_rows(self, tmp_path):
        database = make_database(tmp_path)
        with database.session() as session:
            PreferenceRepository(session).set(9, "sms", True, NOW)
        gate = PreferenceGate(DatabasePreferenceSource(database))

        assert gate.should_send(9, "sms").reason == "allowed"
        assert gate.should_send(9, "email").reason == "default_preferences"
        database.close()

    def test_set_replaces_choice(self, tmp_path):
        """Test that set writes and then overwrites one row per (user, channel)."""
        database = make_database(tmp_path)
        source = DatabasePreferenceSource(database)

        source.set(9, "push", False, NOW)
        stored = source.set(9, "push", True, NOW)

        assert stored.is_enabled is True
        assert source.get(9, "push").is_enabled is True
        database.close()


@pytest.mark.parametrize("channel,expected", [("email", True), ("sms", False), ("push", True), ("in_app", True)])
def test_default_allowed(channel, expected):
    assert default_allowed(channel) is expected
