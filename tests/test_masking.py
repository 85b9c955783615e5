"""Unit tests for recipient masking helpers."""

import pytest

from notifier.utils.masking import mask_email, mask_phone_number, mask_push_token, mask_recipient


class TestMaskPhoneNumber:
    """Tests for mask_phone_number."""

    def test_keeps_prefix_and_suffix(self):
        """Test that only the first three and last two characters survive."""
        assert mask_phone_number("+33612345689") == "+33***89"

    def test_ignores_formatting(self):
        """Test that spaces, dashes and parentheses are removed first."""
        assert mask_phone_number("+1 (555) 010-9999") == "+15***99"

    @pytest.mark.parametrize("value", ["", "12345"])
    def test_short_values(self, value):
        """Test that short or empty values are fully hidden."""
        expected = "" if value == "" else "***"
        assert mask_phone_number(value) == expected


class TestMaskEmail:
    """Tests for mask_email."""

    def test_keeps_first_character_and_domain(self):
        """Test the masked form of a normal address."""
        assert mask_email("jane.doe@example.com") == "j***@example.com"

    def test_invalid_address(self):
        """Test that values without @ are fully hidden."""
        assert mask_email("not-an-address") == "***"
        assert mask_email("") == "***"


class TestMaskPushToken:
    """Tests for mask_push_token."""

    def test_keeps_both_ends(self):
        assert mask_push_token("ExponentPushToken[abcdefghijklmnop]") == "ExponentPu...ghijklmnop]"

    @pytest.mark.parametrize("value,expected", [("", ""), ("short-token", "***"), ("x" * 20, "***")])
    def test_short_values(self, value, expected):
        assert mask_push_token(value) == expected


def test_mask_recipient_by_channel():
    """Test that mask_recipient picks the helper from the channel."""
    assert mask_recipient("sms", "+33612345689") == "+33***89"
    assert mask_recipient("email", "jane@example.com") == "j***@example.com"
    assert mask_recipient("push", "ExponentPushToken[abcdefghijklmnop]").startswith("ExponentPu...")
