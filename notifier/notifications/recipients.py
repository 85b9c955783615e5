"""Recipient validation for the send path."""

import re
from typing import Optional

from email_validator import EmailNotValidError, validate_email

_PHONE_FORMATTING_RE = re.compile(r"[\s\-()]")
_E164_RE = re.compile(r"^\+?[1-9]\d{1,14}$")
MAX_PUSH_TOKEN_LENGTH = 4096


def normalize_phone_number(phone_number: Optional[str]) -> str:
    """Strip spaces, dashes and parentheses from a phone number."""
    if not phone_number:
        return ""
    return _PHONE_FORMATTING_RE.sub("", phone_number.strip())


def is_valid_phone_number(phone_number: Optional[str]) -> bool:
    """Check a phone number against the international (E.164) pattern.

    Example:
        >>> is_valid_phone_number("+33 6 12 34 56 89")
        True
        >>> is_valid_phone_number("0012")
        False
    """
    return bool(_E164_RE.match(normalize_phone_number(phone_number)))


def is_valid_email_address(address: Optional[str]) -> bool:
    """Syntax check of an email address, without DNS lookups."""
    if not address or not isinstance(address, str):
        return False
    try:
        validate_email(address.strip(), check_deliverability=False)
        return True
    except EmailNotValidError:
        return False


def is_valid_push_token(token: Optional[str]) -> bool:
    """Device tokens are opaque; reject only empty, whitespace-bearing or oversized ones."""
    if not token or not isinstance(token, str):
        return False
    return len(token) <= MAX_PUSH_TOKEN_LENGTH and not any(char.isspace() for char in token)
