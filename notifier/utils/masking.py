"""Masking helpers for recipient data written to logs."""

import re

_PHONE_FORMATTING_RE = re.compile(r"[\s\-().]")


def mask_phone_number(phone_number: str) -> str:
    """Keep the first three and last two characters.

    Example:
        >>> mask_phone_number("+33612345689")
        '+33***89'
    """
    if not phone_number:
        return ""
    cleaned = _PHONE_FORMATTING_RE.sub("", phone_number)
    if len(cleaned) <= 5:
        return "***"
    return f"{cleaned[:3]}***{cleaned[-2:]}"


def mask_email(address: str) -> str:
    """Keep the first character of the local part and the domain.

    Example:
        >>> mask_email("jane.doe@example.com")
        'j***@example.com'
    """
    if not address or "@" not in address:
        return "***"
    local, _, domain = address.partition("@")
    return f"{local[:1]}***@{domain}"


def mask_push_token(token: str) -> str:
    """Keep the first and last ten characters of a device token.

    Example:
        >>> mask_push_token("ExponentPushToken[xxxxxxxxxxxxxxxxxxxxxx]")
        'ExponentPu...xxxxxxxxx]'
    """
    if not token:
        return ""
    if len(token) <= 20:
        return "***"
    return f"{token[:10]}...{token[-10:]}"


def mask_recipient(channel: str, recipient: str) -> str:
    """Mask an email address, phone number or device token depending on the channel."""
    if channel == "sms":
        return mask_phone_number(recipient)
    if channel == "push":
        return mask_push_token(recipient)
    return mask_email(recipient)
