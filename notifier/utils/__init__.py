"""Shared utilities for the notifier."""

from .masking import mask_email, mask_phone_number, mask_push_token, mask_recipient
from .timestamps import add_ms, ensure_utc, format_timestamp, parse_iso_datetime, to_epoch_ms, utc_now

__all__ = [
    "utc_now",
    "ensure_utc",
    "parse_iso_datetime",
    "format_timestamp",
    "to_epoch_ms",
    "add_ms",
    "mask_phone_number",
    "mask_email",
    "mask_push_token",
    "mask_recipient",
]
