"""Send-now path for email, SMS, push and in-app notifications.

This module provides:
- NotificationService: validate, check preferences, render, deliver, record
- SendOptions: per-send options (user id, queue job id, final attempt)
- NotificationSink: notification records and provider logs
- InAppInbox: a user's in-app notifications (list, read, delete, stats)
- Recipient validation helpers
"""

from .inbox import InAppInbox, InboxPage, parse_category
from .recipients import (
    is_valid_email_address,
    is_valid_phone_number,
    is_valid_push_token,
    normalize_phone_number,
)
from .service import (
    SKIPPED_BY_PREFERENCES,
    VALIDATION_FAILED,
    NotificationService,
    SendOptions,
    truncate_sms,
    truncate_text,
)
from .sink import DeliveryRecord, NotificationSink

__all__ = [
    # Main service
    "NotificationService",
    "SendOptions",
    "truncate_sms",
    "truncate_text",
    "VALIDATION_FAILED",
    "SKIPPED_BY_PREFERENCES",
    # Records
    "NotificationSink",
    "DeliveryRecord",
    # Inbox
    "InAppInbox",
    "InboxPage",
    "parse_category",
    # Validation
    "is_valid_email_address",
    "is_valid_phone_number",
    "is_valid_push_token",
    "normalize_phone_number",
]
