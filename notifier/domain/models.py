"""Core domain models for jobs, notifications, templates and preferences.

This module defines the data structures used throughout the application:
- Job: a unit of queued work living in one lane
- Notification / NotificationLog: delivery records for user-facing messages;
  in-app notifications are Notification rows on the in_app channel
- Template: a stored template keyed by (name, channel)
- Preference: a user's opt-in state for a channel
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..utils.timestamps import ensure_utc, format_timestamp


class Channel(str, Enum):
    """Delivery channels."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"


class Lane(str, Enum):
    """Queue lanes, each with its own workers."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    BULK = "bulk"


class JobState(str, Enum):
    """Lifecycle states of a queued job."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(str, Enum):
    """Kinds of work a job can carry."""

    TRANSACTIONAL = "transactional"
    WELCOME = "welcome"
    PASSWORD_RESET = "password-reset"
    EVENT_CONFIRMATION = "event-confirmation"
    EVENT_NOTIFICATION = "event-notification"
    EVENT_REMINDER = "event-reminder"
    OTP = "otp"
    BULK_EMAIL = "bulk-email"
    BULK_SMS = "bulk-sms"
    BULK_PUSH = "bulk-push"
    BULK = "bulk"
    EMAIL_RETRY = "email-retry"
    SMS_RETRY = "sms-retry"
    PUSH_RETRY = "push-retry"


class InAppCategory(str, Enum):
    """Kinds of in-app notification, used for filtering and counts."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class NotificationStatus(str, Enum):
    """Delivery state of a notification record."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# Job types each lane accepts
LANE_JOB_TYPES: Dict[Lane, FrozenSet[JobType]] = {
    Lane.EMAIL: frozenset(
        {
            JobType.TRANSACTIONAL,
            JobType.WELCOME,
            JobType.PASSWORD_RESET,
            JobType.EVENT_CONFIRMATION,
            JobType.EVENT_NOTIFICATION,
            JobType.EMAIL_RETRY,
        }
    ),
    Lane.SMS: frozenset(
        {
            JobType.TRANSACTIONAL,
            JobType.WELCOME,
            JobType.PASSWORD_RESET,
            JobType.EVENT_CONFIRMATION,
            JobType.EVENT_REMINDER,
            JobType.OTP,
            JobType.SMS_RETRY,
        }
    ),
    Lane.PUSH: frozenset({JobType.TRANSACTIONAL, JobType.EVENT_REMINDER, JobType.PUSH_RETRY}),
    Lane.BULK: frozenset({JobType.BULK_EMAIL, JobType.BULK_SMS, JobType.BULK_PUSH, JobType.BULK}),
}

# Templates that bypass preference checks and notification records
SYSTEM_TEMPLATES: Dict[str, FrozenSet[str]] = {
    Channel.EMAIL.value: frozenset(
        {
            "welcome",
            "account-activated",
            "account-suspended",
            "email-verification",
            "password-reset",
            "password-changed",
            "security-alert",
            "payment-confirmation",
            "payment-failed",
            "refund-processed",
            "fraud-detected",
            "daily-scan-report",
        }
    ),
    Channel.SMS.value: frozenset({"otp", "security-alert", "password-reset", "payment-confirmation"}),
}


def is_system_template(template_name: str, channel: str) -> bool:
    """Check whether a template is a system template for a channel."""
    return template_name in SYSTEM_TEMPLATES.get(channel, frozenset())


def _utc(v: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(v)


class Job(BaseModel):
    """A queued unit of work.

    Jobs are created waiting, claimed into active by exactly one worker,
    and finish completed or failed. A cancelled job is deleted outright.
    """

    id: str = Field(..., description="job_<epoch-ms>_<16 hex>")
    lane: Lane
    type: JobType
    payload: Dict[str, Any] = Field(default_factory=dict)
    state: JobState = JobState.WAITING
    attempts_made: int = Field(0, ge=0)
    max_attempts: int = Field(3, ge=1)
    backoff_base_ms: int = Field(2000, ge=0)
    stalled_count: int = Field(0, ge=0)
    created_at: datetime
    run_at: datetime
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None
    lock_token: Optional[str] = None
    failed_reason: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    @field_validator("created_at", "run_at", "processed_at", "finished_at", "locked_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetimes are timezone-aware UTC."""
        return _utc(v)

    model_config = {"use_enum_values": True}

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view of the job for status queries."""
        return {
            "id": self.id,
            "lane": self.lane,
            "type": self.type,
            "data": self.payload,
            "state": self.state,
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "created_at": format_timestamp(self.created_at),
            "run_at": format_timestamp(self.run_at),
            "processed_at": format_timestamp(self.processed_at),
            "finished_at": format_timestamp(self.finished_at),
            "failed_reason": self.failed_reason,
            "result": self.result,
        }


class Notification(BaseModel):
    """A user-facing notification and its delivery status."""

    id: Optional[int] = None
    user_id: Optional[int] = None
    template_name: str
    channel: Channel
    subject: Optional[str] = None
    content: Optional[str] = None
    status: NotificationStatus = NotificationStatus.PENDING
    job_id: Optional[str] = None
    category: Optional[InAppCategory] = None
    sent_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("sent_at", "read_at", "created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetimes are timezone-aware UTC."""
        return _utc(v)

    model_config = {"use_enum_values": True}

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view, as listed in a user's inbox."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "template": self.template_name,
            "channel": self.channel,
            "category": self.category,
            "title": self.subject,
            "message": self.content,
            "status": self.status,
            "read": self.is_read,
            "sent_at": format_timestamp(self.sent_at),
            "read_at": format_timestamp(self.read_at),
            "created_at": format_timestamp(self.created_at),
        }


class NotificationLog(BaseModel):
    """One provider interaction recorded against a notification."""

    id: Optional[int] = None
    notification_id: int
    provider: Optional[str] = None
    response: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class Template(BaseModel):
    """A stored template; unique on (name, channel)."""

    id: Optional[int] = None
    name: str = Field(..., min_length=1)
    channel: Channel
    subject_template: Optional[str] = None
    body_template: str
    variables: List[str] = Field(default_factory=list)
    version: int = Field(1, ge=1)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        """Strip whitespace from the template name."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("Template name cannot be empty or whitespace-only")
        return stripped

    model_config = {"use_enum_values": True}


class Preference(BaseModel):
    """Whether a user accepts messages on a channel."""

    user_id: int = Field(..., gt=0)
    channel: Channel
    is_enabled: bool = True
    updated_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}
