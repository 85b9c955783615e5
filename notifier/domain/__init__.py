"""Domain models for the notifier."""

from .models import (
    LANE_JOB_TYPES,
    SYSTEM_TEMPLATES,
    Channel,
    InAppCategory,
    Job,
    JobState,
    JobType,
    Lane,
    Notification,
    NotificationLog,
    NotificationStatus,
    Preference,
    Template,
    is_system_template,
)

__all__ = [
    "Channel",
    "Lane",
    "JobState",
    "JobType",
    "NotificationStatus",
    "InAppCategory",
    "Job",
    "Notification",
    "NotificationLog",
    "Template",
    "Preference",
    "LANE_JOB_TYPES",
    "SYSTEM_TEMPLATES",
    "is_system_template",
]
