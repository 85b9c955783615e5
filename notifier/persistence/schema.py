"""Database schema definition and ORM models.

This module defines SQLAlchemy ORM models for the database schema and provides
conversion methods between ORM models and domain models.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from notifier.domain.models import Job, Notification, NotificationLog, Preference, Template

logger = logging.getLogger(__name__)

Base = declarative_base()


class JobModel(Base):
    """ORM model for the jobs table.

    ``seq`` gives a stable insertion order for FIFO claiming; ``id`` is the
    public job identifier.
    """

    __tablename__ = "jobs"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), unique=True, nullable=False)
    lane = Column(String(20), nullable=False)
    type = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)

    state = Column(String(20), nullable=False)
    attempts_made = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False)
    backoff_base_ms = Column(Integer, nullable=False)
    stalled_count = Column(Integer, nullable=False, default=0)

    # Timestamps (stored as ISO 8601 strings, lexically sortable)
    created_at = Column(String(50), nullable=False)
    run_at = Column(String(50), nullable=False)
    processed_at = Column(String(50), nullable=True)
    finished_at = Column(String(50), nullable=True)
    locked_at = Column(String(50), nullable=True)

    lock_token = Column(String(64), nullable=True)
    failed_reason = Column(Text, nullable=True)
    result = Column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_jobs_lane_state_run_at", "lane", "state", "run_at"),
        Index("idx_jobs_finished_at", "finished_at"),
    )

    def to_domain(self) -> Job:
        """Convert ORM model to domain model."""
        return Job(
            id=self.id,
            lane=self.lane,
            type=self.type,
            payload=self.payload or {},
            state=self.state,
            attempts_made=self.attempts_made,
            max_attempts=self.max_attempts,
            backoff_base_ms=self.backoff_base_ms,
            stalled_count=self.stalled_count,
            created_at=_parse_datetime(self.created_at),
            run_at=_parse_datetime(self.run_at),
            processed_at=_parse_datetime(self.processed_at),
            finished_at=_parse_datetime(self.finished_at),
            locked_at=_parse_datetime(self.locked_at),
            lock_token=self.lock_token,
            failed_reason=self.failed_reason,
            result=self.result,
        )

    @classmethod
    def from_domain(cls, job: Job) -> "JobModel":
        """Create ORM model from domain model."""
        return cls(
            id=job.id,
            lane=job.lane,
            type=job.type,
            payload=job.payload,
            state=job.state,
            attempts_made=job.attempts_made,
            max_attempts=job.max_attempts,
            backoff_base_ms=job.backoff_base_ms,
            stalled_count=job.stalled_count,
            created_at=_format_datetime(job.created_at),
            run_at=_format_datetime(job.run_at),
            processed_at=_format_datetime(job.processed_at),
            finished_at=_format_datetime(job.finished_at),
            locked_at=_format_datetime(job.locked_at),
            lock_token=job.lock_token,
            failed_reason=job.failed_reason,
            result=job.result,
        )


class NotificationModel(Base):
    """ORM model for the notifications table."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True)
    template_name = Column(String(100), nullable=False)
    channel = Column(String(20), nullable=False)
    subject = Column(Text, nullable=True)
    content = Column(Text, nullable=True)
    status = Column(String(20), nullable=False)
    job_id = Column(String(64), nullable=True)
    category = Column(String(20), nullable=True)
    sent_at = Column(String(50), nullable=True)
    read_at = Column(String(50), nullable=True)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_notifications_user_channel", "user_id", "channel"),
        Index("idx_notifications_job", "job_id"),
    )

    def to_domain(self) -> Notification:
        """Convert ORM model to domain model."""
        return Notification(
            id=self.id,
            user_id=self.user_id,
            template_name=self.template_name,
            channel=self.channel,
            subject=self.subject,
            content=self.content,
            status=self.status,
            job_id=self.job_id,
            category=self.category,
            sent_at=_parse_datetime(self.sent_at),
            read_at=_parse_datetime(self.read_at),
            created_at=_parse_datetime(self.created_at),
            updated_at=_parse_datetime(self.updated_at),
        )


class NotificationLogModel(Base):
    """ORM model for the notification_logs table."""

    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    notification_id = Column(
        Integer, ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False
    )
    provider = Column(String(50), nullable=True)
    response = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(String(50), nullable=False)

    __table_args__ = (Index("idx_notification_logs_notification", "notification_id"),)

    def to_domain(self) -> NotificationLog:
        """Convert ORM model to domain model."""
        return NotificationLog(
            id=self.id,
            notification_id=self.notification_id,
            provider=self.provider,
            response=self.response,
            error_message=self.error_message,
            created_at=_parse_datetime(self.created_at),
        )


class TemplateModel(Base):
    """ORM model for the templates table."""

    __tablename__ = "templates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    channel = Column(String(20), nullable=False)
    subject_template = Column(Text, nullable=True)
    body_template = Column(Text, nullable=False)
    variables = Column(JSON, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (UniqueConstraint("name", "channel", name="uq_templates_name_channel"),)

    def to_domain(self) -> Template:
        """Convert ORM model to domain model."""
        return Template(
            id=self.id,
            name=self.name,
            channel=self.channel,
            subject_template=self.subject_template,
            body_template=self.body_template,
            variables=self.variables or [],
            version=self.version,
            created_at=_parse_datetime(self.created_at),
            updated_at=_parse_datetime(self.updated_at),
        )


class PreferenceModel(Base):
    """ORM model for the user_preferences table."""

    __tablename__ = "user_preferences"

    user_id = Column(Integer, primary_key=True, nullable=False)
    channel = Column(String(20), primary_key=True, nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
    updated_at = Column(String(50), nullable=False)

    def to_domain(self) -> Preference:
        """Convert ORM model to domain model."""
        return Preference(
            user_id=self.user_id,
            channel=self.channel,
            is_enabled=self.is_enabled,
            updated_at=_parse_datetime(self.updated_at),
        )


def _format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime as ISO 8601 string for database storage.

    The fixed-width format keeps string comparison chronological.

    Args:
        dt: Datetime object (naive values are treated as UTC)

    Returns:
        ISO 8601 formatted string or None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)

    return dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    """Parse ISO 8601 string to datetime object.

    Args:
        dt_str: ISO 8601 formatted string

    Returns:
        Timezone-aware datetime in UTC or None
    """
    if dt_str is None or dt_str == "":
        return None

    dt_str = dt_str.rstrip("Z")

    try:
        dt = datetime.strptime(dt_str, "%Y-%m-%dT%H:%M:%S.%f")
    except ValueError:
        dt = datetime.strptime(dt_str, "%Y-%m-%dT%H:%M:%S")

    return dt.replace(tzinfo=timezone.utc)


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent).

    Args:
        engine: SQLAlchemy engine instance
    """
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)

        from sqlalchemy import inspect

        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")

    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
