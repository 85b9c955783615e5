"""Data access layer (repositories) for persistence operations.

This module provides repository classes for queued jobs, notification
records, templates and user preferences. Repositories encapsulate database
operations and return domain models rather than ORM models.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from notifier.domain.models import (
    Job,
    JobState,
    Notification,
    NotificationLog,
    Preference,
    Template,
)

from .exceptions import DataIntegrityError, PersistenceError, RecordNotFoundError
from .schema import (
    JobModel,
    NotificationLogModel,
    NotificationModel,
    PreferenceModel,
    TemplateModel,
    _format_datetime,
    _parse_datetime,
)

logger = logging.getLogger(__name__)

FINISHED_STATES = (JobState.COMPLETED.value, JobState.FAILED.value)


class JobRepository:
    """Repository for queued job operations.

    Every state transition out of ``active`` is conditional on the lock
    token handed out at claim time, so a worker can only finish the attempt
    it owns.
    """

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def add(self, job: Job) -> Job:
        """Insert a new job.

        Raises:
            DataIntegrityError: If a job with the same id already exists
            PersistenceError: If database error occurs
        """
        try:
            job_model = JobModel.from_domain(job)
            self.session.add(job_model)
            self.session.flush()
            return job_model.to_domain()
        except IntegrityError as e:
            logger.error(f"Integrity error inserting job {job.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to insert job due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error inserting job {job.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to insert job: {e}") from e

    def get(self, job_id: str, lane: Optional[str] = None) -> Optional[Job]:
        """Retrieve a job by id, optionally restricted to a lane.

        Returns:
            Job domain model if found, None otherwise
        """
        try:
            stmt = select(JobModel).where(JobModel.id == job_id)
            if lane is not None:
                stmt = stmt.where(JobModel.lane == lane)
            job_model = self.session.execute(stmt).scalar_one_or_none()
            return job_model.to_domain() if job_model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving job {job_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve job: {e}") from e

    def claim_next(self, lane: str, now: datetime, lock_token: str) -> Optional[Job]:
        """Move the oldest eligible waiting job of a lane to active.

        Eligible means ``run_at <= now``. Order is ``run_at`` then insertion.
        The transition is a conditional update, so a job already taken by
        another worker is skipped.

        Returns:
            The claimed job, or None when nothing is eligible
        """
        now_str = _format_datetime(now)
        try:
            candidates = (
                self.session.execute(
                    select(JobModel.id)
                    .where(
                        JobModel.lane == lane,
                        JobModel.state == JobState.WAITING.value,
                        JobModel.run_at <= now_str,
                    )
                    .order_by(JobModel.run_at, JobModel.seq)
                    .limit(5)
                )
                .scalars()
                .all()
            )
            for job_id in candidates:
                result = self.session.execute(
                    update(JobModel)
                    .where(JobModel.id == job_id, JobModel.state == JobState.WAITING.value)
                    .values(
                        state=JobState.ACTIVE.value,
                        lock_token=lock_token,
                        locked_at=now_str,
                        processed_at=now_str,
                    )
                )
                if result.rowcount == 1:
                    self.session.flush()
                    return self.get(job_id)
            return None
        except SQLAlchemyError as e:
            logger.error(f"Error claiming job in lane {lane}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to claim job: {e}") from e

    def mark_completed(
        self, job_id: str, lock_token: str, finished_at: datetime, result: Optional[Dict[str, Any]]
    ) -> bool:
        """Finish an active job successfully. Returns False if the lock no longer matches."""
        return self._finish(
            job_id,
            lock_token,
            state=JobState.COMPLETED.value,
            finished_at=_format_datetime(finished_at),
            result=result,
            failed_reason=None,
        )

    def mark_failed(
        self, job_id: str, lock_token: str, finished_at: datetime, attempts_made: int, reason: str
    ) -> bool:
        """Fail an active job permanently. Returns False if the lock no longer matches."""
        return self._finish(
            job_id,
            lock_token,
            state=JobState.FAILED.value,
            finished_at=_format_datetime(finished_at),
            attempts_made=attempts_made,
            failed_reason=reason,
        )

    def schedule_retry(
        self, job_id: str, lock_token: str, run_at: datetime, attempts_made: int, reason: str
    ) -> bool:
        """Return an active job to waiting with a later run_at. Returns False if the lock no longer matches."""
        return self._finish(
            job_id,
            lock_token,
            state=JobState.WAITING.value,
            run_at=_format_datetime(run_at),
            attempts_made=attempts_made,
            failed_reason=reason,
        )

    def _finish(self, job_id: str, lock_token: str, **values) -> bool:
        try:
            result = self.session.execute(
                update(JobModel)
                .where(
                    JobModel.id == job_id,
                    JobModel.state == JobState.ACTIVE.value,
                    JobModel.lock_token == lock_token,
                )
                .values(lock_token=None, locked_at=None, **values)
            )
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error finishing job {job_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update job: {e}") from e

    def delete(self, job_id: str, lane: Optional[str] = None) -> Optional[Job]:
        """Delete a job in any state.

        Returns:
            The job as it was before deletion, or None if it did not exist
        """
        try:
            stmt = select(JobModel).where(JobModel.id == job_id)
            if lane is not None:
                stmt = stmt.where(JobModel.lane == lane)
            job_model = self.session.execute(stmt).scalar_one_or_none()
            if job_model is None:
                return None
            job = job_model.to_domain()
            self.session.delete(job_model)
            self.session.flush()
            return job
        except SQLAlchemyError as e:
            logger.error(f"Error deleting job {job_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete job: {e}") from e

    def count_by_state(self, lane: str) -> Dict[str, int]:
        """Count jobs of a lane per state (every state present, zero-filled)."""
        try:
            rows = self.session.execute(
                select(JobModel.state, func.count())
                .where(JobModel.lane == lane)
                .group_by(JobModel.state)
            ).all()
            counts = {state.value: 0 for state in JobState}
            for state, count in rows:
                counts[state] = count
            return counts
        except SQLAlchemyError as e:
            logger.error(f"Error counting jobs in lane {lane}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count jobs: {e}") from e

    def find_stalled(self, locked_before: datetime) -> List[Job]:
        """Active jobs whose lock is older than the cutoff."""
        try:
            stmt = (
                select(JobModel)
                .where(
                    JobModel.state == JobState.ACTIVE.value,
                    JobModel.locked_at < _format_datetime(locked_before),
                )
                .order_by(JobModel.locked_at)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving stalled jobs: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve stalled jobs: {e}") from e

    def release_stalled(self, job_id: str, lock_token: str, stalled_count: int) -> bool:
        """Put a stalled active job back to waiting."""
        return self._finish(job_id, lock_token, state=JobState.WAITING.value, stalled_count=stalled_count)

    def fail_stalled(
        self, job_id: str, lock_token: str, finished_at: datetime, stalled_count: int, reason: str
    ) -> bool:
        """Fail a job that stalled too many times."""
        return self._finish(
            job_id,
            lock_token,
            state=JobState.FAILED.value,
            finished_at=_format_datetime(finished_at),
            stalled_count=stalled_count,
            failed_reason=reason,
        )

    def delete_finished(self, lane: str, finished_before: Optional[datetime] = None) -> int:
        """Delete completed and failed jobs of a lane.

        Args:
            lane: Lane to clean
            finished_before: Only delete jobs finished before this time

        Returns:
            Number of deleted jobs
        """
        try:
            stmt = delete(JobModel).where(
                JobModel.lane == lane, JobModel.state.in_(FINISHED_STATES)
            )
            if finished_before is not None:
                stmt = stmt.where(JobModel.finished_at < _format_datetime(finished_before))
            return self.session.execute(stmt, execution_options={"synchronize_session": False}).rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error cleaning jobs in lane {lane}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to clean jobs: {e}") from e

    def prune(self, lane: str, state: str, keep: int) -> int:
        """Delete all but the newest ``keep`` jobs of a lane in a finished state.

        Returns:
            Number of deleted jobs
        """
        try:
            keep_ids = (
                select(JobModel.seq)
                .where(JobModel.lane == lane, JobModel.state == state)
                .order_by(JobModel.finished_at.desc(), JobModel.seq.desc())
                .limit(keep)
            )
            stmt = delete(JobModel).where(
                JobModel.lane == lane,
                JobModel.state == state,
                JobModel.seq.not_in(keep_ids),
            )
            return self.session.execute(stmt, execution_options={"synchronize_session": False}).rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error pruning {state} jobs in lane {lane}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to prune jobs: {e}") from e


class NotificationRepository:
    """Repository for notification records and their provider logs."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def create(self, notification: Notification, created_at: datetime) -> Notification:
        """Insert a notification record.

        Returns:
            Persisted notification with its generated id
        """
        try:
            model = NotificationModel(
                user_id=notification.user_id,
                template_name=notification.template_name,
                channel=notification.channel,
                subject=notification.subject,
                content=notification.content,
                status=notification.status,
                job_id=notification.job_id,
                category=notification.category,
                sent_at=_format_datetime(notification.sent_at),
                created_at=_format_datetime(created_at),
                updated_at=_format_datetime(created_at),
            )
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error creating notification: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create notification: {e}") from e

    def get(self, notification_id: int) -> Optional[Notification]:
        """Retrieve a notification by id."""
        try:
            model = self.session.get(NotificationModel, notification_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving notification {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve notification: {e}") from e

    def get_by_job_id(self, job_id: str) -> Optional[Notification]:
        """Retrieve the notification created for a queued job, if any."""
        try:
            stmt = (
                select(NotificationModel)
                .where(NotificationModel.job_id == job_id)
                .order_by(NotificationModel.id)
                .limit(1)
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving notification for job {job_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve notification: {e}") from e

    def update_status(
        self,
        notification_id: int,
        status: str,
        updated_at: datetime,
        sent_at: Optional[datetime] = None,
    ) -> None:
        """Update delivery status of a notification.

        Raises:
            RecordNotFoundError: If the notification does not exist
            PersistenceError: If database error occurs
        """
        try:
            values = {"status": status, "updated_at": _format_datetime(updated_at)}
            if sent_at is not None:
                values["sent_at"] = _format_datetime(sent_at)
            result = self.session.execute(
                update(NotificationModel)
                .where(NotificationModel.id == notification_id)
                .values(**values)
            )
            if result.rowcount == 0:
                raise RecordNotFoundError(f"Notification {notification_id} not found")
        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating notification {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update notification: {e}") from e

    def add_log(self, log: NotificationLog, created_at: datetime) -> NotificationLog:
        """Append a provider log row to a notification."""
        try:
            model = NotificationLogModel(
                notification_id=log.notification_id,
                provider=log.provider,
                response=log.response,
                error_message=log.error_message,
                created_at=_format_datetime(created_at),
            )
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            raise DataIntegrityError(f"Failed to add notification log: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error adding notification log: {e}", exc_info=True)
            raise PersistenceError(f"Failed to add notification log: {e}") from e

    def get_logs(self, notification_id: int) -> List[NotificationLog]:
        """All provider logs for a notification, oldest first."""
        try:
            stmt = (
                select(NotificationLogModel)
                .where(NotificationLogModel.notification_id == notification_id)
                .order_by(NotificationLogModel.id)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving logs for {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve notification logs: {e}") from e

    # Inbox queries, scoped to one user and channel

    def _user_filter(self, user_id: int, channel: str, is_read: Optional[bool], category: Optional[str]):
        conditions = [NotificationModel.user_id == user_id, NotificationModel.channel == channel]
        if is_read is True:
            conditions.append(NotificationModel.read_at.is_not(None))
        elif is_read is False:
            conditions.append(NotificationModel.read_at.is_(None))
        if category is not None:
            conditions.append(NotificationModel.category == category)
        return conditions

    def list_for_user(
        self,
        user_id: int,
        channel: str,
        limit: int = 50,
        offset: int = 0,
        is_read: Optional[bool] = None,
        category: Optional[str] = None,
    ) -> List[Notification]:
        """A user's notifications on a channel, newest first."""
        try:
            stmt = (
                select(NotificationModel)
                .where(*self._user_filter(user_id, channel, is_read, category))
                .order_by(NotificationModel.created_at.desc(), NotificationModel.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing notifications for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list notifications: {e}") from e

    def count_for_user(
        self,
        user_id: int,
        channel: str,
        is_read: Optional[bool] = None,
        category: Optional[str] = None,
    ) -> int:
        try:
            stmt = select(func.count()).select_from(NotificationModel).where(
                *self._user_filter(user_id, channel, is_read, category)
            )
            return self.session.execute(stmt).scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Error counting notifications for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count notifications: {e}") from e

    def mark_read(self, notification_id: int, user_id: int, channel: str, read_at: datetime) -> Optional[Notification]:
        """Set read_at on one of the user's notifications (kept when already read).

        Returns:
            The updated notification, or None if it is not the user's or not on the channel
        """
        try:
            model = self.session.execute(
                select(NotificationModel).where(
                    NotificationModel.id == notification_id,
                    NotificationModel.user_id == user_id,
                    NotificationModel.channel == channel,
                )
            ).scalar_one_or_none()
            if model is None:
                return None
            if model.read_at is None:
                model.read_at = _format_datetime(read_at)
                model.updated_at = _format_datetime(read_at)
                self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error marking notification {notification_id} read: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark notification read: {e}") from e

    def mark_all_read(self, user_id: int, channel: str, read_at: datetime, category: Optional[str] = None) -> int:
        """Mark every unread notification of the user on the channel. Returns the number updated."""
        try:
            stamp = _format_datetime(read_at)
            result = self.session.execute(
                update(NotificationModel)
                .where(*self._user_filter(user_id, channel, False, category))
                .values(read_at=stamp, updated_at=stamp)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error marking notifications read for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark notifications read: {e}") from e

    def delete_for_user(self, notification_id: int, user_id: int, channel: str) -> bool:
        try:
            result = self.session.execute(
                delete(NotificationModel)
                .where(
                    NotificationModel.id == notification_id,
                    NotificationModel.user_id == user_id,
                    NotificationModel.channel == channel,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error deleting notification {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete notification: {e}") from e

    def stats_for_user(self, user_id: int, channel: str) -> Dict[str, Any]:
        """Totals for a user's notifications on a channel.

        Returns:
            Dict with ``total``, ``unread``, ``by_category`` and ``last_created_at``
            (datetime of the newest notification, or None)
        """
        try:
            scope = (NotificationModel.user_id == user_id, NotificationModel.channel == channel)
            rows = self.session.execute(
                select(
                    NotificationModel.category,
                    func.count(),
                    func.count(NotificationModel.id).filter(NotificationModel.read_at.is_(None)),
                    func.max(NotificationModel.created_at),
                )
                .where(*scope)
                .group_by(NotificationModel.category)
            ).all()
        except SQLAlchemyError as e:
            logger.error(f"Error computing notification stats for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to compute notification stats: {e}") from e

        by_category: Dict[str, int] = {}
        total = unread = 0
        last_created_at: Optional[str] = None
        for category, count, unread_count, newest in rows:
            by_category[category or "none"] = count
            total += count
            unread += unread_count
            if newest is not None and (last_created_at is None or newest > last_created_at):
                last_created_at = newest
        return {
            "total": total,
            "unread": unread,
            "by_category": by_category,
            "last_created_at": _parse_datetime(last_created_at),
        }


class TemplateRepository:
    """Repository for stored templates."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def get_by_name(self, name: str, channel: str) -> Optional[Template]:
        """Retrieve a template by (name, channel)."""
        try:
            stmt = select(TemplateModel).where(
                TemplateModel.name == name, TemplateModel.channel == channel
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving template {name}/{channel}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve template: {e}") from e

    def upsert(self, template: Template, now: datetime) -> Template:
        """Insert a template or replace the existing one, bumping its version."""
        try:
            stmt = select(TemplateModel).where(
                TemplateModel.name == template.name, TemplateModel.channel == template.channel
            )
            existing = self.session.execute(stmt).scalar_one_or_none()
            if existing:
                existing.subject_template = template.subject_template
                existing.body_template = template.body_template
                existing.variables = template.variables
                existing.version = existing.version + 1
                existing.updated_at = _format_datetime(now)
                self.session.flush()
                return existing.to_domain()

            model = TemplateModel(
                name=template.name,
                channel=template.channel,
                subject_template=template.subject_template,
                body_template=template.body_template,
                variables=template.variables,
                version=template.version,
                created_at=_format_datetime(now),
                updated_at=_format_datetime(now),
            )
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            logger.error(f"Integrity error upserting template {template.name}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to upsert template: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error upserting template {template.name}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert template: {e}") from e


class PreferenceRepository:
    """Repository for per-user channel preferences."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def get(self, user_id: int, channel: str) -> Optional[Preference]:
        """Retrieve a preference row, or None when the user has no explicit choice."""
        try:
            model = self.session.get(PreferenceModel, (user_id, channel))
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving preference {user_id}/{channel}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve preference: {e}") from e

    def set(self, user_id: int, channel: str, is_enabled: bool, now: datetime) -> Preference:
        """Create or update a preference row."""
        try:
            model = self.session.get(PreferenceModel, (user_id, channel))
            if model is None:
                model = PreferenceModel(user_id=user_id, channel=channel)
                self.session.add(model)
            model.is_enabled = is_enabled
            model.updated_at = _format_datetime(now)
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error saving preference {user_id}/{channel}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to save preference: {e}") from e
