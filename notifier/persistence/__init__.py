"""Persistence layer for database operations using SQLAlchemy.

Public API:
    - Database: engine, schema and session lifecycle (one per process)
    - JobRepository: queued jobs and their state transitions
    - NotificationRepository: notification records and provider logs
    - TemplateRepository: stored templates keyed by (name, channel)
    - PreferenceRepository: per-user channel preferences
    - PersistenceError and subclasses

Example usage:
    >>> from notifier.persistence import Database, TemplateRepository
    >>>
    >>> db = Database("sqlite:///./data/notifier.db")
    >>> with db.session() as session:
    ...     template = TemplateRepository(session).get_by_name("welcome", "email")
    >>> db.close()
"""

from .database import Database

from .repositories import (
    JobRepository,
    NotificationRepository,
    PreferenceRepository,
    TemplateRepository,
)

from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
)

__all__ = [
    "Database",
    # Repositories
    "JobRepository",
    "NotificationRepository",
    "TemplateRepository",
    "PreferenceRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
]
