"""Errors raised by the persistence layer.

Repositories wrap SQLAlchemy errors in these so callers (the job store,
the notification sink, template and preference lookups) can handle
storage failures without importing SQLAlchemy.
"""


class PersistenceError(Exception):
    """Base class; catching it covers every storage failure."""


class DatabaseConnectionError(PersistenceError):
    """The engine could not be created, or a session was requested after close()."""


class RecordNotFoundError(PersistenceError):
    """An update targeted a row that does not exist (optional lookups return None)."""


class DataIntegrityError(PersistenceError):
    """A constraint was violated: duplicate job id, duplicate (name, channel) template, orphan log row."""
