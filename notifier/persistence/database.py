"""Engine, schema and session lifecycle for the notifier store.

A single :class:`Database` is built at startup and shared by the queue
store, the template and preference repositories and the notification sink.
Worker threads each open their own sessions from it.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from notifier.logging import get_logger

from .exceptions import DatabaseConnectionError
from .schema import create_schema

logger = get_logger(__name__, component="database")


class Database:
    """Owns the SQLAlchemy engine and session factory.

    Example:
        >>> db = Database("sqlite:///./data/notifier.db")
        >>> with db.session() as session:
        ...     TemplateRepository(session).get_by_name("welcome", "email")
        >>> db.close()
    """

    def __init__(self, database_url: str):
        """
        Args:
            database_url: SQLAlchemy URL, e.g. ``sqlite:///./data/notifier.db``

        Raises:
            DatabaseConnectionError: If the URL is unusable or the schema cannot be created
        """
        if not isinstance(database_url, str) or not database_url.strip():
            raise DatabaseConnectionError("Database URL must be a non-empty string")

        self.database_url = database_url
        safe_url = _redact_url(database_url)
        logger.info("Opening database", extra={"event": "database.opening", "database_url": safe_url})

        try:
            self._engine: Optional[Engine] = create_engine(database_url, **_engine_options(database_url))
            if self._engine.dialect.name == "sqlite":
                _install_sqlite_pragmas(self._engine, wal=not _is_memory_sqlite(database_url))
            _ping(self._engine)
            create_schema(self._engine)
        except DatabaseConnectionError:
            raise
        except Exception as e:
            logger.error(
                f"Database setup failed: {e}",
                exc_info=True,
                extra={"event": "database.open_failed", "database_url": safe_url},
            )
            raise DatabaseConnectionError(f"Failed to initialize database: {e}") from e

        self._session_factory: Optional[sessionmaker] = sessionmaker(bind=self._engine, expire_on_commit=False)
        logger.info("Database ready", extra={"event": "database.ready", "database_url": safe_url})

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise DatabaseConnectionError("Database is closed")
        return self._engine

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """A unit of work: committed when the block exits, rolled back if it raises.

        Raises:
            DatabaseConnectionError: If the database has been closed
        """
        if self._session_factory is None:
            raise DatabaseConnectionError("Database is closed")

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.warning(
                "Session rolled back",
                extra={"event": "database.rollback", "error_type": type(e).__name__, "error": str(e)},
            )
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Dispose of pooled connections. Safe to call more than once."""
        if self._engine is None:
            return
        logger.info("Closing database", extra={"event": "database.closing"})
        self._engine.dispose()
        self._engine = None
        self._session_factory = None


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (url == "sqlite://" or url.endswith(":memory:"))


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"pool_pre_ping": True}
    if not url.startswith("sqlite"):
        return options

    # Worker threads share the engine
    options["connect_args"] = {"check_same_thread": False, "timeout": 30}
    if _is_memory_sqlite(url):
        # One connection, so every thread sees the same in-memory database
        options["poolclass"] = StaticPool
    else:
        _ensure_parent_directory(url)
    return options


def _ensure_parent_directory(url: str) -> None:
    database = make_url(url).database
    if not database:
        return
    parent = Path(database).parent
    if not parent.exists():
        logger.info(
            "Creating database directory",
            extra={"event": "database.directory_created", "path": str(parent)},
        )
        parent.mkdir(parents=True, exist_ok=True)


def _install_sqlite_pragmas(engine: Engine, wal: bool) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            if wal:
                cursor.execute("PRAGMA journal_mode=WAL")
        finally:
            cursor.close()


def _ping(engine: Engine) -> None:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        raise DatabaseConnectionError(f"Database is unreachable: {e}") from e


def _redact_url(url: str) -> str:
    """The URL with its password masked, for log output."""
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return "<unparseable database url>"
