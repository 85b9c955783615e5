"""Per-call log context (job id, lane, template) carried through contextvars.

Worker threads each start with an empty context, so fields bound while a
job runs never leak into another job's log lines.
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Dict, Iterator

_context: ContextVar[Dict[str, Any]] = ContextVar("notifier_log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Copy of the fields currently bound."""
    return dict(_context.get())


def push_log_context(**fields: Any) -> Token:
    """Bind fields on top of the current context; ``None`` values are ignored.

    Returns:
        Token for :func:`pop_log_context`
    """
    bound = {key: value for key, value in fields.items() if value is not None}
    return _context.set({**_context.get(), **bound})


def pop_log_context(token: Token) -> None:
    _context.reset(token)


def clear_log_context() -> None:
    _context.set({})


@contextmanager
def log_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """Bind fields for the duration of a ``with`` block.

    Example:
        >>> with log_context(job_id="job_1700000000000_ab12cd34ef56ab78", lane="email"):
        ...     logger.info("Processing job")
    """
    token = push_log_context(**fields)
    try:
        yield get_log_context()
    finally:
        pop_log_context(token)
