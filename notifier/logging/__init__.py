"""Structured logging: component loggers, context binding and output setup."""

import logging
from typing import Optional, Union

from .context import clear_log_context, get_log_context, log_context, pop_log_context, push_log_context


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """Adds a ``component`` field to every record; call-site ``extra`` wins on conflicts."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_logger(name: str, component: Optional[str] = None) -> Union[logging.Logger, ComponentLoggerAdapter]:
    """Logger for a module, tagged with ``component`` when given.

    Example:
        >>> logger = get_logger(__name__, component="queue")
        >>> logger.info("Job claimed", extra={"event": "queue.job.claimed"})
    """
    logger = logging.getLogger(name)
    if component:
        return ComponentLoggerAdapter(logger, {"component": component})
    return logger


__all__ = [
    "ComponentLoggerAdapter",
    "get_logger",
    "log_context",
    "push_log_context",
    "pop_log_context",
    "get_log_context",
    "clear_log_context",
]
