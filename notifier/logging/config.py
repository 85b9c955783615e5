"""Log output setup: one stream handler, JSON or key-value lines.

Every record leaving the handler carries ``service`` and ``environment``,
the fields of the active :func:`log_context` (``job_id``, ``lane``,
``template``...) and whatever was passed as ``extra``. Credentials and
one-time codes are replaced with ``***`` before formatting.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, TextIO

from .context import get_log_context

LogFormat = Literal["json", "key-value"]

SERVICE_NAME = "notifier"

SENSITIVE_KEYS = frozenset(
    {"password", "smtp_pass", "api_key", "api_secret", "auth_token", "otp_code", "reset_token", "reset_code"}
)
REDACTED = "***"

# Attributes every LogRecord has; anything else on a record is an extra field
RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {
    "message",
    "asctime",
}

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("apscheduler", "urllib3", "sqlalchemy.engine")


def record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Extra fields of a record, redacted and reduced to JSON-friendly values."""
    fields: Dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in RESERVED_ATTRS or key.startswith("_"):
            continue
        if key in SENSITIVE_KEYS:
            fields[key] = REDACTED
        elif isinstance(value, datetime):
            fields[key] = value.isoformat()
        elif value is None or isinstance(value, (str, int, float, bool, list, dict)):
            fields[key] = value
        else:
            fields[key] = str(value)
    return fields


class ContextualFilter(logging.Filter):
    """Stamps service, environment and the active log context onto records.

    Fields passed explicitly as ``extra`` win over context fields.
    """

    def __init__(self, service: str = SERVICE_NAME, environment: str = "local"):
        super().__init__()
        self.service = service
        self.environment = environment

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service
        record.environment = self.environment
        for key, value in get_log_context().items():
            record.__dict__.setdefault(key, value)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(record_fields(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class KeyValueFormatter(logging.Formatter):
    """Human-readable line: the base format followed by sorted ``key=value`` extras.

    ``service`` and ``environment`` are left out; they are constant per process.
    """

    HIDDEN = frozenset({"service", "environment"})

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = record_fields(record)
        pairs = [f"{key}={_kv_value(fields[key])}" for key in sorted(fields) if key not in self.HIDDEN]
        return f"{line} {' '.join(pairs)}" if pairs else line


def _kv_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, default=str, separators=(",", ":"))
    text = str(value)
    if any(char in text for char in ' =,"'):
        return json.dumps(text)
    return text


def utc_timestamp(created: float) -> str:
    """Epoch seconds as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    moment = datetime.fromtimestamp(created, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def configure_logging(
    level: str = "INFO",
    format_type: LogFormat = "key-value",
    environment: str = "local",
    stream: Optional[TextIO] = None,
) -> None:
    """
    Replace the root logger's handlers with one configured stream handler.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        format_type: 'json' or 'key-value'
        environment: Value stamped on every record
        stream: Output stream (default: stdout)

    Raises:
        ValueError: If level or format_type is invalid
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")
    if format_type not in ("json", "key-value"):
        raise ValueError(f"Invalid log format: {format_type}. Must be 'json' or 'key-value'")

    handler = logging.StreamHandler(stream or sys.stdout)
    if format_type == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            KeyValueFormatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        )
    handler.addFilter(ContextualFilter(environment=environment))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={
            "event": "logging.configured",
            "component": "logging",
            "log_level": level.upper(),
            "log_format": format_type,
        },
    )
