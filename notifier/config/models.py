"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .duration import MS_PER_UNIT, DurationParseError, check_duration_range, parse_duration, parse_duration_ms

SECOND_MS = MS_PER_UNIT["s"]
DAY_MS = MS_PER_UNIT["d"]

DEFAULT_LANE_CONCURRENCY = {"email": 5, "sms": 3, "push": 2, "bulk": 2}


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _duration_field(value: str, min_ms: int, max_ms: int, label: str) -> str:
    try:
        check_duration_range(parse_duration_ms(value), min_ms, max_ms, label)
    except DurationParseError as e:
        raise ValueError(str(e)) from e
    return value


class LaneConfig(BaseModel):
    """Worker settings for a single queue lane."""

    concurrency: int = Field(1, ge=1, le=64, description="Worker threads for the lane")


class QueueConfig(BaseModel):
    """Job queue defaults and worker settings."""

    default_attempts: int = Field(3, ge=1, le=20, description="Attempts per job before it fails")
    backoff_base: str = Field("2s", description="Base delay of the exponential retry backoff")
    stall_timeout: str = Field("30s", description="Active jobs locked longer than this are stalled")
    max_stalled_count: int = Field(
        1, ge=0, le=10, description="Stalls tolerated before a job is failed"
    )
    poll_interval: str = Field("1s", description="Idle wait between worker polls")
    keep_completed: int = Field(10, ge=0, description="Completed jobs retained per lane")
    keep_failed: int = Field(5, ge=0, description="Failed jobs retained per lane")
    lanes: Dict[str, LaneConfig] = Field(
        default_factory=lambda: {
            name: LaneConfig(concurrency=value) for name, value in DEFAULT_LANE_CONCURRENCY.items()
        },
        description="Per-lane worker settings",
    )

    # Computed fields
    backoff_base_ms: Optional[int] = None
    stall_timeout_seconds: Optional[int] = None
    poll_interval_seconds: Optional[float] = None

    @field_validator("backoff_base")
    @classmethod
    def validate_backoff_base(cls, v: str) -> str:
        """Validate the backoff base delay."""
        return _duration_field(v, 100, 3600 * SECOND_MS, "Backoff base")

    @field_validator("stall_timeout")
    @classmethod
    def validate_stall_timeout(cls, v: str) -> str:
        """Validate the stall timeout."""
        return _duration_field(v, SECOND_MS, DAY_MS, "Stall timeout")

    @field_validator("poll_interval")
    @classmethod
    def validate_poll_interval(cls, v: str) -> str:
        """Validate the idle poll interval."""
        return _duration_field(v, 50, 60 * SECOND_MS, "Poll interval")

    @field_validator("lanes")
    @classmethod
    def validate_lanes(cls, v: Dict[str, LaneConfig]) -> Dict[str, LaneConfig]:
        """Reject unknown lanes and fill in missing ones with defaults."""
        unknown = sorted(set(v) - set(DEFAULT_LANE_CONCURRENCY))
        if unknown:
            raise ValueError(
                f"Unknown queue lanes: {', '.join(unknown)}. "
                f"Valid lanes: {', '.join(DEFAULT_LANE_CONCURRENCY)}"
            )
        lanes = dict(v)
        for name, concurrency in DEFAULT_LANE_CONCURRENCY.items():
            lanes.setdefault(name, LaneConfig(concurrency=concurrency))
        return lanes

    @model_validator(mode="after")
    def compute_durations(self):
        """Compute derived duration fields."""
        self.backoff_base_ms = parse_duration_ms(self.backoff_base)
        self.stall_timeout_seconds = parse_duration(self.stall_timeout)
        self.poll_interval_seconds = parse_duration_ms(self.poll_interval) / SECOND_MS
        return self

    def concurrency_for(self, lane: str) -> int:
        """Get worker concurrency for a lane."""
        return self.lanes[lane].concurrency


class BulkConfig(BaseModel):
    """Bulk fan-out settings."""

    chunk_size: int = Field(100, ge=1, le=10000, description="Recipients per chunk")
    max_parallel_chunks: int = Field(4, ge=1, le=32, description="Chunks processed concurrently")


class TemplatesConfig(BaseModel):
    """Template lookup and branding settings."""

    directory: Optional[str] = Field(
        None, description="Directory with <name>.html and <name>.txt templates"
    )
    brand_name: str = Field("Event Planner", min_length=1, description="Brand used in defaults")
    app_base_url: str = Field(
        "https://app.eventplanner.com", min_length=1, description="Base URL for links in messages"
    )

    @field_validator("brand_name", "app_base_url")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        """Strip whitespace from string fields."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("Field cannot be empty or whitespace-only")
        return stripped.rstrip("/") if stripped.startswith("http") else stripped


class EmailConfig(BaseModel):
    """Email delivery settings."""

    use_tls: bool = Field(True, description="Use TLS/STARTTLS for secure connection")
    from_name: str = Field("Event Planner", min_length=1, description="Sender display name")


class SmsConfig(BaseModel):
    """SMS delivery settings."""

    max_length: int = Field(160, ge=20, le=1600, description="Maximum SMS length in characters")


class PushConfig(BaseModel):
    """Push delivery settings."""

    max_body_length: int = Field(
        240, ge=20, le=4000, description="Push bodies longer than this are truncated"
    )
    sound: str = Field("default", min_length=1, description="Notification sound name")
    ttl: str = Field("1d", description="How long providers keep undelivered notifications")

    # Computed fields
    ttl_seconds: Optional[int] = None

    @field_validator("ttl")
    @classmethod
    def validate_ttl(cls, v: str) -> str:
        """Validate the time to live."""
        return _duration_field(v, SECOND_MS, 28 * DAY_MS, "Push TTL")

    @model_validator(mode="after")
    def compute_durations(self):
        """Compute derived duration fields."""
        self.ttl_seconds = parse_duration(self.ttl)
        return self


class ProvidersConfig(BaseModel):
    """Provider transport settings."""

    http_timeout: int = Field(15, ge=1, le=300, description="HTTP provider timeout (seconds)")
    smtp_timeout: int = Field(30, ge=1, le=300, description="SMTP timeout (seconds)")
    user_agent: str = Field("Notifier/1.0", min_length=1, description="User-Agent for HTTP calls")


class MaintenanceConfig(BaseModel):
    """Background maintenance settings."""

    interval: str = Field("30s", description="How often stalled-job recovery runs")
    cleanup_after: str = Field("7d", description="Finished jobs older than this are removed")

    # Computed fields
    interval_seconds: Optional[int] = None
    cleanup_after_seconds: Optional[int] = None

    @field_validator("interval")
    @classmethod
    def validate_interval(cls, v: str) -> str:
        """Validate the maintenance interval."""
        return _duration_field(v, 5 * SECOND_MS, DAY_MS, "Maintenance interval")

    @field_validator("cleanup_after")
    @classmethod
    def validate_cleanup_after(cls, v: str) -> str:
        """Validate the cleanup age."""
        return _duration_field(v, 60 * SECOND_MS, 90 * DAY_MS, "Cleanup age")

    @model_validator(mode="after")
    def compute_durations(self):
        """Compute derived duration fields."""
        self.interval_seconds = parse_duration(self.interval)
        self.cleanup_after_seconds = parse_duration(self.cleanup_after)
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the notifier."""

    queue: QueueConfig = Field(default_factory=QueueConfig, description="Job queue settings")
    bulk: BulkConfig = Field(default_factory=BulkConfig, description="Bulk fan-out settings")
    templates: TemplatesConfig = Field(
        default_factory=TemplatesConfig, description="Template settings"
    )
    email: EmailConfig = Field(default_factory=EmailConfig, description="Email settings")
    sms: SmsConfig = Field(default_factory=SmsConfig, description="SMS settings")
    push: PushConfig = Field(default_factory=PushConfig, description="Push settings")
    providers: ProvidersConfig = Field(
        default_factory=ProvidersConfig, description="Provider transport settings"
    )
    maintenance: MaintenanceConfig = Field(
        default_factory=MaintenanceConfig, description="Background maintenance"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
