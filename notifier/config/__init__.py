"""Configuration: YAML settings, environment variables and their validation.

``load_config`` is the entry point; it returns the validated
``AppConfig`` (from the YAML file) and ``EnvironmentConfig`` (from the
process environment, including provider credentials).
"""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import check_config_file, load_config, parse_config, validate_config_file
from .models import (
    AppConfig,
    BulkConfig,
    EmailConfig,
    LaneConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    MaintenanceConfig,
    ProvidersConfig,
    PushConfig,
    QueueConfig,
    SmsConfig,
    TemplatesConfig,
)

__all__ = [
    "load_config",
    "parse_config",
    "check_config_file",
    "validate_config_file",
    "load_environment_config",
    "AppConfig",
    "QueueConfig",
    "LaneConfig",
    "BulkConfig",
    "TemplatesConfig",
    "EmailConfig",
    "SmsConfig",
    "PushConfig",
    "ProvidersConfig",
    "MaintenanceConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    "LogLevel",
    "LogFormat",
    "ConfigurationError",
]
