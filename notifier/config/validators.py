"""Additional validation utilities for configuration."""

import warnings
from typing import Any, Dict, List, Optional

from .duration import DurationParseError, parse_duration


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check configuration for potential issues and return warnings.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    queue = config_dict.get("queue", {})
    if isinstance(queue, dict):
        stall_timeout = _seconds(queue.get("stall_timeout"))
        if stall_timeout is not None and stall_timeout < 10:
            warning_messages.append(
                f"Short stall_timeout ({queue['stall_timeout']}) may recover jobs that are still running"
            )

        attempts = queue.get("default_attempts")
        if isinstance(attempts, int) and attempts > 10:
            warning_messages.append(
                f"High default_attempts ({attempts}) may delay failure reporting for hours"
            )

        lanes = queue.get("lanes", {})
        if isinstance(lanes, dict):
            total = 0
            for lane in lanes.values():
                if isinstance(lane, dict) and isinstance(lane.get("concurrency"), int):
                    total += lane["concurrency"]
            if total > 50:
                warning_messages.append(
                    f"Total worker concurrency ({total}) may exhaust database connections"
                )

    bulk = config_dict.get("bulk", {})
    if isinstance(bulk, dict):
        chunk_size = bulk.get("chunk_size")
        if isinstance(chunk_size, int) and chunk_size > 1000:
            warning_messages.append(
                f"Large bulk chunk_size ({chunk_size}) reduces parallelism across chunks"
            )

    return warning_messages


def check_environment_warnings(env_config) -> List[str]:
    """
    Check provider credentials against the runtime environment.

    Args:
        env_config: Loaded EnvironmentConfig

    Returns:
        List of warning messages
    """
    warning_messages = []
    if env_config.mock_allowed:
        return warning_messages

    if not (env_config.smtp_configured or env_config.sendgrid_configured):
        warning_messages.append(
            f"No email provider configured in '{env_config.environment}'; email sends will fail"
        )
    if not (env_config.twilio_configured or env_config.vonage_configured):
        warning_messages.append(
            f"No SMS provider configured in '{env_config.environment}'; SMS sends will fail"
        )
    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """
    Emit warning messages using Python's warnings module.

    Args:
        warning_messages: List of warning messages to emit
    """
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)


def _seconds(value: Any) -> Optional[int]:
    if not isinstance(value, str):
        return None
    try:
        return parse_duration(value)
    except DurationParseError:
        return None
