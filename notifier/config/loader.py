"""Loads the YAML configuration file and the environment into validated models."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .models import AppConfig
from .validators import check_environment_warnings, check_for_warnings, emit_warnings

# Tried in order when no path is given; built-in defaults apply if none exists
CONFIG_SEARCH_PATHS = (Path("config.yaml"), Path("config") / "config.yaml")

_TYPE_ERRORS = {"string_type": "a string", "int_type": "an integer", "bool_type": "a boolean", "dict_type": "a mapping"}


def load_config(config_path: Optional[Path] = None) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load the YAML configuration and the environment.

    An explicit ``config_path`` must exist. Without one, the first file in
    ``CONFIG_SEARCH_PATHS`` is used, or the defaults when there is none.
    Non-fatal findings are emitted as ``UserWarning``.

    Raises:
        ConfigurationError: If the file or the environment is invalid
    """
    config_file = find_config_file(config_path)
    raw = read_config_file(config_file) if config_file else {}

    emit_warnings(check_for_warnings(raw))
    app_config = parse_config(raw)

    try:
        env_config = load_environment_config()
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load environment configuration: {e}",
            suggestions=["Copy .env.example to .env and fill in your credentials"],
        ) from e

    emit_warnings(check_environment_warnings(env_config))
    return app_config, env_config


def parse_config(raw: Dict[str, Any]) -> AppConfig:
    """Validate a parsed YAML mapping.

    Raises:
        ConfigurationError: Listing one entry per invalid field
    """
    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(
            "Configuration validation failed",
            errors=_validation_messages(e),
            suggestions=[
                "Compare your file with config.example.yaml",
                "Durations use forms like '500ms', '30s', '15m', '7d' or 'PT30S'",
            ],
        ) from e


def _validation_messages(error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        field = ".".join(str(part) for part in item["loc"])
        kind = item["type"]
        if kind == "missing":
            messages.append(f"Missing required field: {field}")
        elif kind in _TYPE_ERRORS:
            messages.append(f"'{field}' must be {_TYPE_ERRORS[kind]}, got {item.get('input')!r}")
        else:
            messages.append(f"{field}: {item['msg']}")
    return messages


def read_config_file(config_file: Path) -> Dict[str, Any]:
    """Parse a YAML file that must hold a mapping (an empty file is an empty mapping)."""
    try:
        raw = yaml.safe_load(config_file.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML configuration {config_file}: {e}",
            suggestions=["Check the YAML syntax; indent with spaces, not tabs"],
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read configuration file {config_file}: {e}",
            suggestions=[f"Check that {config_file} is readable"],
        ) from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Configuration file {config_file} must contain a mapping at the top level",
            suggestions=["Start from config.example.yaml"],
        )
    return raw


def find_config_file(config_path: Optional[Path] = None) -> Optional[Path]:
    """Resolve which configuration file to read, if any.

    Raises:
        ConfigurationError: If an explicit path does not exist
    """
    if config_path:
        if not config_path.exists():
            raise ConfigurationError(
                f"Specified configuration file not found: {config_path}",
                suggestions=["Check the --config path", "Omit --config to use config.yaml or the defaults"],
            )
        return config_path
    return next((candidate for candidate in CONFIG_SEARCH_PATHS if candidate.exists()), None)


def check_config_file(config_path: Path) -> List[str]:
    """Validate a configuration file without reading the environment.

    Returns:
        Problems found; empty when the file is valid
    """
    try:
        parse_config(read_config_file(config_path))
    except ConfigurationError as e:
        return e.errors or [e.message]
    return []


def validate_config_file(config_path: Path) -> bool:
    return not check_config_file(config_path)
