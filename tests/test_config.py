"""Integration tests for configuration module."""

from pathlib import Path

import pytest

from notifier.config import (
    AppConfig,
    ConfigurationError,
    check_config_file,
    load_config,
    parse_config,
    validate_config_file,
)
from notifier.config.duration import (
    DurationParseError,
    check_duration_range,
    format_duration,
    parse_duration,
    parse_duration_ms,
)
from notifier.config.environment import EnvironmentConfig, load_environment_config
from notifier.config.validators import check_environment_warnings, check_for_warnings

ENV_VARS = [
    "ENVIRONMENT",
    "DATABASE_URL",
    "LOG_LEVEL",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USER",
    "SMTP_PASS",
    "FROM_EMAIL",
    "SENDGRID_API_KEY",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_PHONE_NUMBER",
    "VONAGE_API_KEY",
    "VONAGE_API_SECRET",
    "VONAGE_FROM_NUMBER",
    "FCM_PROJECT_ID",
    "FCM_ACCESS_TOKEN",
    "EXPO_ACCESS_TOKEN",
]

VALID_CONFIG = """
queue:
  default_attempts: 5
  backoff_base: "1s"
  stall_timeout: "PT1M"
  keep_completed: 20
  lanes:
    email:
      concurrency: 8
bulk:
  chunk_size: 50
  max_parallel_chunks: 2
templates:
  brand_name: "Acme Events"
  app_base_url: "https://events.example.com/"
email:
  from_name: "Acme"
sms:
  max_length: 140
maintenance:
  interval: "1m"
  cleanup_after: "3d"
logging:
  level: DEBUG
  format: json
"""


class TestConfigurationLoading:
    """Test configuration loading from YAML files."""

    def test_load_valid_config(self, tmp_path, clean_env):
        """Test loading a valid configuration file."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text(VALID_CONFIG)

        app_config, env_config = load_config(config_path)

        assert app_config.queue.default_attempts == 5
        assert app_config.queue.backoff_base_ms == 1000
        assert app_config.queue.stall_timeout_seconds == 60
        assert app_config.queue.concurrency_for("email") == 8
        assert app_config.bulk.chunk_size == 50
        assert app_config.templates.brand_name == "Acme Events"
        assert app_config.templates.app_base_url == "https://events.example.com"
        assert app_config.sms.max_length == 140
        assert app_config.maintenance.interval_seconds == 60
        assert app_config.maintenance.cleanup_after_seconds == 3 * 86400
        assert app_config.logging.format == "json"
        assert env_config.environment == "development"

    def test_missing_lanes_get_defaults(self, tmp_path, clean_env):
        """Test that lanes absent from the file keep their default concurrency."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text(VALID_CONFIG)

        app_config, _ = load_config(config_path)

        assert app_config.queue.concurrency_for("sms") == 3
        assert app_config.queue.concurrency_for("push") == 2
        assert app_config.queue.concurrency_for("bulk") == 2

    def test_empty_file_uses_defaults(self, tmp_path, clean_env):
        """Test that an empty file yields the built-in defaults."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("")

        app_config, _ = load_config(config_path)

        assert app_config == AppConfig()
        assert app_config.queue.default_attempts == 3
        assert app_config.queue.backoff_base_ms == 2000
        assert app_config.bulk.chunk_size == 100
        assert app_config.push.max_body_length == 240
        assert app_config.push.ttl_seconds == 86400

    def test_no_file_uses_defaults(self, tmp_path, clean_env, monkeypatch):
        """Test fallback to defaults when no config file is found."""
        monkeypatch.chdir(tmp_path)

        app_config, _ = load_config()

        assert app_config.templates.brand_name == "Event Planner"

    def test_config_file_not_found(self, clean_env):
        """Test error when an explicit config file doesn't exist."""
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(Path("nonexistent_config.yaml"))

        assert "not found" in str(exc_info.value).lower()

    def test_invalid_yaml_syntax(self, tmp_path, clean_env):
        """Test error on invalid YAML syntax."""
        config_path = tmp_path / "bad.yaml"
        config_path.write_text("queue: [unclosed")

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(config_path)

        assert "yaml" in str(exc_info.value).lower()

    def test_top_level_must_be_mapping(self, tmp_path, clean_env):
        """Test error when the file holds a list."""
        config_path = tmp_path / "list.yaml"
        config_path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError):
            load_config(config_path)


class TestConfigurationValidation:
    """Test validation of configuration values."""

    def test_unknown_lane(self):
        """Test that lanes other than email, sms, push and bulk are rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config({"queue": {"lanes": {"fax": {"concurrency": 1}}}})

        assert "fax" in str(exc_info.value)

    def test_zero_concurrency(self):
        """Test that a lane needs at least one worker."""
        with pytest.raises(ConfigurationError):
            parse_config({"queue": {"lanes": {"email": {"concurrency": 0}}}})

    def test_default_attempts_must_be_positive(self):
        """Test that default_attempts below 1 is rejected."""
        with pytest.raises(ConfigurationError):
            parse_config({"queue": {"default_attempts": 0}})

    def test_invalid_duration(self):
        """Test that unparseable durations are reported with their field."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config({"queue": {"backoff_base": "soon"}})

        assert "backoff_base" in str(exc_info.value)

    def test_maintenance_interval_too_short(self):
        """Test that maintenance interval has a lower bound."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config({"maintenance": {"interval": "1s"}})

        assert "short" in str(exc_info.value).lower()

    def test_invalid_log_format(self):
        """Test that log format must be json or key-value."""
        with pytest.raises(ConfigurationError):
            parse_config({"logging": {"format": "xml"}})

    def test_push_ttl_range(self):
        """Test that push TTL is capped at 28 days."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config({"push": {"ttl": "30d"}})

        assert "ttl" in str(exc_info.value).lower()

    def test_push_body_length(self):
        assert parse_config({"push": {"max_body_length": 120}}).push.max_body_length == 120
        with pytest.raises(ConfigurationError):
            parse_config({"push": {"max_body_length": 5}})

    def test_blank_brand_name(self):
        """Test that brand name cannot be whitespace."""
        with pytest.raises(ConfigurationError):
            parse_config({"templates": {"brand_name": "   "}})

    def test_warnings_for_risky_values(self):
        """Test that risky but valid values produce warnings."""
        warnings = check_for_warnings(
            {
                "queue": {
                    "stall_timeout": "5s",
                    "default_attempts": 12,
                    "lanes": {"email": {"concurrency": 40}, "sms": {"concurrency": 20}},
                },
                "bulk": {"chunk_size": 5000},
            }
        )

        assert len(warnings) == 4

    def test_no_warnings_for_defaults(self):
        """Test that the defaults are quiet."""
        assert check_for_warnings({}) == []


class TestDurationParsing:
    """Test duration parsing utilities."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("500ms", 500),
            ("2s", 2000),
            ("1m30s", 90000),
            ("1h", 3600000),
            ("7d", 604800000),
            ("PT0.5S", 500),
            ("PT1H30M", 5400000),
            ("P1DT12H", 129600000),
            (" 15 m ", 900000),
        ],
    )
    def test_parse_to_milliseconds(self, value, expected):
        assert parse_duration_ms(value) == expected

    def test_parse_to_seconds(self):
        """Test that the seconds form floors and refuses sub-second values."""
        assert parse_duration("30s") == 30
        assert parse_duration("PT15M") == 900
        assert parse_duration("1500ms") == 1

        with pytest.raises(DurationParseError, match="at least one second"):
            parse_duration("500ms")

    @pytest.mark.parametrize("value", ["", "soon", "15x", "s30", "1h 30", "P", "PT", "0s"])
    def test_invalid(self, value):
        with pytest.raises(DurationParseError):
            parse_duration_ms(value)

    def test_format(self):
        assert format_duration(250) == "250ms"
        assert format_duration(5400000) == "1h30m"
        assert format_duration(86401500) == "1d1s500ms"

    def test_check_range(self):
        """Test range validation in both directions."""
        with pytest.raises(DurationParseError, match=r"Interval too short: 2s \(minimum 5s\)"):
            check_duration_range(2000, 5000, 60000, label="Interval")

        with pytest.raises(DurationParseError, match="too long"):
            check_duration_range(172800000, 1000, 86400000)

        check_duration_range(60000, 1000, 3600000)


class TestEnvironmentVariables:
    """Test environment variable loading and validation."""

    def test_no_variables_required(self, clean_env):
        """Test that an empty environment loads with development defaults."""
        env_config = load_environment_config()

        assert env_config.environment == "development"
        assert env_config.mock_allowed is True
        assert env_config.database_url == "sqlite:///./data/notifier.db"
        assert env_config.smtp_configured is False

    def test_provider_credentials(self, clean_env, monkeypatch):
        """Test that provider credentials are picked up."""
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("SMTP_HOST", "smtp.test.com")
        monkeypatch.setenv("SMTP_PORT", "465")
        monkeypatch.setenv("SMTP_USER", "mailer@test.com")
        monkeypatch.setenv("SMTP_PASS", "secret")
        monkeypatch.setenv("TWILIO_ACCOUNT_SID", "AC123")
        monkeypatch.setenv("TWILIO_AUTH_TOKEN", "token")
        monkeypatch.setenv("TWILIO_PHONE_NUMBER", "+15550001111")

        env_config = load_environment_config()

        assert env_config.mock_allowed is False
        assert env_config.smtp_port == 465
        assert env_config.smtp_configured is True
        assert env_config.twilio_configured is True
        assert env_config.vonage_configured is False
        assert env_config.sender_email == "mailer@test.com"

    def test_invalid_environment(self, clean_env, monkeypatch):
        """Test error on an unknown ENVIRONMENT."""
        monkeypatch.setenv("ENVIRONMENT", "qa")

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        assert "ENVIRONMENT" in str(exc_info.value)

    def test_invalid_smtp_port(self, clean_env, monkeypatch):
        """Test error when SMTP_PORT is invalid."""
        monkeypatch.setenv("SMTP_PORT", "invalid")

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        assert "SMTP_PORT" in str(exc_info.value)

    def test_invalid_from_email(self, clean_env, monkeypatch):
        """Test error when FROM_EMAIL is malformed."""
        monkeypatch.setenv("FROM_EMAIL", "invalid-email")

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        assert "FROM_EMAIL" in str(exc_info.value)

    def test_unpaired_credentials(self, clean_env, monkeypatch):
        """Test that half-set credential pairs are rejected."""
        monkeypatch.setenv("SMTP_USER", "mailer@test.com")
        monkeypatch.setenv("VONAGE_API_KEY", "key")

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        assert len(exc_info.value.errors) == 2

    def test_push_credentials(self, clean_env, monkeypatch):
        monkeypatch.setenv("FCM_PROJECT_ID", "planner-app")
        monkeypatch.setenv("FCM_ACCESS_TOKEN", "ya29.token")
        monkeypatch.setenv("EXPO_ACCESS_TOKEN", "expo-token")

        env_config = load_environment_config()

        assert env_config.fcm_project_id == "planner-app"
        assert env_config.fcm_configured is True
        assert env_config.expo_configured is True

    def test_unpaired_fcm_credentials(self, clean_env, monkeypatch):
        monkeypatch.setenv("FCM_PROJECT_ID", "planner-app")

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        assert "FCM_ACCESS_TOKEN" in str(exc_info.value)

    def test_sender_email_fallbacks(self):
        """Test the From address resolution order."""
        assert EnvironmentConfig(from_email="a@x.com", smtp_user="b@x.com").sender_email == "a@x.com"
        assert EnvironmentConfig(smtp_user="b@x.com").sender_email == "b@x.com"
        assert EnvironmentConfig(smtp_host="smtp.x.com", smtp_user="apikey").sender_email == "noreply@smtp.x.com"
        assert EnvironmentConfig().sender_email is None

    def test_environment_warnings_without_providers(self):
        """Test that production without providers warns for both channels."""
        warnings = check_environment_warnings(EnvironmentConfig(environment="production"))

        assert len(warnings) == 2
        assert check_environment_warnings(EnvironmentConfig(environment="test")) == []


class TestConfigurationHelpers:
    """Test configuration helper functions."""

    def test_check_config_file(self, tmp_path):
        """Test validating a file without the environment."""
        valid = tmp_path / "valid.yaml"
        valid.write_text(VALID_CONFIG)
        assert check_config_file(valid) == []
        assert validate_config_file(valid) is True

        invalid = tmp_path / "invalid.yaml"
        invalid.write_text("queue:\n  default_attempts: 0\n  lanes: []\n")
        problems = check_config_file(invalid)
        assert len(problems) == 2
        assert problems[0].startswith("queue.default_attempts")
        assert validate_config_file(invalid) is False

    def test_check_config_file_unreadable_yaml(self, tmp_path):
        broken = tmp_path / "broken.yaml"
        broken.write_text("queue: [unclosed")

        assert "Failed to parse YAML" in check_config_file(broken)[0]

    def test_example_config_is_valid(self):
        """Test that the shipped example configuration validates."""
        example = Path(__file__).parent.parent / "config.example.yaml"
        assert validate_config_file(example) is True


# Pytest fixtures
@pytest.fixture
def clean_env(monkeypatch):
    """Remove every variable the loader reads."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
