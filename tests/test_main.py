"""Unit tests for the main entry point.

Tests the CLI including:
- Configuration loading with log level priority (CLI > env > config)
- Argument parsing for every command
- One-shot command execution and exit codes
- Serve mode lifecycle
- Error handling in main()
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest

from notifier.config.environment import EnvironmentConfig
from notifier.config.exceptions import ConfigurationError
from notifier.config.models import AppConfig, LoggingConfig
from notifier.dispatcher import OperationResult
from notifier.main import build_parser, load_runtime_config, main, run_command, serve
from notifier.providers import DeliveryResult
from notifier.queue import BulkResult, CancelResult, CleanupResult, JobStatusResult

NOW = datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def app():
    """Application whose dispatcher is a mock."""
    app = Mock()
    app.dispatcher.send_now.return_value = DeliveryResult(success=True, provider="smtp", message_id="m-1")
    return app


def run(app, argv):
    return run_command(app, build_parser().parse_args(argv))


class TestLoadRuntimeConfig:
    """Test suite for load_runtime_config helper."""

    def configs(self, env_level=None, file_level="WARNING"):
        return AppConfig(logging=LoggingConfig(level=file_level)), EnvironmentConfig(log_level=env_level)

    def test_cli_wins(self):
        with patch("notifier.main.load_config", return_value=self.configs(env_level="ERROR")):
            _, env_config = load_runtime_config(None, "DEBUG")

        assert env_config.log_level == "DEBUG"

    def test_environment_over_file(self):
        with patch("notifier.main.load_config", return_value=self.configs(env_level="ERROR")):
            _, env_config = load_runtime_config(None, None)

        assert env_config.log_level == "ERROR"

    def test_file_level(self):
        with patch("notifier.main.load_config", return_value=self.configs()):
            _, env_config = load_runtime_config(None, None)

        assert env_config.log_level == "WARNING"

    def test_configuration_error_propagates(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_runtime_config(tmp_path / "missing.yaml", None)


class TestParser:
    """Test suite for argument parsing."""

    def test_send(self):
        args = build_parser().parse_args(
            ["send", "email", "ana@example.com", "welcome", "--data", '{"user": {"firstName": "Ana"}}', "--user-id", "7"]
        )

        assert (args.command, args.channel, args.recipient, args.template) == ("send", "email", "ana@example.com", "welcome")
        assert args.data == {"user": {"firstName": "Ana"}}
        assert args.user_id == "7"

    def test_enqueue_defaults(self):
        args = build_parser().parse_args(["enqueue", "sms", "+33612345678", "otp"])

        assert args.job_type == "transactional"
        assert args.delay is None
        assert args.max_attempts is None

    def test_bulk_channels(self, tmp_path):
        args = build_parser().parse_args(
            ["bulk", "email", "sms", "--template", "news", "--recipients", str(tmp_path / "r.json"), "--inline"]
        )

        assert args.channel == ["email", "sms"]
        assert args.inline is True

    @pytest.mark.parametrize("data", ["{not json", "[1, 2]"])
    def test_invalid_data(self, data):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["send", "email", "a@b.co", "welcome", "--data", data])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_push_and_in_app_are_not_queued(self):
        """Test that enqueue accepts push but not in_app."""
        assert build_parser().parse_args(["enqueue", "push", "ExpoPushToken[a]", "welcome"]).channel == "push"
        with pytest.raises(SystemExit):
            build_parser().parse_args(["enqueue", "in_app", "42", "welcome"])

    def test_templates_body_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["templates", "set", "welcome", "email"])

    def test_preferences_state(self):
        args = build_parser().parse_args(["preferences", "set", "7", "sms", "on"])

        assert (args.preferences_command, args.user_id, args.channel, args.state) == ("set", "7", "sms", "on")
        with pytest.raises(SystemExit):
            build_parser().parse_args(["preferences", "set", "7", "sms", "maybe"])

    def test_global_options(self, tmp_path):
        args = build_parser().parse_args(["--config", str(tmp_path / "c.yaml"), "--log-level", "DEBUG", "stats"])

        assert args.config == tmp_path / "c.yaml"
        assert args.log_level == "DEBUG"


class TestRunCommand:
    """Test suite for one-shot commands."""

    def test_send(self, app, capsys):
        code = run(app, ["send", "email", "ana@example.com", "welcome", "--user-id", "7"])

        assert code == 0
        app.dispatcher.send_now.assert_called_once_with("email", "ana@example.com", "welcome", {}, {"user_id": "7"})
        assert json.loads(capsys.readouterr().out)["message_id"] == "m-1"

    def test_send_failure_exit_code(self, app):
        app.dispatcher.send_now.return_value = DeliveryResult(success=False, error="validation_failed")

        assert run(app, ["send", "sms", "bad", "otp"]) == 1

    def test_enqueue(self, app, capsys):
        app.dispatcher.send_later.return_value = Mock(success=True, to_dict=Mock(return_value={"success": True}))

        code = run(app, ["enqueue", "sms", "+33612345678", "otp", "--job-type", "otp", "--delay", "30s", "--max-attempts", "5"])

        assert code == 0
        _, kwargs = app.dispatcher.send_later.call_args
        assert kwargs == {"job_type": "otp", "delay_ms": 30000, "max_attempts": 5}

    def test_enqueue_invalid_delay(self, app):
        with pytest.raises(ConfigurationError, match="Invalid delay"):
            run(app, ["enqueue", "sms", "+33612345678", "otp", "--delay", "soon"])

    def test_bulk(self, app, tmp_path, capsys):
        recipients = tmp_path / "recipients.json"
        recipients.write_text(json.dumps(["a@b.co", {"email": "c@d.co", "user_id": 3}]))
        app.dispatcher.send_bulk.return_value = BulkResult(
            success=True, sent=2, failed=0, skipped=0, total=2, errors=[], processed_at=NOW, chunks=1
        )

        code = run(app, ["bulk", "email", "--template", "news", "--recipients", str(recipients), "--inline"])

        assert code == 0
        app.dispatcher.send_bulk.assert_called_once_with(
            ["email"], ["a@b.co", {"email": "c@d.co", "user_id": 3}], "news", {}, inline=True
        )
        assert json.loads(capsys.readouterr().out)["sent"] == 2

    @pytest.mark.parametrize("content", ["{broken", '{"email": "a@b.co"}'])
    def test_bulk_bad_recipients_file(self, app, tmp_path, content):
        recipients = tmp_path / "recipients.json"
        recipients.write_text(content)

        with pytest.raises(ConfigurationError):
            run(app, ["bulk", "email", "--template", "news", "--recipients", str(recipients)])

    def test_status_and_cancel(self, app):
        app.dispatcher.job_status.return_value = JobStatusResult(found=False, error="Job not found")
        app.dispatcher.cancel_job.return_value = CancelResult(job_id="job_1", found=True, cancelled=True)

        assert run(app, ["status", "job_1", "--lane", "sms"]) == 1
        assert run(app, ["cancel", "job_1"]) == 0
        app.dispatcher.job_status.assert_called_once_with("job_1", "sms")
        app.dispatcher.cancel_job.assert_called_once_with("job_1", None)

    def test_stats(self, app, capsys):
        app.dispatcher.lane_stats.return_value = {"email": {"waiting": 1}}

        assert run(app, ["stats"]) == 0
        assert json.loads(capsys.readouterr().out) == {"email": {"waiting": 1}}

    def test_cleanup(self, app):
        app.dispatcher.cleanup_jobs.return_value = CleanupResult(removed=0)

        assert run(app, ["cleanup", "--lane", "bulk", "--older-than", "7d"]) == 0
        app.dispatcher.cleanup_jobs.assert_called_once_with("bulk", timedelta(days=7))

    def test_health(self, app):
        app.dispatcher.health.return_value = Mock(healthy=False, to_dict=Mock(return_value={"healthy": False}))

        assert run(app, ["health"]) == 1


class TestAdminCommands:
    """Test suite for inbox, template and preference commands."""

    def test_templates_set(self, app, capsys):
        app.dispatcher.set_template.return_value = OperationResult(
            success=True, data={"name": "welcome", "channel": "email", "version": 2}
        )

        code = run(
            app,
            ["templates", "set", "welcome", "email", "--body", "<p>Hi {{name}}</p>", "--subject", "Hello", "--variables", "name"],
        )

        assert code == 0
        app.dispatcher.set_template.assert_called_once_with(
            "welcome", "email", "<p>Hi {{name}}</p>", subject="Hello", variables=["name"]
        )
        assert json.loads(capsys.readouterr().out)["data"]["version"] == 2

    def test_templates_set_from_file(self, app, tmp_path):
        body = tmp_path / "reminder.txt"
        body.write_text("Reminder: {{event.title}}")
        app.dispatcher.set_template.return_value = OperationResult(success=True)

        run(app, ["templates", "set", "event-reminder", "sms", "--body-file", str(body)])

        assert app.dispatcher.set_template.call_args.args[2] == "Reminder: {{event.title}}"

    def test_templates_missing_file(self, app, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read template body"):
            run(app, ["templates", "set", "welcome", "sms", "--body-file", str(tmp_path / "missing.txt")])

    def test_templates_set_failure(self, app):
        app.dispatcher.set_template.return_value = OperationResult(success=False, error="validation_failed")

        assert run(app, ["templates", "set", "welcome", "sms", "--body", "Hi"]) == 1

    def test_preferences(self, app, capsys):
        app.dispatcher.get_preference.return_value = OperationResult(success=True, data={"is_enabled": False})
        app.dispatcher.set_preference.return_value = OperationResult(success=True, data={"is_enabled": True})

        assert run(app, ["preferences", "get", "7", "sms"]) == 0
        assert run(app, ["preferences", "set", "7", "sms", "on"]) == 0
        app.dispatcher.get_preference.assert_called_once_with("7", "sms")
        app.dispatcher.set_preference.assert_called_once_with("7", "sms", True)

    def test_inbox_list(self, app, capsys):
        app.dispatcher.list_inbox.return_value = OperationResult(success=True, data={"notifications": []})

        code = run(app, ["inbox", "list", "42", "--limit", "10", "--unread", "--category", "success"])

        assert code == 0
        app.dispatcher.list_inbox.assert_called_once_with("42", 10, 0, unread_only=True, category="success")
        assert json.loads(capsys.readouterr().out) == {"success": True, "data": {"notifications": []}}

    def test_inbox_actions(self, app):
        app.dispatcher.mark_read.return_value = OperationResult(success=False, error="not_found")
        app.dispatcher.mark_all_read.return_value = OperationResult(success=True, data={"updated_count": 2})
        app.dispatcher.delete_notification.return_value = OperationResult(success=True)
        app.dispatcher.inbox_stats.return_value = OperationResult(success=True)

        assert run(app, ["inbox", "read", "42", "9"]) == 1
        assert run(app, ["inbox", "read-all", "42"]) == 0
        assert run(app, ["inbox", "delete", "42", "9"]) == 0
        assert run(app, ["inbox", "stats", "42"]) == 0
        app.dispatcher.mark_read.assert_called_once_with(9, "42")
        app.dispatcher.mark_all_read.assert_called_once_with("42", None)
        app.dispatcher.delete_notification.assert_called_once_with(9, "42")


class TestServe:
    """Test suite for serve mode."""

    @patch("signal.signal")
    def test_serve_starts_and_returns(self, mock_signal, app):
        """Test that serve starts the app and returns when shutdown is requested."""
        code = serve(app, wait_for_shutdown=lambda event: event.set())

        assert code == 0
        app.start.assert_called_once()
        assert mock_signal.call_count == 2

    @patch("signal.signal")
    def test_keyboard_interrupt(self, mock_signal, app):
        def interrupt(event):
            raise KeyboardInterrupt

        assert serve(app, wait_for_shutdown=interrupt) == 0


class TestMain:
    """Test suite for main()."""

    @patch("notifier.main.build_application")
    @patch("notifier.main.configure_logging")
    @patch("notifier.main.load_config")
    def test_one_shot_command(self, mock_load, mock_logging, mock_build, app, capsys):
        """Test that a command runs and the application is closed."""
        mock_load.return_value = (AppConfig(), EnvironmentConfig(environment="test"))
        mock_build.return_value = app
        app.dispatcher.lane_stats.return_value = {}

        code = main(["--log-level", "DEBUG", "stats"])

        assert code == 0
        mock_logging.assert_called_once()
        assert mock_logging.call_args.kwargs["level"] == "DEBUG"
        assert mock_logging.call_args.kwargs["environment"] == "test"
        app.close.assert_called_once()

    @patch("notifier.main.serve", return_value=0)
    @patch("notifier.main.build_application")
    @patch("notifier.main.configure_logging")
    @patch("notifier.main.load_config")
    def test_serve_command(self, mock_load, mock_logging, mock_build, mock_serve, app):
        mock_load.return_value = (AppConfig(), EnvironmentConfig())
        mock_build.return_value = app

        assert main(["serve"]) == 0
        mock_serve.assert_called_once_with(app)
        app.close.assert_called_once()

    @patch("notifier.main.load_config")
    def test_configuration_error(self, mock_load, capsys):
        mock_load.side_effect = ConfigurationError("Configuration file not found: missing.yaml")

        assert main(["--config", "missing.yaml", "stats"]) == 1
        assert "Configuration Error" in capsys.readouterr().err

    @patch("notifier.main.build_application")
    @patch("notifier.main.configure_logging")
    @patch("notifier.main.load_config")
    def test_fatal_error(self, mock_load, mock_logging, mock_build, capsys):
        mock_load.return_value = (AppConfig(), EnvironmentConfig())
        mock_build.side_effect = RuntimeError("unable to open database file")

        assert main(["stats"]) == 1
        assert "Fatal error: unable to open database file" in capsys.readouterr().err


class TestCheckConfig:
    """Test suite for the check-config command."""

    @patch("notifier.main.load_config")
    def test_valid_file(self, mock_load, tmp_path, capsys):
        """Test that check-config validates without loading the environment."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("bulk:\n  chunk_size: 50\n")

        assert main(["--config", str(config_path), "check-config"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output == {"valid": True, "path": str(config_path), "errors": []}
        mock_load.assert_not_called()

    def test_invalid_file(self, tmp_path, capsys):
        config_path = tmp_path / "config.yaml"
        config_path.write_text("queue:\n  backoff_base: soon\n")

        assert main(["--config", str(config_path), "check-config"]) == 1

        output = json.loads(capsys.readouterr().out)
        assert output["valid"] is False
        assert "queue.backoff_base" in output["errors"][0]

    def test_missing_file(self, tmp_path, capsys):
        assert main(["--config", str(tmp_path / "missing.yaml"), "check-config"]) == 1

        assert "not found" in json.loads(capsys.readouterr().out)["errors"][0]

    def test_defaults_when_no_file(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)

        assert main(["check-config"]) == 0

        assert json.loads(capsys.readouterr().out)["path"] is None
