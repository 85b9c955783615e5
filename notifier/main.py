"""Main entry point for the notifier service and its command-line tools."""

import argparse
import json
import signal
import sys
import threading
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv

from notifier.bootstrap import Application, build_application
from notifier.config.duration import parse_duration, parse_duration_ms
from notifier.config.environment import LOG_LEVELS, EnvironmentConfig
from notifier.config.exceptions import ConfigurationError
from notifier.config.loader import check_config_file, find_config_file, load_config
from notifier.config.models import AppConfig
from notifier.dispatcher import QUEUED_CHANNELS, SEND_CHANNELS, Dispatcher, OperationResult
from notifier.domain.models import InAppCategory, JobType, Lane
from notifier.logging import get_logger
from notifier.logging.config import configure_logging

logger = get_logger(__name__, component="cli")

CATEGORIES = [category.value for category in InAppCategory]


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and resolve the effective log level.

    Log level priority: CLI > LOG_LEVEL environment variable > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif env_config.log_level:
        pass
    elif app_config.logging and app_config.logging.level:
        env_config.log_level = app_config.logging.level
    else:
        env_config.log_level = "INFO"

    return app_config, env_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="notifier",
        description="Notification dispatch service: email, SMS, push and in-app delivery with a durable job queue",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml, then config/config.yaml, then built-in defaults)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=LOG_LEVELS,
        help="Log level (overrides config and environment)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("serve", help="Run queue workers and maintenance until interrupted")

    send = commands.add_parser("send", help="Send one message now")
    _add_message_arguments(send, SEND_CHANNELS)
    send.add_argument("--category", choices=CATEGORIES, default=None, help="In-app category")

    enqueue = commands.add_parser("enqueue", help="Queue one message")
    _add_message_arguments(enqueue, QUEUED_CHANNELS)
    enqueue.add_argument(
        "--job-type",
        default=JobType.TRANSACTIONAL.value,
        choices=[job_type.value for job_type in JobType],
        help="Job type (default: transactional)",
    )
    enqueue.add_argument("--delay", default=None, help="Delay before the first attempt (e.g. 30s, 5m)")
    enqueue.add_argument("--max-attempts", type=int, default=None, help="Attempt budget")

    bulk = commands.add_parser("bulk", help="Send one template to many recipients")
    bulk.add_argument("channel", nargs="+", choices=list(QUEUED_CHANNELS), help="Channel(s)")
    bulk.add_argument("--template", required=True, help="Template name")
    bulk.add_argument(
        "--recipients",
        required=True,
        type=Path,
        help="JSON file with a list of addresses or recipient objects",
    )
    bulk.add_argument("--data", type=_json_object, default={}, help="Shared template data as a JSON object")
    bulk.add_argument("--inline", action="store_true", help="Send now instead of queueing")

    for name, help_text in (("status", "Show a job"), ("cancel", "Cancel a job")):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("job_id", help="Job id")
        sub.add_argument("--lane", choices=[lane.value for lane in Lane], default=None, help="Lane of the job")

    commands.add_parser("stats", help="Job counts per lane and state")

    cleanup = commands.add_parser("cleanup", help="Delete completed and failed jobs")
    cleanup.add_argument("--lane", choices=[lane.value for lane in Lane], default=None, help="Only this lane")
    cleanup.add_argument("--older-than", default=None, help="Only jobs finished longer ago than this (e.g. 7d)")

    _add_inbox_commands(commands)
    _add_template_commands(commands)
    _add_preference_commands(commands)

    commands.add_parser("health", help="Provider and queue health")
    commands.add_parser("check-config", help="Validate the configuration file without connecting to anything")
    return parser


def _add_message_arguments(parser: argparse.ArgumentParser, channels: Sequence[str]) -> None:
    parser.add_argument("channel", choices=list(channels), help="Channel")
    parser.add_argument("recipient", help="Email address, phone number, device token or (in_app) user id")
    parser.add_argument("template", help="Template name")
    parser.add_argument("--data", type=_json_object, default={}, help="Template data as a JSON object")
    parser.add_argument("--user-id", default=None, help="Recipient's user id (enables preference checks)")


def _add_inbox_commands(commands: argparse._SubParsersAction) -> None:
    inbox = commands.add_parser("inbox", help="Read and manage a user's in-app notifications")
    actions = inbox.add_subparsers(dest="inbox_command", required=True)

    listing = actions.add_parser("list", help="List notifications, newest first")
    listing.add_argument("user_id", help="User id")
    listing.add_argument("--limit", type=int, default=50, help="Page size (1-100, default: 50)")
    listing.add_argument("--offset", type=int, default=0, help="Notifications to skip")
    listing.add_argument("--unread", action="store_true", help="Only unread notifications")
    listing.add_argument("--category", choices=CATEGORIES, default=None, help="Only this category")

    for name, help_text in (("read", "Mark one notification read"), ("delete", "Delete one notification")):
        sub = actions.add_parser(name, help=help_text)
        sub.add_argument("user_id", help="User id")
        sub.add_argument("notification_id", type=int, help="Notification id")

    read_all = actions.add_parser("read-all", help="Mark every unread notification read")
    read_all.add_argument("user_id", help="User id")
    read_all.add_argument("--category", choices=CATEGORIES, default=None, help="Only this category")

    stats = actions.add_parser("stats", help="Totals, unread count and counts per category")
    stats.add_argument("user_id", help="User id")


def _add_template_commands(commands: argparse._SubParsersAction) -> None:
    templates = commands.add_parser("templates", help="Manage stored templates")
    actions = templates.add_subparsers(dest="templates_command", required=True)

    store = actions.add_parser("set", help="Store a template; replacing one bumps its version")
    store.add_argument("name", help="Template name")
    store.add_argument("channel", choices=list(SEND_CHANNELS), help="Channel")
    body = store.add_mutually_exclusive_group(required=True)
    body.add_argument("--body", default=None, help="Template body")
    body.add_argument("--body-file", type=Path, default=None, help="File holding the template body")
    store.add_argument("--subject", default=None, help="Subject (email) or title (push, in_app) template")
    store.add_argument("--variables", nargs="*", default=[], help="Variable names the template expects")


def _add_preference_commands(commands: argparse._SubParsersAction) -> None:
    preferences = commands.add_parser("preferences", help="Read or change a user's channel preferences")
    actions = preferences.add_subparsers(dest="preferences_command", required=True)

    show = actions.add_parser("get", help="Show whether a user accepts a channel")
    show.add_argument("user_id", help="User id")
    show.add_argument("channel", choices=list(SEND_CHANNELS), help="Channel")

    change = actions.add_parser("set", help="Enable or disable a channel for a user")
    change.add_argument("user_id", help="User id")
    change.add_argument("channel", choices=list(SEND_CHANNELS), help="Channel")
    change.add_argument("state", choices=["on", "off"], help="on to enable, off to disable")


def _json_object(value: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}")
    if not isinstance(parsed, dict):
        raise argparse.ArgumentTypeError("expected a JSON object")
    return parsed


def _options(args: argparse.Namespace) -> Dict[str, Any]:
    options: Dict[str, Any] = {}
    if args.user_id:
        options["user_id"] = args.user_id
    if getattr(args, "category", None):
        options["category"] = args.category
    return options


def _template_body(args: argparse.Namespace) -> str:
    if args.body is not None:
        return args.body
    try:
        return args.body_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot read template body from {args.body_file}: {e}")


def _duration_ms(value: Optional[str]) -> int:
    if not value:
        return 0
    try:
        return parse_duration_ms(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid delay: {e}", suggestions=["Use a duration such as 30s, 5m or PT1H"])


def _older_than(value: Optional[str]) -> Optional[timedelta]:
    if not value:
        return None
    try:
        return timedelta(seconds=parse_duration(value))
    except ValueError as e:
        raise ConfigurationError(f"Invalid --older-than: {e}", suggestions=["Use a duration such as 1h or 7d"])


def _load_recipients(path: Path) -> List[Any]:
    try:
        recipients = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read recipients from {path}: {e}")
    if not isinstance(recipients, list):
        raise ConfigurationError(f"Recipients file {path} must contain a JSON list")
    return recipients


def _print(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))


def check_config(config_path: Optional[Path]) -> int:
    """Validate the configuration file only; environment and database are not touched."""
    try:
        config_file = find_config_file(config_path)
    except ConfigurationError as e:
        _print({"valid": False, "path": str(config_path), "errors": [e.message]})
        return 1
    if config_file is None:
        _print({"valid": True, "path": None, "errors": [], "note": "no configuration file found, defaults apply"})
        return 0
    problems = check_config_file(config_file)
    _print({"valid": not problems, "path": str(config_file), "errors": problems})
    return 0 if not problems else 1


def run_command(app: Application, args: argparse.Namespace) -> int:
    """Execute a one-shot command, print its JSON result and return the exit code."""
    dispatcher = app.dispatcher
    command = args.command

    if command == "send":
        result = dispatcher.send_now(args.channel, args.recipient, args.template, args.data, _options(args))
        _print(result.to_dict())
        return 0 if result.success else 1

    if command == "enqueue":
        submission = dispatcher.send_later(
            args.channel,
            args.recipient,
            args.template,
            args.data,
            _options(args),
            job_type=args.job_type,
            delay_ms=_duration_ms(args.delay),
            max_attempts=args.max_attempts,
        )
        _print(submission.to_dict())
        return 0 if submission.success else 1

    if command == "bulk":
        outcome = dispatcher.send_bulk(
            args.channel,
            _load_recipients(args.recipients),
            args.template,
            args.data,
            inline=args.inline,
        )
        _print(outcome.to_dict())
        return 0 if outcome.success else 1

    if command == "status":
        status = dispatcher.job_status(args.job_id, args.lane)
        _print(status.to_dict())
        return 0 if status.found else 1

    if command == "cancel":
        cancelled = dispatcher.cancel_job(args.job_id, args.lane)
        _print(cancelled.to_dict())
        return 0 if cancelled.cancelled else 1

    if command == "stats":
        _print(dispatcher.lane_stats())
        return 0

    if command == "cleanup":
        _print(dispatcher.cleanup_jobs(args.lane, _older_than(args.older_than)).to_dict())
        return 0

    if command == "inbox":
        return _finish(_run_inbox(dispatcher, args))

    if command == "templates":
        return _finish(
            dispatcher.set_template(
                args.name, args.channel, _template_body(args), subject=args.subject, variables=args.variables
            )
        )

    if command == "preferences":
        if args.preferences_command == "set":
            return _finish(dispatcher.set_preference(args.user_id, args.channel, args.state == "on"))
        return _finish(dispatcher.get_preference(args.user_id, args.channel))

    if command == "health":
        report = dispatcher.health()
        _print(report.to_dict())
        return 0 if report.healthy else 1

    raise ValueError(f"Unknown command: {command}")


def _run_inbox(dispatcher: Dispatcher, args: argparse.Namespace) -> OperationResult:
    action = args.inbox_command
    if action == "list":
        return dispatcher.list_inbox(
            args.user_id, args.limit, args.offset, unread_only=args.unread, category=args.category
        )
    if action == "read":
        return dispatcher.mark_read(args.notification_id, args.user_id)
    if action == "read-all":
        return dispatcher.mark_all_read(args.user_id, args.category)
    if action == "delete":
        return dispatcher.delete_notification(args.notification_id, args.user_id)
    return dispatcher.inbox_stats(args.user_id)


def _finish(result: OperationResult) -> int:
    _print(result.to_dict())
    return 0 if result.success else 1


def serve(app: Application, wait_for_shutdown: Optional[Callable[[threading.Event], None]] = None) -> int:
    """
    Run queue workers and maintenance until SIGINT or SIGTERM.

    Args:
        app: Built application
        wait_for_shutdown: Blocks until shutdown is requested (default: waits on the event)

    Returns:
        Exit code
    """
    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum},
        )
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    app.start()
    logger.info("Notifier running. Press Ctrl+C to stop", extra={"event": "service.serve.started"})

    try:
        if wait_for_shutdown is not None:
            wait_for_shutdown(shutdown_event)
        else:
            while not shutdown_event.is_set():
                shutdown_event.wait(1.0)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down", extra={"event": "service.keyboard_interrupt"})
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point for the notifier CLI.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    load_dotenv()
    start_time = time.time()
    args = build_parser().parse_args(argv)

    if args.command == "check-config":
        return check_config(args.config)

    app: Optional[Application] = None
    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        log_format = app_config.logging.format if app_config.logging else "key-value"
        configure_logging(
            level=env_config.log_level,
            format_type=log_format,
            environment=env_config.environment,
            stream=sys.stdout if args.command == "serve" else sys.stderr,
        )
        logger.info(
            "Notifier starting",
            extra={
                "event": "service.starting",
                "command": args.command,
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
            },
        )

        app = build_application(app_config, env_config)
        if args.command == "serve":
            return serve(app)
        return run_command(app, args)

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error",
            extra={"event": "service.failed", "error_type": type(e).__name__, "error": str(e)},
            exc_info=True,
        )
        return 1
    finally:
        if app is not None:
            app.close()
            logger.info(
                "Notifier stopped",
                extra={"event": "service.stopping", "uptime_seconds": round(time.time() - start_time, 2)},
            )


if __name__ == "__main__":
    sys.exit(main())
