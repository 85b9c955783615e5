"""Builds and wires every component at process start.

Nothing in the package is a module-level singleton: each component is
constructed here and handed to the components that use it.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from notifier.config.environment import EnvironmentConfig
from notifier.config.models import AppConfig
from notifier.dispatcher import Dispatcher
from notifier.logging import get_logger
from notifier.notifications import InAppInbox, NotificationService, NotificationSink
from notifier.persistence import Database
from notifier.preferences import DatabasePreferenceSource, PreferenceGate
from notifier.providers import ProviderSendAdapter, build_email_adapter, build_push_adapter, build_sms_adapter
from notifier.queue import BulkProcessor, JobHandlers, JobQueueEngine, JobStore
from notifier.scheduler import MaintenanceScheduler
from notifier.templates import DatabaseTemplateSource, FilesystemTemplateCache, TemplateRenderer
from notifier.utils.timestamps import utc_now

logger = get_logger(__name__, component="bootstrap")


@dataclass
class Application:
    """All long-lived components of one process."""

    app_config: AppConfig
    env_config: EnvironmentConfig
    database: Database
    renderer: TemplateRenderer
    email_adapter: ProviderSendAdapter
    sms_adapter: ProviderSendAdapter
    push_adapter: ProviderSendAdapter
    inbox: InAppInbox
    service: NotificationService
    engine: JobQueueEngine
    bulk: BulkProcessor
    scheduler: MaintenanceScheduler
    dispatcher: Dispatcher

    def start(self) -> None:
        """Start queue workers and background maintenance."""
        self.engine.start()
        self.scheduler.start()

    def close(self) -> None:
        """Stop workers (letting running jobs finish) and release resources."""
        self.scheduler.shutdown(wait=False)
        self.engine.shutdown(wait=True)
        self.email_adapter.close()
        self.sms_adapter.close()
        self.push_adapter.close()
        self.database.close()
        logger.info("Application closed", extra={"event": "app.closed"})


def build_application(
    app_config: AppConfig,
    env_config: EnvironmentConfig,
    database: Optional[Database] = None,
    email_adapter: Optional[ProviderSendAdapter] = None,
    sms_adapter: Optional[ProviderSendAdapter] = None,
    push_adapter: Optional[ProviderSendAdapter] = None,
    clock: Callable[[], datetime] = utc_now,
) -> Application:
    """Construct the component graph.

    Args:
        app_config: Validated YAML configuration
        env_config: Validated environment configuration
        database: Existing Database (default: opened from DATABASE_URL)
        email_adapter: Email adapter override (tests)
        sms_adapter: SMS adapter override (tests)
        push_adapter: Push adapter override (tests)
        clock: Time source for the queue and records

    Returns:
        Application; call start() to run workers and close() when done
    """
    database = database or Database(env_config.database_url)

    templates = DatabaseTemplateSource(database)
    preferences = DatabasePreferenceSource(database)
    renderer = TemplateRenderer(
        stored_templates=templates,
        files=FilesystemTemplateCache(app_config.templates.directory),
        brand_name=app_config.templates.brand_name,
    )
    email_adapter = email_adapter or build_email_adapter(app_config, env_config)
    sms_adapter = sms_adapter or build_sms_adapter(app_config, env_config)
    push_adapter = push_adapter or build_push_adapter(app_config, env_config)
    inbox = InAppInbox(database, clock=clock)

    service = NotificationService(
        renderer=renderer,
        email_adapter=email_adapter,
        sms_adapter=sms_adapter,
        gate=PreferenceGate(preferences),
        sink=NotificationSink(database, clock=clock),
        app_config=app_config,
        env_config=env_config,
        push_adapter=push_adapter,
        inbox=inbox,
    )
    bulk = BulkProcessor(service.send, app_config.bulk, clock=clock)
    handlers = JobHandlers(service, bulk)
    engine = JobQueueEngine(JobStore(database), handlers.processors(), app_config.queue, clock=clock)
    scheduler = MaintenanceScheduler(engine, app_config.maintenance)
    dispatcher = Dispatcher(
        service,
        engine,
        bulk,
        email_adapter,
        sms_adapter,
        push_adapter=push_adapter,
        inbox=inbox,
        templates=templates,
        preferences=preferences,
        clock=clock,
    )

    logger.info(
        "Application components built",
        extra={
            "event": "app.built",
            "email_providers": email_adapter.configured_providers,
            "sms_providers": sms_adapter.configured_providers,
            "push_providers": push_adapter.configured_providers,
            "mock_fallback": env_config.mock_allowed,
        },
    )

    return Application(
        app_config=app_config,
        env_config=env_config,
        database=database,
        renderer=renderer,
        email_adapter=email_adapter,
        sms_adapter=sms_adapter,
        push_adapter=push_adapter,
        inbox=inbox,
        service=service,
        engine=engine,
        bulk=bulk,
        scheduler=scheduler,
        dispatcher=dispatcher,
    )
