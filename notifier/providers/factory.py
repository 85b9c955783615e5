"""Factory functions building the per-channel send adapters."""

from notifier.config.environment import EnvironmentConfig
from notifier.config.models import AppConfig
from notifier.logging import get_logger

from .adapter import ProviderSendAdapter
from .expo import ExpoTransport
from .fcm import FcmTransport
from .sendgrid import SendGridTransport
from .smtp import SmtpTransport
from .twilio import TwilioTransport
from .vonage import VonageTransport

logger = get_logger(__name__, component="provider")


def build_email_adapter(app_config: AppConfig, env_config: EnvironmentConfig) -> ProviderSendAdapter:
    """Email adapter: SMTP first, SendGrid second.

    Example:
        >>> adapter = build_email_adapter(AppConfig(), load_environment_config())
        >>> adapter.configured_providers
        ['smtp']
    """
    transports = [
        SmtpTransport(
            host=env_config.smtp_host,
            port=env_config.smtp_port,
            user=env_config.smtp_user,
            password=env_config.smtp_pass,
            use_tls=app_config.email.use_tls,
            timeout=app_config.providers.smtp_timeout,
        ),
        SendGridTransport(
            api_key=env_config.sendgrid_api_key,
            timeout=app_config.providers.http_timeout,
            user_agent=app_config.providers.user_agent,
        ),
    ]
    adapter = ProviderSendAdapter("email", transports, allow_mock=env_config.mock_allowed)
    _log_adapter(adapter)
    return adapter


def build_sms_adapter(app_config: AppConfig, env_config: EnvironmentConfig) -> ProviderSendAdapter:
    """SMS adapter: Twilio first, Vonage second."""
    transports = [
        TwilioTransport(
            account_sid=env_config.twilio_account_sid,
            auth_token=env_config.twilio_auth_token,
            from_number=env_config.twilio_phone_number,
            timeout=app_config.providers.http_timeout,
            user_agent=app_config.providers.user_agent,
        ),
        VonageTransport(
            api_key=env_config.vonage_api_key,
            api_secret=env_config.vonage_api_secret,
            from_number=env_config.vonage_from_number,
            timeout=app_config.providers.http_timeout,
            user_agent=app_config.providers.user_agent,
        ),
    ]
    adapter = ProviderSendAdapter("sms", transports, allow_mock=env_config.mock_allowed)
    _log_adapter(adapter)
    return adapter


def build_push_adapter(app_config: AppConfig, env_config: EnvironmentConfig) -> ProviderSendAdapter:
    """Push adapter: FCM first, Expo second (Expo device tokens only)."""
    transports = [
        FcmTransport(
            project_id=env_config.fcm_project_id,
            access_token=env_config.fcm_access_token,
            timeout=app_config.providers.http_timeout,
            user_agent=app_config.providers.user_agent,
        ),
        ExpoTransport(
            access_token=env_config.expo_access_token,
            timeout=app_config.providers.http_timeout,
            user_agent=app_config.providers.user_agent,
        ),
    ]
    adapter = ProviderSendAdapter("push", transports, allow_mock=env_config.mock_allowed)
    _log_adapter(adapter)
    return adapter


def _log_adapter(adapter: ProviderSendAdapter) -> None:
    configured = adapter.configured_providers
    if not configured and not adapter.allow_mock:
        logger.warning(
            f"No {adapter.channel} provider configured",
            extra={"event": "provider.none_configured", "channel": adapter.channel},
        )
        return
    logger.info(
        f"{adapter.channel} providers ready",
        extra={
            "event": "provider.configured",
            "channel": adapter.channel,
            "providers": configured,
            "mock_fallback": adapter.allow_mock,
        },
    )
