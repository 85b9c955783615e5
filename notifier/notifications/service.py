"""Send-now path for email, SMS, push and in-app notifications.

NotificationService orchestrates one delivery attempt:

1. Validate the recipient
2. Consult the preference gate for user templates
3. Render the template
4. Deliver through the channel's provider adapter, or store it in the
   user's inbox for in-app notifications
5. Record the outcome for user templates

It never retries on its own; queued jobs get their retries from the queue.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Union

from notifier.config.environment import EnvironmentConfig
from notifier.config.models import AppConfig
from notifier.domain.models import Channel, is_system_template
from notifier.logging import get_logger
from notifier.logging.context import log_context
from notifier.persistence import PersistenceError
from notifier.preferences import PreferenceGate, normalize_user_id
from notifier.providers import DeliveryResult, EmailEnvelope, ProviderSendAdapter, PushEnvelope, SmsEnvelope
from notifier.templates import TemplateRenderError, TemplateRenderer
from notifier.utils.masking import mask_email, mask_phone_number, mask_push_token

from .inbox import InAppInbox, parse_category
from .recipients import (
    is_valid_email_address,
    is_valid_phone_number,
    is_valid_push_token,
    normalize_phone_number,
)
from .sink import DeliveryRecord, NotificationSink

logger = get_logger(__name__, component="notification")

VALIDATION_FAILED = "validation_failed"
SKIPPED_BY_PREFERENCES = "user_preferences"
FALLBACK_SENDER = "noreply@localhost"
IN_APP_PROVIDER = "in_app"


@dataclass
class SendOptions:
    """Per-send options.

    Attributes:
        user_id: Recipient's user id; enables preference checks and records
        job_id: Queue job driving this attempt; links retries to one record
        final_attempt: False while the queue may still retry a failure
        reply_to: Optional Reply-To address for email
        push_data: Extra key/value data delivered with a push notification
        priority: Push priority ("high" or "normal")
        badge: App icon badge count for push
        category: In-app category (info, success, warning, error)
    """

    user_id: Any = None
    job_id: Optional[str] = None
    final_attempt: bool = True
    reply_to: Optional[str] = None
    push_data: Dict[str, Any] = field(default_factory=dict)
    priority: Optional[str] = None
    badge: Optional[int] = None
    category: Optional[str] = None

    @classmethod
    def coerce(cls, options: Union["SendOptions", Mapping[str, Any], None]) -> "SendOptions":
        """Build options from a mapping (job payloads, CLI input) or pass them through."""
        if isinstance(options, SendOptions):
            return options
        options = options or {}
        user_id = options.get("user_id", options.get("userId"))
        return cls(
            user_id=user_id,
            job_id=options.get("job_id"),
            final_attempt=bool(options.get("final_attempt", True)),
            reply_to=options.get("reply_to"),
            push_data=dict(options.get("push_data") or {}),
            priority=options.get("priority"),
            badge=options.get("badge"),
            category=options.get("category"),
        )


OptionsArg = Union[SendOptions, Mapping[str, Any], None]


class NotificationService:
    """Sends templated email, SMS, push and in-app notifications."""

    def __init__(
        self,
        renderer: TemplateRenderer,
        email_adapter: ProviderSendAdapter,
        sms_adapter: ProviderSendAdapter,
        gate: PreferenceGate,
        sink: NotificationSink,
        app_config: AppConfig,
        env_config: EnvironmentConfig,
        push_adapter: Optional[ProviderSendAdapter] = None,
        inbox: Optional[InAppInbox] = None,
    ):
        self.renderer = renderer
        self.email_adapter = email_adapter
        self.sms_adapter = sms_adapter
        self.push_adapter = push_adapter
        self.inbox = inbox
        self.gate = gate
        self.sink = sink
        self.app_config = app_config
        self.env_config = env_config

    def send(
        self,
        channel: str,
        recipient: Any,
        template: str,
        data: Optional[Mapping[str, Any]] = None,
        options: OptionsArg = None,
    ) -> DeliveryResult:
        """Send on the given channel.

        ``recipient`` is an address for email, a phone number for SMS, a
        device token for push and a user id for in-app notifications.
        """
        if channel == Channel.EMAIL.value:
            return self.send_email(recipient, template, data, options)
        if channel == Channel.SMS.value:
            return self.send_sms(recipient, template, data, options)
        if channel == Channel.PUSH.value:
            return self.send_push(recipient, template, data, options)
        if channel == Channel.IN_APP.value:
            return self.send_in_app(recipient, template, data, options)
        return DeliveryResult(
            success=False,
            error=f"Unsupported channel: {channel}",
            retryable=False,
        )

    def send_email(
        self,
        to: str,
        template: str,
        data: Optional[Mapping[str, Any]] = None,
        options: OptionsArg = None,
    ) -> DeliveryResult:
        """Render and send an email.

        Args:
            to: Recipient address
            template: Template name
            data: Template variables
            options: SendOptions or an equivalent mapping

        Returns:
            DeliveryResult; never raises for validation, preference or render problems
        """
        opts = SendOptions.coerce(options)
        channel = Channel.EMAIL.value

        with log_context(template=template, channel=channel, job_id=opts.job_id):
            if not is_valid_email_address(to):
                return self._validation_failed(channel, "to", mask_email(to or ""))

            recipient = to.strip()
            skipped = self._check_preferences(template, channel, opts)
            if skipped is not None:
                return skipped

            try:
                rendered = self.renderer.render(template, channel, data)
            except TemplateRenderError as e:
                return self._render_failed(template, channel, e)

            envelope = EmailEnvelope(
                to=recipient,
                subject=rendered.subject or template,
                html=rendered.html,
                text=rendered.text,
                sender_email=self.env_config.sender_email or FALLBACK_SENDER,
                sender_name=self.app_config.email.from_name,
                reply_to=opts.reply_to,
            )
            result = self.email_adapter.send(envelope)

            self._record(template, channel, opts, rendered.subject, rendered.text, result)
            self._log_outcome(channel, template, mask_email(recipient), result)
            return result

    def send_sms(
        self,
        phone_number: str,
        template: str,
        data: Optional[Mapping[str, Any]] = None,
        options: OptionsArg = None,
    ) -> DeliveryResult:
        """Render and send an SMS, truncated to the configured length."""
        opts = SendOptions.coerce(options)
        channel = Channel.SMS.value

        with log_context(template=template, channel=channel, job_id=opts.job_id):
            if not is_valid_phone_number(phone_number):
                return self._validation_failed(channel, "phone_number", mask_phone_number(phone_number or ""))

            recipient = normalize_phone_number(phone_number)
            skipped = self._check_preferences(template, channel, opts)
            if skipped is not None:
                return skipped

            try:
                rendered = self.renderer.render(template, channel, data)
            except TemplateRenderError as e:
                return self._render_failed(template, channel, e)

            body = truncate_sms(rendered.text, self.app_config.sms.max_length)
            result = self.sms_adapter.send(SmsEnvelope(to=recipient, body=body))

            self._record(template, channel, opts, None, body, result)
            self._log_outcome(channel, template, mask_phone_number(recipient), result)
            return result

    def send_push(
        self,
        token: str,
        template: str,
        data: Optional[Mapping[str, Any]] = None,
        options: OptionsArg = None,
    ) -> DeliveryResult:
        """Render and send a push notification to one device token.

        The rendered subject is the notification title; the body is cut to
        ``push.max_body_length``. ``options.push_data`` travels with the
        notification as string key/value pairs.
        """
        opts = SendOptions.coerce(options)
        channel = Channel.PUSH.value

        with log_context(template=template, channel=channel, job_id=opts.job_id):
            if not is_valid_push_token(token):
                return self._validation_failed(channel, "token", mask_push_token(token or ""))
            if self.push_adapter is None:
                return DeliveryResult(success=False, error="Push delivery is not configured", retryable=False)

            recipient = token.strip()
            skipped = self._check_preferences(template, channel, opts)
            if skipped is not None:
                return skipped

            try:
                rendered = self.renderer.render(template, channel, data)
            except TemplateRenderError as e:
                return self._render_failed(template, channel, e)

            push_config = self.app_config.push
            title = rendered.subject or template
            body = truncate_text(rendered.text, push_config.max_body_length)
            envelope = PushEnvelope(
                to=recipient,
                title=title,
                body=body,
                data={"type": template, **{key: str(value) for key, value in opts.push_data.items()}},
                sound=push_config.sound,
                priority=opts.priority or "high",
                badge=opts.badge,
                ttl=push_config.ttl_seconds,
            )
            result = self.push_adapter.send(envelope)

            self._record(template, channel, opts, title, body, result)
            self._log_outcome(channel, template, mask_push_token(recipient), result)
            return result

    def send_in_app(
        self,
        user_id: Any,
        template: str,
        data: Optional[Mapping[str, Any]] = None,
        options: OptionsArg = None,
    ) -> DeliveryResult:
        """Render a notification into the user's in-app inbox.

        The stored row is the delivery: there is no provider, and the
        result's ``message_id`` is the notification id.
        """
        opts = SendOptions.coerce(options)
        channel = Channel.IN_APP.value

        with log_context(template=template, channel=channel, job_id=opts.job_id):
            owner = normalize_user_id(user_id)
            if owner is None:
                return self._validation_failed(channel, "user_id", str(user_id))
            try:
                category = parse_category(opts.category)
            except ValueError:
                return self._validation_failed(channel, "category", str(opts.category))
            if self.inbox is None:
                return DeliveryResult(success=False, error="In-app delivery is not configured", retryable=False)

            skipped = self._check_preferences(template, channel, replace(opts, user_id=owner))
            if skipped is not None:
                return skipped

            try:
                rendered = self.renderer.render(template, channel, data)
            except TemplateRenderError as e:
                return self._render_failed(template, channel, e)

            try:
                notification = self.inbox.create(
                    owner,
                    title=rendered.subject or template,
                    message=rendered.text,
                    category=category,
                    template_name=template,
                )
            except PersistenceError as e:
                result = DeliveryResult(
                    success=False,
                    provider=IN_APP_PROVIDER,
                    error=f"Failed to store in-app notification: {e}",
                    retryable=True,
                )
            else:
                result = DeliveryResult(
                    success=True,
                    provider=IN_APP_PROVIDER,
                    message_id=str(notification.id),
                    notification_id=notification.id,
                )

            self._log_outcome(channel, template, f"user {owner}", result)
            return result

    # Typed helpers

    def send_welcome_email(self, to: str, user: Mapping[str, Any], options: OptionsArg = None, login_url: Optional[str] = None) -> DeliveryResult:
        data = {"user": dict(user), "loginUrl": login_url or self._app_url("/login")}
        return self.send_email(to, "welcome", data, options)

    def send_password_reset_email(
        self,
        to: str,
        reset_token: str,
        options: OptionsArg = None,
        reset_url: Optional[str] = None,
        expires_in: str = "1 hour",
    ) -> DeliveryResult:
        data = {
            "resetToken": reset_token,
            "resetUrl": reset_url or self._app_url(f"/reset-password?token={reset_token}"),
            "expiresIn": expires_in,
        }
        return self.send_email(to, "password-reset", data, options)

    def send_event_confirmation_email(
        self,
        to: str,
        event: Mapping[str, Any],
        ticket: Mapping[str, Any],
        options: OptionsArg = None,
        view_ticket_url: Optional[str] = None,
    ) -> DeliveryResult:
        data = {
            "event": dict(event),
            "ticket": dict(ticket),
            "viewTicketUrl": view_ticket_url or self._app_url(f"/tickets/{ticket.get('id', '')}"),
        }
        return self.send_email(to, "event-confirmation", data, options)

    def send_event_notification_email(
        self,
        to: str,
        event: Mapping[str, Any],
        options: OptionsArg = None,
        notification_type: str = "reminder",
    ) -> DeliveryResult:
        data = {"event": dict(event), "notificationType": notification_type}
        return self.send_email(to, "event-notification", data, options)

    def send_welcome_sms(self, phone_number: str, user: Mapping[str, Any], options: OptionsArg = None) -> DeliveryResult:
        return self.send_sms(phone_number, "welcome", {"user": dict(user)}, options)

    def send_password_reset_sms(
        self,
        phone_number: str,
        reset_code: str,
        options: OptionsArg = None,
        expires_in: str = "10 minutes",
    ) -> DeliveryResult:
        data = {"resetCode": reset_code, "expiresIn": expires_in}
        return self.send_sms(phone_number, "password-reset", data, options)

    def send_event_confirmation_sms(
        self,
        phone_number: str,
        event: Mapping[str, Any],
        ticket: Mapping[str, Any],
        options: OptionsArg = None,
    ) -> DeliveryResult:
        data = {"event": dict(event), "ticket": dict(ticket)}
        return self.send_sms(phone_number, "event-confirmation", data, options)

    def send_event_reminder_sms(
        self,
        phone_number: str,
        event: Mapping[str, Any],
        options: OptionsArg = None,
        time: str = "18:00",
    ) -> DeliveryResult:
        data = {"event": dict(event), "time": time}
        return self.send_sms(phone_number, "event-reminder", data, options)

    def send_otp_sms(
        self,
        phone_number: str,
        otp_code: str,
        purpose: str = "verification",
        options: OptionsArg = None,
        expires_in: str = "5 minutes",
    ) -> DeliveryResult:
        data = {"otpCode": otp_code, "expiresIn": expires_in, "purpose": purpose}
        return self.send_sms(phone_number, "otp", data, options)

    def send_event_reminder_push(
        self,
        token: str,
        event: Mapping[str, Any],
        time_until_start: str,
        options: OptionsArg = None,
    ) -> DeliveryResult:
        opts = SendOptions.coerce(options)
        push_data = {"eventId": event.get("id", ""), **opts.push_data}
        data = {"event": dict(event), "eventName": event.get("title"), "timeUntilStart": time_until_start}
        return self.send_push(token, "event-reminder", data, replace(opts, push_data=push_data))

    # Internals

    def _check_preferences(self, template: str, channel: str, opts: SendOptions) -> Optional[DeliveryResult]:
        if is_system_template(template, channel) or opts.user_id is None:
            return None

        decision = self.gate.should_send(opts.user_id, channel)
        if decision.should_send:
            return None

        logger.info(
            f"Skipping {channel} {template}: disabled by user preferences",
            extra={
                "event": "notification.skipped",
                "user_id": opts.user_id,
                "preference_reason": decision.reason,
            },
        )
        return DeliveryResult(
            success=True,
            skipped=True,
            reason=SKIPPED_BY_PREFERENCES,
            details={"preference_reason": decision.reason},
        )

    def _record(
        self,
        template: str,
        channel: str,
        opts: SendOptions,
        subject: Optional[str],
        content: Optional[str],
        result: DeliveryResult,
    ) -> None:
        if is_system_template(template, channel):
            return
        user_id = normalize_user_id(opts.user_id)
        if user_id is None:
            return

        retry_pending = not result.success and result.retryable and not opts.final_attempt
        result.notification_id = self.sink.record(
            DeliveryRecord(
                user_id=user_id,
                template_name=template,
                channel=channel,
                subject=subject,
                content=content,
                job_id=opts.job_id,
            ),
            result,
            retry_pending=retry_pending,
        )

    def _validation_failed(self, channel: str, field: str, masked: str) -> DeliveryResult:
        logger.warning(
            f"Invalid {channel} recipient {masked}",
            extra={"event": "notification.validation_failed", "field": field, "recipient": masked},
        )
        return DeliveryResult(
            success=False,
            error=VALIDATION_FAILED,
            retryable=False,
            details={"field": field, "message": f"Invalid {field.replace('_', ' ')}"},
        )

    def _render_failed(self, template: str, channel: str, error: TemplateRenderError) -> DeliveryResult:
        logger.error(
            f"Template {template} could not be rendered: {error}",
            extra={"event": "notification.render_failed", "error_type": type(error).__name__},
        )
        return DeliveryResult(
            success=False,
            error=f"Template rendering failed: {error}",
            retryable=False,
        )

    def _log_outcome(self, channel: str, template: str, masked: str, result: DeliveryResult) -> None:
        extra: Dict[str, Any] = {
            "recipient": masked,
            "provider": result.provider,
            "message_id": result.message_id,
            "notification_id": result.notification_id,
        }
        if result.success:
            logger.info(
                f"{channel} {template} delivered to {masked}",
                extra={"event": "notification.sent", **extra},
            )
        else:
            logger.warning(
                f"{channel} {template} to {masked} failed: {result.error}",
                extra={"event": "notification.failed", "retryable": result.retryable, **extra},
            )

    def _app_url(self, path: str) -> str:
        return self.app_config.templates.app_base_url.rstrip("/") + path


def truncate_text(text: str, max_length: int) -> str:
    """Cut text to ``max_length`` characters, ending with "...".

    Example:
        >>> truncate_text("Your event starts in two hours", 20)
        'Your event starts...'
    """
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def truncate_sms(text: str, max_length: int = 160) -> str:
    """Cut an SMS body to ``max_length`` characters.

    Example:
        >>> len(truncate_sms("x" * 200))
        160
    """
    return truncate_text(text, max_length)
