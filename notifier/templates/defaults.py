"""Built-in templates used when neither the database nor the template
directory provides one. ``{brand}`` is substituted at lookup time."""

from typing import Dict, Optional, Tuple

DEFAULT_EMAIL_SUBJECTS: Dict[str, str] = {
    "welcome": "Welcome to {brand}!",
    "password-reset": "Reset your password",
    "event-confirmation": "Your registration is confirmed",
    "event-notification": "Event update",
    "ticket-reminder": "Your event is coming up",
}

GENERIC_EMAIL_SUBJECT = "Notification {brand}"
GENERIC_EMAIL_HTML = "<p>Notification {brand}</p>"

# name -> (subject, html)
DEFAULT_EMAIL_TEMPLATES: Dict[str, Tuple[str, str]] = {
    "welcome": (
        "Welcome to {brand}!",
        """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #2c3e50;">Welcome {{user.first_name || user.firstName}}!</h2>
  <p>Thanks for signing up to {brand}.</p>
  <p>Your account has been created.</p>
  {{#if loginUrl}}<p><a href="{{loginUrl}}">Sign in</a></p>{{/if}}
</div>
""",
    ),
    "password-reset": (
        "Reset your password",
        """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #e74c3c;">Password reset</h2>
  <p>You asked to reset your password.</p>
  <p><a href="{{resetUrl}}">Reset my password</a></p>
  <p>This link expires in {{expiresIn}}.</p>
</div>
""",
    ),
    "event-confirmation": (
        "Registration confirmed for {{event.title}}",
        """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #27ae60;">Registration confirmed!</h2>
  <p>Your registration for <strong>{{event.title}}</strong> is confirmed.</p>
  <p><strong>Date:</strong> {{event.eventDate || event.date}}</p>
  <p><strong>Location:</strong> {{event.location}}</p>
  {{#if ticket.type}}<p><strong>Ticket:</strong> {{ticket.type}}</p>{{/if}}
  {{#if viewTicketUrl}}<p><a href="{{viewTicketUrl}}">View my ticket</a></p>{{/if}}
</div>
""",
    ),
}

GENERIC_SMS_TEXT = "{brand}: Notification {{template}}"

DEFAULT_SMS_TEMPLATES: Dict[str, str] = {
    "welcome": "Welcome to {brand} {{user.firstName || user.first_name || user.name}}! Your account is now active.",
    "password-reset": "{brand}: password reset code {{resetCode}}. Valid for {{expiresIn}}.",
    "event-confirmation": (
        '{brand}: confirmed for "{{event.title}}". Date: {{event.date}}. '
        "Location: {{event.location}}. Code: {{ticket.code}}"
    ),
    "event-reminder": "{brand}: reminder! {{event.title}} is tomorrow at {{event.time || time}}. Location: {{event.location}}",
    "ticket-reminder": "{brand}: don't forget {{event.title}} today at {{event.time}}!",
    "event-cancelled": "{brand}: {{event.title}} has been cancelled. Contact us for details.",
    "payment-confirmation": "{brand}: payment received for {{event.title}}. Amount: {{payment.amount}}. Thank you!",
    "otp": "{brand}: your verification code is {{otpCode}}. Valid for {{expiresIn}}.",
}

GENERIC_PUSH_TITLE = "Notification"
GENERIC_PUSH_BODY = "You have a new notification"

# Push and in-app: name -> (title, body). Unknown names use data.title and data.message.
DEFAULT_PUSH_TEMPLATES: Dict[str, Tuple[str, str]] = {
    "event-reminder": (
        "Reminder: {{eventName || event.title}}",
        "Your event starts in {{timeUntilStart}}",
    ),
    "ticket-confirmation": ("Ticket confirmed!", "Your ticket for {{eventName || event.title}} is ready"),
    "payment-success": ("Payment confirmed", "Your payment of {{amount}}€ has been confirmed"),
    "welcome": ("Welcome to {brand}!", "Your account is now active."),
}
GENERIC_PUSH_TEMPLATE = ("{{title}}", "{{message || body}}")


def default_email_subject(template_name: str, brand: str) -> str:
    """Default subject for a template name, or the generic subject."""
    return DEFAULT_EMAIL_SUBJECTS.get(template_name, GENERIC_EMAIL_SUBJECT).replace("{brand}", brand)


def default_email_template(template_name: str, brand: str) -> Tuple[str, str]:
    """(subject, html) for a template name, or the generic notification."""
    subject, html = DEFAULT_EMAIL_TEMPLATES.get(
        template_name, (GENERIC_EMAIL_SUBJECT, GENERIC_EMAIL_HTML)
    )
    return subject.replace("{brand}", brand), html.replace("{brand}", brand)


def default_sms_template(template_name: str, brand: str) -> Tuple[str, bool]:
    """(text, is_specific) for a template name."""
    text: Optional[str] = DEFAULT_SMS_TEMPLATES.get(template_name)
    if text is None:
        return GENERIC_SMS_TEXT.replace("{brand}", brand), False
    return text.replace("{brand}", brand), True


def default_push_template(template_name: str, brand: str) -> Tuple[str, str]:
    """(title, body) for a template name, or the data-driven generic pair."""
    title, body = DEFAULT_PUSH_TEMPLATES.get(template_name, GENERIC_PUSH_TEMPLATE)
    return title.replace("{brand}", brand), body.replace("{brand}", brand)
