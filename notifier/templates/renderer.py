"""Template rendering with tiered fallback.

Resolution order for a (name, channel) pair, first hit wins:

1. stored template (database)
2. template file from the template directory
3. built-in default for the name, or the generic default
4. Jinja2 fallback document built from well-known data fields

A failure in tiers 1-3 drops straight to tier 4. Only a failure of the
fallback itself surfaces as TemplateRenderError.
"""

import html as html_lib
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError, select_autoescape

from notifier.domain.models import Channel, Template
from notifier.logging import get_logger
from notifier.persistence import PersistenceError

from .defaults import (
    GENERIC_PUSH_BODY,
    GENERIC_PUSH_TITLE,
    default_email_subject,
    default_email_template,
    default_push_template,
    default_sms_template,
)
from .exceptions import TemplateRenderError
from .expressions import render_string, resolve_path
from .sources import FilesystemTemplateCache

logger = get_logger(__name__, component="templates")

_STYLE_SCRIPT_RE = re.compile(r"<(style|script)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_HTML_TAG_RE = re.compile(r"<[^>]+>")

# Channels rendered as a title plus a short body
TITLED_CHANNELS = (Channel.PUSH.value, Channel.IN_APP.value)


class TemplateSource(Protocol):
    def get(self, name: str, channel: str) -> Optional[Template]: ...


@dataclass
class RenderedContent:
    """Rendered message parts.

    ``html`` is None for SMS, push and in-app; for the last two ``subject``
    holds the notification title. ``source`` names the tier that produced the
    content: database, filesystem, default or fallback.
    """

    subject: Optional[str]
    html: Optional[str]
    text: str
    source: str


def html_to_text(html: Optional[str]) -> str:
    """Plain-text version of an HTML document.

    Style and script blocks are dropped, tags become spaces, entities are
    unescaped and whitespace is collapsed.
    """
    if not html:
        return ""
    text = _STYLE_SCRIPT_RE.sub(" ", html)
    text = _HTML_TAG_RE.sub(" ", text)
    text = html_lib.unescape(text)
    return " ".join(text.split())


class TemplateRenderer:
    """Renders message content for a template name and channel.

    Rendering is a pure function of its inputs plus the file cache, which
    is built once on first use.
    """

    def __init__(
        self,
        stored_templates: Optional[TemplateSource] = None,
        files: Optional[FilesystemTemplateCache] = None,
        brand_name: str = "Event Planner",
    ):
        """Initialize renderer.

        Args:
            stored_templates: Source of database templates (None disables tier 1)
            files: Template file cache (defaults to the bundled templates)
            brand_name: Brand used by defaults and the fallback document
        """
        self.stored_templates = stored_templates
        self.files = files if files is not None else FilesystemTemplateCache()
        self.brand_name = brand_name

        self.env = Environment(
            loader=PackageLoader("notifier.templates", "jinja"),
            autoescape=select_autoescape(enabled_extensions=("html.j2",), default=False),
            undefined=StrictUndefined,
        )

    def render(self, template_name: str, channel: str, data: Optional[Mapping[str, Any]] = None) -> RenderedContent:
        """Render a template.

        Args:
            template_name: Template name (e.g. "welcome")
            channel: "email", "sms", "push" or "in_app"
            data: Template variables

        Returns:
            RenderedContent from the first tier that succeeds

        Raises:
            TemplateRenderError: If even the fallback document cannot be rendered
        """
        data = dict(data or {})
        context = {"template": template_name, **data}

        try:
            stored = self._lookup_stored(template_name, channel)
            if stored is not None:
                return self._render_stored(stored, channel, context)

            file_source = self.files.get(template_name, channel)
            if file_source is not None:
                return self._render_file(template_name, file_source, channel, context)

            return self._render_default(template_name, channel, context)

        except Exception as e:
            logger.warning(
                f"Template rendering failed, using fallback document: {e}",
                extra={
                    "event": "template.fallback",
                    "template": template_name,
                    "channel": channel,
                    "error_type": type(e).__name__,
                },
            )
            return self.render_fallback(template_name, channel, data)

    def _lookup_stored(self, template_name: str, channel: str) -> Optional[Template]:
        if self.stored_templates is None:
            return None
        try:
            return self.stored_templates.get(template_name, channel)
        except PersistenceError as e:
            logger.error(
                f"Template lookup failed, continuing without stored template: {e}",
                extra={"event": "template.lookup_failed", "template": template_name, "channel": channel},
            )
            return None

    def _render_stored(self, template: Template, channel: str, context: Dict[str, Any]) -> RenderedContent:
        body = render_string(template.body_template, context)
        if channel == Channel.EMAIL.value:
            subject = render_string(template.subject_template, context) or context.get("subject")
            if not subject:
                subject = default_email_subject(template.name, self.brand_name)
            logger.debug(
                f"Rendered stored template {template.name} v{template.version}",
                extra={"event": "template.rendered", "source": "database", "template": template.name},
            )
            return RenderedContent(subject=subject, html=body, text=html_to_text(body), source="database")
        if channel in TITLED_CHANNELS:
            title = render_string(template.subject_template, context) or _pick_title(context)
            return self._titled(title, body, "database")
        return RenderedContent(subject=None, html=None, text=body, source="database")

    def _render_file(self, template_name: str, source: str, channel: str, context: Dict[str, Any]) -> RenderedContent:
        rendered = render_string(source, context)
        if channel == Channel.EMAIL.value:
            subject = context.get("subject") or default_email_subject(template_name, self.brand_name)
            return RenderedContent(
                subject=subject, html=rendered, text=html_to_text(rendered), source="filesystem"
            )
        return RenderedContent(subject=None, html=None, text=rendered.strip(), source="filesystem")

    def _render_default(self, template_name: str, channel: str, context: Dict[str, Any]) -> RenderedContent:
        if channel == Channel.EMAIL.value:
            subject_source, html_source = default_email_template(template_name, self.brand_name)
            html = render_string(html_source, context)
            subject = context.get("subject") or render_string(subject_source, context)
            return RenderedContent(subject=subject, html=html, text=html_to_text(html), source="default")

        if channel in TITLED_CHANNELS:
            title_source, body_source = default_push_template(template_name, self.brand_name)
            title = render_string(title_source, context)
            return self._titled(title, render_string(body_source, context), "default")

        text_source, _ = default_sms_template(template_name, self.brand_name)
        return RenderedContent(
            subject=None, html=None, text=render_string(text_source, context), source="default"
        )

    def render_fallback(self, template_name: str, channel: str, data: Mapping[str, Any]) -> RenderedContent:
        """Render the safe fallback document.

        Raises:
            TemplateRenderError: If the fallback template cannot be rendered
        """
        context = self._fallback_context(template_name, data)
        try:
            if channel == Channel.EMAIL.value:
                html = self.env.get_template("fallback.html.j2").render(context)
                return RenderedContent(
                    subject=context["subject"], html=html, text=html_to_text(html), source="fallback"
                )
            text = self.env.get_template("fallback.txt.j2").render(context).strip()
            if channel in TITLED_CHANNELS:
                return RenderedContent(subject=context["subject"], html=None, text=text, source="fallback")
            return RenderedContent(subject=None, html=None, text=text, source="fallback")
        except TemplateError as e:
            logger.error(
                f"Fallback template rendering failed: {e}",
                extra={"event": "template.fallback_failed", "template": template_name, "channel": channel},
            )
            raise TemplateRenderError(f"Failed to render fallback for {template_name}: {e}", template_name) from e

    def _fallback_context(self, template_name: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        def pick(*paths: str) -> Any:
            for path in paths:
                value = resolve_path(data, path)
                if isinstance(value, (str, int, float)) and not isinstance(value, bool) and value != "":
                    return value
            return None

        return {
            "brand": self.brand_name,
            "template_name": template_name,
            "subject": pick("subject") or f"Notification {self.brand_name} - {template_name}",
            "first_name": pick("firstName", "first_name", "user.firstName", "user.first_name") or "there",
            "description": pick("description"),
            "amount": pick("amount", "payment.amount"),
            "currency": pick("currency", "payment.currency") or "EUR",
            "event_name": pick("eventName", "event.title"),
            "transaction_id": pick("transactionId", "payment.transactionId"),
            "ticket_count": pick("ticketCount"),
        }

    def _titled(self, title: Optional[str], body: str, source: str) -> RenderedContent:
        body = body.strip()
        return RenderedContent(
            subject=(title or "").strip() or GENERIC_PUSH_TITLE,
            html=None,
            text=body or GENERIC_PUSH_BODY,
            source=source,
        )

    @property
    def file_count(self) -> int:
        """Number of template files available to the filesystem tier."""
        return len(self.files)


def _pick_title(context: Mapping[str, Any]) -> Optional[str]:
    for key in ("title", "subject"):
        value = context.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None
