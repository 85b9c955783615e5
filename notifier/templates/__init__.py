"""Template rendering: mini-language, sources and the tiered renderer."""

from .exceptions import TemplateRenderError, TemplateSyntaxError
from .expressions import MAX_NESTING, evaluate_condition, render_string
from .renderer import RenderedContent, TemplateRenderer, html_to_text
from .sources import BUNDLED_TEMPLATE_DIR, DatabaseTemplateSource, FilesystemTemplateCache

__all__ = [
    "TemplateRenderer",
    "RenderedContent",
    "DatabaseTemplateSource",
    "FilesystemTemplateCache",
    "BUNDLED_TEMPLATE_DIR",
    "render_string",
    "evaluate_condition",
    "html_to_text",
    "MAX_NESTING",
    "TemplateRenderError",
    "TemplateSyntaxError",
]
