"""Template rendering exceptions."""

from typing import Optional


class TemplateRenderError(Exception):
    """Raised when a template cannot be rendered.

    Attributes:
        template_name: Name of the template that failed, when known
    """

    def __init__(self, message: str, template_name: Optional[str] = None):
        self.template_name = template_name
        super().__init__(message)


class TemplateSyntaxError(TemplateRenderError):
    """Raised when template source cannot be parsed (e.g. nesting too deep)."""

    pass
