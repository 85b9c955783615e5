"""Configuration errors."""

from typing import Iterable, List, Optional


class ConfigurationError(Exception):
    """Invalid configuration file, environment variable or CLI value.

    Collects every problem found in one pass so the operator can fix them
    together; ``str()`` renders the message, a numbered error list and the
    suggestions.
    """

    def __init__(
        self,
        message: str,
        errors: Optional[Iterable[str]] = None,
        suggestions: Optional[Iterable[str]] = None,
    ):
        self.message = message
        self.errors: List[str] = list(errors or [])
        self.suggestions: List[str] = list(suggestions or [])
        super().__init__(message)

    def __str__(self) -> str:
        lines = [self.message]
        if self.errors:
            lines.append("\nValidation Errors:")
            lines.extend(f"  {number}. {error}" for number, error in enumerate(self.errors, 1))
        if self.suggestions:
            lines.append("\nSuggestions:")
            lines.extend(f"  - {suggestion}" for suggestion in self.suggestions)
        return "\n".join(lines)
