"""User channel preference checks."""

from .gate import DatabasePreferenceSource, PreferenceDecision, PreferenceGate, default_allowed, normalize_user_id

__all__ = [
    "PreferenceGate",
    "PreferenceDecision",
    "DatabasePreferenceSource",
    "default_allowed",
    "normalize_user_id",
]
