"""Duration strings used by queue and maintenance settings.

Accepted forms are unit sequences (``500ms``, ``2s``, ``1h30m``, ``7d``)
and ISO-8601 durations (``PT30S``, ``P1DT12H``). Values are handled in
milliseconds internally because retry backoff is configured below one
second.
"""

import re

MS_PER_UNIT = {
    "ms": 1,
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}

_UNIT_TOKEN = re.compile(r"(\d+)(ms|s|m|h|d)")
_ISO_8601 = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d{1,3})?)S)?)?$")


class DurationParseError(ValueError):
    """Raised when a duration string cannot be parsed or is out of range."""


def parse_duration_ms(value: str) -> int:
    """
    Parse a duration string to milliseconds.

    Raises:
        DurationParseError: If the string is empty, malformed or zero

    Examples:
        >>> parse_duration_ms("2s")
        2000
        >>> parse_duration_ms("1m30s")
        90000
        >>> parse_duration_ms("PT0.5S")
        500
    """
    text = re.sub(r"\s+", "", value or "").lower()
    if not text:
        raise DurationParseError("Duration cannot be empty")

    total = _iso_ms(text) if text.startswith("p") else _units_ms(text, value)
    if total == 0:
        raise DurationParseError(f"Duration cannot be zero: '{value}'")
    return total


def parse_duration(value: str) -> int:
    """Parse a duration string to whole seconds.

    Raises:
        DurationParseError: If the string is invalid or shorter than one second
    """
    ms = parse_duration_ms(value)
    if ms < MS_PER_UNIT["s"]:
        raise DurationParseError(f"Duration must be at least one second: '{value}'")
    return ms // MS_PER_UNIT["s"]


def _iso_ms(text: str) -> int:
    match = _ISO_8601.match(text.upper())
    if not match or text.upper() in ("P", "PT"):
        raise DurationParseError(
            f"Invalid ISO-8601 duration: '{text}'. Expected a form like 'PT30S', 'PT1H30M' or 'P7D'"
        )
    days, hours, minutes, seconds = match.groups()
    total = int(days or 0) * MS_PER_UNIT["d"]
    total += int(hours or 0) * MS_PER_UNIT["h"]
    total += int(minutes or 0) * MS_PER_UNIT["m"]
    total += round(float(seconds or 0) * MS_PER_UNIT["s"])
    return total


def _units_ms(text: str, raw: str) -> int:
    position = 0
    total = 0
    for match in _UNIT_TOKEN.finditer(text):
        if match.start() != position:
            break
        amount, unit = match.groups()
        total += int(amount) * MS_PER_UNIT[unit]
        position = match.end()

    if position == 0 or position != len(text):
        raise DurationParseError(
            f"Invalid duration: '{raw}'. Use digits followed by ms, s, m, h or d "
            "(for example '500ms', '30s', '1h30m')"
        )
    return total


def format_duration(ms: int) -> str:
    """Compact form of a millisecond duration, largest units first (``1h30m``)."""
    if ms < MS_PER_UNIT["s"]:
        return f"{ms}ms"
    parts = []
    remainder = ms
    for unit in ("d", "h", "m", "s", "ms"):
        amount, remainder = divmod(remainder, MS_PER_UNIT[unit])
        if amount:
            parts.append(f"{amount}{unit}")
    return "".join(parts)


def check_duration_range(ms: int, min_ms: int, max_ms: int, label: str = "Duration") -> None:
    """
    Reject durations outside ``[min_ms, max_ms]``.

    Raises:
        DurationParseError: With the offending value and the bound it crossed
    """
    if ms < min_ms:
        raise DurationParseError(
            f"{label} too short: {format_duration(ms)} (minimum {format_duration(min_ms)})"
        )
    if ms > max_ms:
        raise DurationParseError(
            f"{label} too long: {format_duration(ms)} (maximum {format_duration(max_ms)})"
        )
