"""Duration parsing for configuration values such as the scheduler interval.

Accepts compact human-readable strings ("30m", "24h", "1d12h", "1w") and the
ISO-8601 subset ("PT30M", "P1D", "P1DT12H").
"""

import re


class DurationParseError(ValueError):
    """Raised when a duration string cannot be parsed."""

    pass


_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}

_ISO_PATTERN = re.compile(
    r"^P(?:(?P<weeks>\d+)W)?(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)
_HUMAN_PART = re.compile(r"(\d+)([smhdw])")


def parse_duration(duration_str: str) -> int:
    """Parse a duration string to whole seconds.

    Raises:
        DurationParseError: If the string is empty, malformed or zero

    Examples:
        >>> parse_duration("24h")
        86400
        >>> parse_duration("P1D")
        86400
        >>> parse_duration("1h30m")
        5400
    """
    if not isinstance(duration_str, str):
        raise DurationParseError(f"Duration must be a string, got {type(duration_str).__name__}")

    cleaned = re.sub(r"\s+", "", duration_str).strip()
    if not cleaned:
        raise DurationParseError("Duration string cannot be empty")

    if cleaned.upper().startswith("P"):
        total = _parse_iso8601(cleaned.upper())
    else:
        total = _parse_human(cleaned.lower())

    if total == 0:
        raise DurationParseError(f"Duration cannot be zero: '{duration_str}'")
    return total


def _parse_iso8601(value: str) -> int:
    match = _ISO_PATTERN.match(value)
    if not match or value in ("P", "PT") or value.endswith("T"):
        raise DurationParseError(
            f"Invalid ISO-8601 duration format: '{value}'. "
            "Expected format like 'P1D', 'PT12H' or 'P1DT12H'"
        )

    parts = match.groupdict()
    total = 0
    for name, multiplier in (
        ("weeks", _UNIT_SECONDS["w"]),
        ("days", _UNIT_SECONDS["d"]),
        ("hours", _UNIT_SECONDS["h"]),
        ("minutes", _UNIT_SECONDS["m"]),
    ):
        if parts[name]:
            total += int(parts[name]) * multiplier
    if parts["seconds"]:
        total += int(float(parts["seconds"]))
    return total


def _parse_human(value: str) -> int:
    parts = _HUMAN_PART.findall(value)
    if not parts or "".join(num + unit for num, unit in parts) != value:
        raise DurationParseError(
            f"Invalid duration format: '{value}'. "
            "Use digits followed by s, m, h, d or w, e.g. '24h' or '1d12h'"
        )
    return sum(int(num) * _UNIT_SECONDS[unit] for num, unit in parts)


def validate_duration_range(
    duration_seconds: int,
    min_seconds: int,
    max_seconds: int,
    label: str = "Interval",
) -> None:
    """Check that a parsed duration lies within ``[min_seconds, max_seconds]``.

    Raises:
        DurationParseError: If duration is outside the valid range
    """
    if duration_seconds < min_seconds:
        raise DurationParseError(
            f"{label} too short: {humanize_seconds(duration_seconds)}. "
            f"Minimum is {humanize_seconds(min_seconds)}."
        )
    if duration_seconds > max_seconds:
        raise DurationParseError(
            f"{label} too long: {humanize_seconds(duration_seconds)}. "
            f"Maximum is {humanize_seconds(max_seconds)}."
        )


def humanize_seconds(seconds: int) -> str:
    """Render seconds with the largest whole unit, e.g. ``"2 days"``."""
    for unit_seconds, name in ((86400, "day"), (3600, "hour"), (60, "minute")):
        if seconds >= unit_seconds:
            count = seconds // unit_seconds
            return f"{count} {name}{'s' if count != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"
