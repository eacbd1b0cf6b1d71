"""Duration parsing utilities."""

import re

from pagetag.types import Duration

_DURATION_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m|h)$")
_UNITS: dict[str, float] = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(duration: Duration) -> float:
    """Parse a duration to seconds. Numbers are taken as seconds already."""
    if isinstance(duration, bool):
        raise ValueError(f"Invalid duration: {duration!r}")
    if isinstance(duration, (int, float)):
        if duration < 0:
            raise ValueError(f"Duration must not be negative: {duration!r}")
        return float(duration)

    match = _DURATION_PATTERN.match(duration.strip())
    if not match:
        raise ValueError(f"Invalid duration: {duration!r}")

    value, unit = match.groups()
    return float(value) * _UNITS[unit]
