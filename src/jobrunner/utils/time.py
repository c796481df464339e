"""Time utilities for jr.

Timezone-aware helpers, the registry's timestamp encoding, and the
duration grammar accepted by ``jr prune --older-than``.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta

from jobrunner.core.errors import InvalidInputError

# Fixed-width so that lexical order in SQLite equals chronological order.
_DB_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_UNIT_SECONDS: dict[str, float] = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}

_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ms|s|m|h|d)")


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def to_db_timestamp(dt: datetime) -> str:
    """Encode a datetime for storage, normalising to UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).strftime(_DB_TIMESTAMP_FORMAT)


def from_db_timestamp(value: str | None) -> datetime | None:
    """Decode a stored timestamp. Accepts legacy RFC 3339 second precision."""
    if not value:
        return None
    try:
        return datetime.strptime(value, _DB_TIMESTAMP_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)


def parse_duration(text: str) -> timedelta:
    """Parse a retention duration such as ``7d``, ``24h``, ``30m`` or ``1h30m``.

    Components are a number followed by one of ``d``, ``h``, ``m``, ``s`` or
    ``ms`` and may be chained. A bare ``0`` means zero.

    Raises:
        InvalidInputError: If the string matches no recognised unit.
    """
    value = text.strip()
    if value == "0":
        return timedelta(0)
    if not value:
        raise InvalidInputError("invalid duration: empty string")

    total = 0.0
    pos = 0
    for match in _COMPONENT.finditer(value):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()

    if pos != len(value) or pos == 0:
        raise InvalidInputError(
            f"invalid duration: {text!r} (expected e.g. 7d, 24h, 30m, 1h30m)"
        )
    try:
        return timedelta(seconds=total)
    except OverflowError as e:
        raise InvalidInputError(f"invalid duration: {text!r} (too large)") from e
