"""Unit name generation.

A unit name is the only stable join key between the registry and systemd,
so it must be unique and safe in systemd's unit namespace::

    jr-<sanitized name>-<YYYYmmdd-HHMMSS>-<16 hex chars>.service

The random part comes from ``uuid4()`` (OS CSPRNG). Collisions are
negligible but not impossible; the registry's UNIQUE constraint on ``unit``
is what actually catches them, at insert time.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from jobrunner.utils.time import utc_now

UNIT_PREFIX = "jr-"
UNIT_SUFFIX = ".service"
RANDOM_WIDTH = 16

_PASSTHROUGH = frozenset("abcdefghijklmnopqrstuvwxyz0123456789.-_")


def sanitize_name(name: str) -> str:
    """Map ``name`` onto the unit-name-safe alphabet, one character each.

    ASCII letters are lower-cased, ASCII digits and ``.-_`` pass through,
    anything else (spaces, ``/``, non-ASCII) becomes ``_``. Runs are not
    collapsed, so the output has the same length as the input.
    """
    out = []
    for ch in name:
        if "A" <= ch <= "Z":
            ch = ch.lower()
        out.append(ch if ch in _PASSTHROUGH else "_")
    return "".join(out)


def generate_unit_name(name: str, *, now: datetime | None = None) -> str:
    """Build a fresh unit name for a job called ``name``.

    Two calls in the same second with the same name still differ in the
    random component.
    """
    stamp = (now or utc_now()).strftime("%Y%m%d-%H%M%S")
    suffix = uuid.uuid4().hex[:RANDOM_WIDTH]
    return f"{UNIT_PREFIX}{sanitize_name(name)}-{stamp}-{suffix}{UNIT_SUFFIX}"
