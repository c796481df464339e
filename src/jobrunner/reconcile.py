"""Job state taxonomy and reconciliation.

A job's state is never stored authoritatively: the registry only caches
the last state jr observed. ``reconcile()`` maps a live snapshot from the
supervisor onto the closed ``JobState`` set, with ``PassthroughState``
for coarse values jr does not model (``deactivating``, ``reloading``...).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from jobrunner.registry.store import JobRecord
from jobrunner.supervisor.base import UnitStatus


class JobState(str, Enum):
    """Normalised job states.

    Inherits from ``str`` so states compare equal to and serialize as
    their plain values.
    """

    ACTIVE = "active"
    EXITED = "exited"
    FAILED = "failed"
    ACTIVATING = "activating"
    UNKNOWN = "unknown"
    STOPPED = "stopped"
    """Only ever written to the cache by ``jr stop``; never derived from a snapshot."""


@dataclass(frozen=True)
class PassthroughState:
    """A coarse supervisor state outside ``JobState``, kept verbatim."""

    raw: str

    @property
    def value(self) -> str:
        return self.raw

    def __str__(self) -> str:
        return self.raw


ReconciledState = JobState | PassthroughState

_FAILED_EXIT_ABSENT = ("", "0")


def reconcile(snapshot: UnitStatus | None) -> ReconciledState:
    """Map a live snapshot to a job state. Pure; no I/O.

    1. no snapshot, or one with no coarse state -> UNKNOWN
    2. ``active`` -> ACTIVE
    3. ``inactive`` -> FAILED if an exit status other than 0 is recorded,
       else EXITED
    4. ``failed`` -> FAILED
    5. ``activating`` -> ACTIVATING; anything else passes through
    """
    if snapshot is None or snapshot.is_empty:
        return JobState.UNKNOWN

    coarse = snapshot.active_state
    if coarse == "active":
        return JobState.ACTIVE
    if coarse == "inactive":
        if snapshot.exit_status not in _FAILED_EXIT_ABSENT:
            return JobState.FAILED
        return JobState.EXITED
    if coarse == "failed":
        return JobState.FAILED
    if coarse == "activating":
        return JobState.ACTIVATING
    return PassthroughState(coarse)


def parse_state(value: str) -> ReconciledState:
    """Turn a stored or user-supplied state string back into a state."""
    try:
        return JobState(value)
    except ValueError:
        return PassthroughState(value)


def cached_state(job: JobRecord) -> ReconciledState | None:
    """The job's last recorded state, for use when no live snapshot exists."""
    if not job.last_known_state:
        return None
    return parse_state(job.last_known_state)
