"""Job registry: unit-name generation and the SQLite job store."""

from jobrunner.registry.identity import generate_unit_name, sanitize_name
from jobrunner.registry.store import JobRecord, JobStore

__all__ = [
    "JobRecord",
    "JobStore",
    "generate_unit_name",
    "sanitize_name",
]
