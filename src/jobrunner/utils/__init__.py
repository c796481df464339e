"""Utility helpers for jr."""

from jobrunner.utils.time import parse_duration, utc_now

__all__ = ["parse_duration", "utc_now"]
