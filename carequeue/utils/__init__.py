"""Utility functions."""

from carequeue.utils.time import (
    clinic_tz,
    combine_local,
    ensure_aware,
    utc_now,
)

__all__ = [
    "utc_now",
    "clinic_tz",
    "combine_local",
    "ensure_aware",
]
