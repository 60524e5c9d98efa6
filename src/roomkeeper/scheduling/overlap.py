"""Half-open time interval comparison."""

from __future__ import annotations

from datetime import datetime


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Return True when ``[a_start, a_end)`` and ``[b_start, b_end)`` intersect.

    Touching endpoints (``a_end == b_start``) do not overlap.
    """
    return a_start < b_end and a_end > b_start
