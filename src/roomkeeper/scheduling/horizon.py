"""Maximum booking horizon checks.

A room with ``max_booking_horizon_days > 0`` refuses bookings whose furthest
relevant date lies beyond ``now + max_booking_horizon_days``. For recurring
events the furthest date comes from the RRULE: ``UNTIL`` directly, or an
estimate of the ``COUNT``-th occurrence. The estimate steps ``INTERVAL`` units
of ``FREQ`` from the first start; it ignores BYxxx expansion and is only a
policy gate, never a schedule.

Malformed ancillary data fails open: an unparsable ``UNTIL``, a bad ``COUNT``
or an unknown ``FREQ`` counts as within the horizon. Open-ended recurrences
(neither ``UNTIL`` nor ``COUNT``) always exceed a finite horizon.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta, tzinfo

from dateutil.relativedelta import relativedelta

from roomkeeper.scheduling.models import Booking, Room

logger = logging.getLogger(__name__)

FREQUENCY_UNITS: dict[str, str] = {
    "SECONDLY": "seconds",
    "MINUTELY": "minutes",
    "HOURLY": "hours",
    "DAILY": "days",
    "WEEKLY": "weeks",
    "MONTHLY": "months",
    "YEARLY": "years",
}

_UNTIL_FORMATS = ("%Y%m%dT%H%M%SZ", "%Y%m%dT%H%M%S", "%Y%m%d")


class OpenEndedRecurrenceError(ValueError):
    """Raised when a recurrence has neither UNTIL nor COUNT."""

    def __init__(self, uid: str) -> None:
        self.uid = uid
        super().__init__(f"recurrence for {uid!r} has no UNTIL or COUNT bound")


def parse_rrule(rule: str) -> dict[str, str]:
    """Split an RRULE value into upper-cased ``KEY -> value`` parts."""
    text = rule.strip()
    if text.upper().startswith("RRULE:"):
        text = text[len("RRULE:") :]
    parts: dict[str, str] = {}
    for chunk in text.split(";"):
        if "=" not in chunk:
            continue
        key, _, value = chunk.partition("=")
        parts[key.strip().upper()] = value.strip()
    return parts


def parse_until(value: str, default_tz: tzinfo = UTC) -> datetime:
    """Parse an RRULE ``UNTIL`` value; raises ``ValueError`` when unparsable."""
    raw = value.strip().upper()
    for fmt in _UNTIL_FORMATS:
        try:
            parsed = datetime.strptime(raw, fmt)
        except ValueError:
            continue
        if fmt.endswith("Z"):
            return parsed.replace(tzinfo=UTC)
        return parsed.replace(tzinfo=default_tz)
    raise ValueError(f"unparsable UNTIL value: {value!r}")


def estimate_nth_occurrence(
    start: datetime, *, freq: str, count: int, interval: int = 1
) -> datetime:
    """Estimate the start of the ``count``-th occurrence.

    Raises ``KeyError`` for frequencies outside RFC 5545.
    """
    unit = FREQUENCY_UNITS[freq.upper()]
    steps = max(count, 1) - 1
    return start + relativedelta(**{unit: steps * max(interval, 1)})


def furthest_date(booking: Booking, *, default_tz: tzinfo = UTC) -> datetime | None:
    """Return the furthest relevant date of *booking*.

    ``None`` means the date cannot be determined and the check should pass.
    Raises ``OpenEndedRecurrenceError`` for recurrences with no end bound.
    """
    if booking.rrule is None:
        return booking.end or booking.start

    parts = parse_rrule(booking.rrule)
    if "UNTIL" in parts:
        try:
            return parse_until(parts["UNTIL"], default_tz)
        except ValueError:
            logger.warning(
                "Ignoring unparsable UNTIL in booking %s: %r", booking.uid, parts["UNTIL"]
            )
            return None

    if "COUNT" in parts:
        if booking.start is None:
            return None
        try:
            count = int(parts["COUNT"])
            interval = int(parts.get("INTERVAL", "1"))
            return estimate_nth_occurrence(
                booking.start,
                freq=parts.get("FREQ", ""),
                count=count,
                interval=interval,
            )
        except (KeyError, ValueError):
            logger.warning("Ignoring unusable RRULE in booking %s: %r", booking.uid, booking.rrule)
            return None

    raise OpenEndedRecurrenceError(booking.uid)


def is_within_horizon(room: Room, booking: Booking, *, now: datetime | None = None) -> bool:
    """Return True when *booking* stays within the room's booking horizon."""
    if room.max_booking_horizon_days <= 0:
        return True

    reference = now or datetime.now(UTC)
    horizon = reference + timedelta(days=room.max_booking_horizon_days)

    try:
        furthest = furthest_date(booking, default_tz=room.tz)
    except OpenEndedRecurrenceError:
        logger.info(
            "Booking %s for room %s recurs without end; exceeds %d-day horizon",
            booking.uid,
            room.id,
            room.max_booking_horizon_days,
        )
        return False

    if furthest is None:
        return True
    return furthest <= horizon
