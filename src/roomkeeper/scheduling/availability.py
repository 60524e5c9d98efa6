"""Weekly availability windows for rooms.

A room with availability enabled accepts a booking only when the whole
``[start, end)`` span fits inside at least one of its rules, evaluated on the
room's local wall clock. Rooms also publish their rules as a VAVAILABILITY
object (RFC 7953) so that CalDAV clients can grey out unbookable hours.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, time, timedelta

from roomkeeper.scheduling.collaborators import CalendarStore
from roomkeeper.scheduling.ical import PRODID
from roomkeeper.scheduling.models import (
    WEEKDAY_CODES,
    AvailabilityRule,
    Room,
    weekday_index,
)

logger = logging.getLogger(__name__)

AVAILABILITY_OBJECT_UID = "room-availability"
# Monday anchoring the weekly AVAILABLE recurrences.
_AVAILABILITY_ANCHOR = date(2024, 1, 1)
_END_OF_DAY = time(23, 59)


def is_within_availability(room: Room, start: datetime, end: datetime) -> bool:
    """Return True when ``[start, end)`` fits the room's availability rules.

    Rooms without enabled rules are unrestricted.
    """
    if not room.availability.active:
        return True

    local_start = start.astimezone(room.tz)
    local_end = end.astimezone(room.tz)
    return any(
        booking_fits_rule(rule, local_start, local_end) for rule in room.availability.rules
    )


def booking_fits_rule(rule: AvailabilityRule, local_start: datetime, local_end: datetime) -> bool:
    """Check one rule against a span already converted to room-local time."""
    if not rule.days:
        return False

    last_day, ends_at_midnight = _last_touched_day(local_start, local_end)
    first_day = local_start.date()

    if first_day == last_day:
        if weekday_index(local_start) not in rule.days:
            return False
        if local_start.time() < rule.start_time:
            return False
        return _end_fits(rule, local_end, ends_at_midnight)

    day = first_day
    while day <= last_day:
        if weekday_index(datetime.combine(day, time())) not in rule.days:
            return False
        day += timedelta(days=1)

    if local_start.time() < rule.start_time:
        return False
    return _end_fits(rule, local_end, ends_at_midnight)


def _last_touched_day(local_start: datetime, local_end: datetime) -> tuple[date, bool]:
    """Last calendar day intersecting the half-open span.

    A span ending exactly at midnight does not touch the following day.
    """
    if (
        local_end > local_start
        and local_end.time() == time()
        and local_end.date() > local_start.date()
    ):
        return local_end.date() - timedelta(days=1), True
    return local_end.date(), False


def _end_fits(rule: AvailabilityRule, local_end: datetime, ends_at_midnight: bool) -> bool:
    if ends_at_midnight:
        # Runs to the end of the previous day: only rules open until 23:59 allow it.
        return rule.end_time >= _END_OF_DAY
    return local_end.time() <= rule.end_time


# ---------------------------------------------------------------------------
# VAVAILABILITY publishing
# ---------------------------------------------------------------------------


def _ical_time(value: time) -> str:
    return value.strftime("%H%M%S")


def build_vavailability(room: Room) -> str:
    """Render the room's rules as a VCALENDAR holding one VAVAILABILITY."""
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    anchor = _AVAILABILITY_ANCHOR.strftime("%Y%m%d")
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "BEGIN:VAVAILABILITY",
        f"UID:{AVAILABILITY_OBJECT_UID}-{room.id}",
        f"DTSTAMP:{stamp}",
        f"ORGANIZER:mailto:{room.email}",
        f"DTSTART;TZID={room.timezone}:{anchor}T000000",
    ]
    for index, rule in enumerate(room.availability.rules):
        if not rule.days:
            continue
        by_day = ",".join(WEEKDAY_CODES[day] for day in sorted(rule.days))
        lines.extend(
            [
                "BEGIN:AVAILABLE",
                f"UID:{AVAILABILITY_OBJECT_UID}-{room.id}-{index}",
                f"DTSTAMP:{stamp}",
                f"DTSTART;TZID={room.timezone}:{anchor}T{_ical_time(rule.start_time)}",
                f"DTEND;TZID={room.timezone}:{anchor}T{_ical_time(rule.end_time)}",
                f"RRULE:FREQ=WEEKLY;BYDAY={by_day}",
                "SUMMARY:Available",
                "END:AVAILABLE",
            ]
        )
    lines.extend(["END:VAVAILABILITY", "END:VCALENDAR"])
    return "\r\n".join(lines) + "\r\n"


async def publish_availability(room: Room, store: CalendarStore) -> bool:
    """Create, update or remove the room's VAVAILABILITY object.

    Returns True when an object is published, False when it was removed (or
    there was nothing to publish).
    """
    uid = f"{AVAILABILITY_OBJECT_UID}-{room.id}"
    if not room.availability.active:
        removed = await store.delete(room.id, uid)
        if removed:
            logger.info("Removed VAVAILABILITY for room %s", room.id)
        return False

    await store.upsert(room.id, uid, build_vavailability(room))
    logger.info("Published VAVAILABILITY for room %s", room.id)
    return True
