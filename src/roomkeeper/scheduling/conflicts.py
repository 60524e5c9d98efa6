"""Conflict detection and booking listing over a room calendar store."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, tzinfo

from roomkeeper.errors import MalformedEventError
from roomkeeper.scheduling.collaborators import CalendarStore
from roomkeeper.scheduling.ical import booking_from_event, first_event, parse_calendar
from roomkeeper.scheduling.models import Booking, StoredCalendarObject
from roomkeeper.scheduling.overlap import overlaps

logger = logging.getLogger(__name__)

_DISTANT_PAST = datetime.min.replace(tzinfo=UTC)


def _parse_stored(
    room_id: str, stored: StoredCalendarObject, default_tz: tzinfo
) -> Booking | None:
    try:
        vevent = first_event(parse_calendar(stored.data))
    except MalformedEventError:
        logger.warning("Skipping unparsable object %s in room %s", stored.uid, room_id)
        return None
    if vevent is None:
        return None
    return booking_from_event(vevent, fallback_uid=stored.uid, default_tz=default_tz)


class ConflictDetector:
    """Answer whether a time span collides with an existing booking."""

    def __init__(self, store: CalendarStore) -> None:
        self._store = store

    async def has_conflict(
        self,
        room_id: str,
        start: datetime,
        end: datetime,
        exclude_uid: str | None = None,
        *,
        default_tz: tzinfo = UTC,
    ) -> bool:
        """True when ``[start, end)`` overlaps a non-cancelled booking.

        The booking stored under *exclude_uid* is ignored so that an updated
        request never conflicts with its own previous version.
        """
        for stored in await self._store.list(room_id):
            if exclude_uid is not None and stored.uid == exclude_uid:
                continue
            booking = _parse_stored(room_id, stored, default_tz)
            if booking is None or booking.start is None or booking.end is None:
                continue
            if exclude_uid is not None and booking.uid == exclude_uid:
                continue
            if booking.cancelled:
                continue
            if overlaps(start, end, booking.start, booking.end):
                logger.debug(
                    "Room %s: %s..%s overlaps booking %s", room_id, start, end, booking.uid
                )
                return True
        return False


async def list_bookings(
    store: CalendarStore,
    room_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    *,
    default_tz: tzinfo = UTC,
) -> list[Booking]:
    """Return the room's bookings sorted by start, optionally within a window."""
    bookings: list[Booking] = []
    for stored in await store.list(room_id):
        booking = _parse_stored(room_id, stored, default_tz)
        if booking is None or booking.start is None:
            continue
        booking_end = booking.end or booking.start
        if start is not None and booking_end <= start:
            continue
        if end is not None and booking.start >= end:
            continue
        bookings.append(booking)
    bookings.sort(key=lambda booking: booking.start or _DISTANT_PAST)
    return bookings
