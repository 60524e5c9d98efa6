"""Free-text LOCATION matching for clients that never add room attendees.

Some clients let users pick a room only as a LOCATION string. When an
organizer copy has no room attendee, the matcher compares LOCATION against
each active room's name, email, email local part and canonical
``"Name — Location"`` string; on a match the event is rewritten into an
ordinary room invitation.
"""

from __future__ import annotations

import logging
from typing import Any

from roomkeeper.scheduling.ical import (
    CUTYPE_ROOM,
    add_attendee,
    attendees,
    find_attendee,
    first_event,
    get_param,
    normalize_address,
    set_param,
    set_text,
    text_value,
)
from roomkeeper.scheduling.models import Room

logger = logging.getLogger(__name__)


def _location_keys(room: Room) -> set[str]:
    keys = {
        room.display_name,
        room.email,
        room.email_local_part,
        room.canonical_location,
    }
    return {key.strip().lower() for key in keys if key.strip()}


class LocationFallbackMatcher:
    """Map LOCATION text to a room and synthesize the missing attendee."""

    def __init__(self, rooms: list[Room]) -> None:
        self._rooms = [room for room in rooms if room.active]

    def match(self, location: str) -> Room | None:
        needle = location.strip().lower()
        if not needle:
            return None
        for room in self._rooms:
            if needle in _location_keys(room):
                return room
        return None

    def has_room_attendee(self, vevent: Any) -> bool:
        """True when any attendee is a known room or is typed CUTYPE=ROOM."""
        room_addresses = {room.email for room in self._rooms}
        for attendee in attendees(vevent):
            if (get_param(attendee, "CUTYPE") or "").upper() == CUTYPE_ROOM:
                return True
            if normalize_address(str(attendee.value)) in room_addresses:
                return True
        return False

    def synthesize(self, calendar: Any, room: Room, owner_email: str | None) -> bool:
        """Rewrite *calendar* in place into an invitation for *room*.

        Returns False when the event cannot be addressed (no ORGANIZER and no
        owner to take it from).
        """
        vevent = first_event(calendar)
        if vevent is None:
            return False

        if not text_value(vevent, "organizer").strip():
            if not owner_email:
                logger.info("Cannot synthesize room %s attendee: no organizer", room.id)
                return False
            organizer = vevent.add("organizer")
            organizer.value = f"mailto:{owner_email}"
            set_param(organizer, "CN", owner_email)

        if find_attendee(vevent, room.email) is None:
            add_attendee(vevent, room.email, common_name=room.display_name)
        set_text(vevent, "location", room.canonical_location)
        return True
