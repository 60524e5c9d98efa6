"""iCalendar helpers over ``vobject``.

Parsing, serialising and the small set of property/parameter manipulations the
engine needs: attendee lookup by address, CUTYPE/PARTSTAT rewriting, LOCATION
defaults, and extraction of start/end/recurrence into plain Python values.

All datetimes returned here are timezone-aware. Floating times and all-day
dates are interpreted in the caller-supplied default timezone (normally the
room's wall clock).
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, timedelta, tzinfo
from typing import Any

import vobject
from vobject.icalendar import utc as ICAL_UTC

from roomkeeper.errors import MalformedEventError
from roomkeeper.scheduling.models import (
    Booking,
    EventInfo,
    EventStatus,
    Partstat,
    Room,
)

logger = logging.getLogger(__name__)

PRODID = "-//roomkeeper//Room Scheduling//EN"
CUTYPE_ROOM = "ROOM"
_MAILTO = "mailto:"


def parse_calendar(data: str) -> Any:
    """Parse iCalendar text into a VCALENDAR component.

    Raises ``MalformedEventError`` when the text is empty or unparsable.
    """
    if not data or not data.strip():
        raise MalformedEventError("calendar data is empty")
    try:
        return vobject.readOne(data)
    except (vobject.base.ParseError, StopIteration, ValueError) as exc:
        raise MalformedEventError(f"unparsable calendar data: {exc}") from exc


def serialize_calendar(calendar: Any) -> str:
    try:
        return calendar.serialize()
    except vobject.base.VObjectError as exc:
        raise MalformedEventError(f"cannot serialize calendar: {exc}") from exc


def first_event(calendar: Any) -> Any | None:
    """Return the first VEVENT of *calendar*, or None."""
    if calendar is None:
        return None
    events = calendar.contents.get("vevent", [])
    return events[0] if events else None


def strip_mailto(address: str) -> str:
    value = address.strip()
    if value.lower().startswith(_MAILTO):
        return value[len(_MAILTO) :]
    return value


def normalize_address(address: str) -> str:
    """Lower-cased bare email for comparisons (``mailto:`` removed)."""
    return strip_mailto(address).lower()


# ---------------------------------------------------------------------------
# Property and parameter access
# ---------------------------------------------------------------------------


def get_param(line: Any, name: str) -> str | None:
    values = line.params.get(name.upper())
    if not values:
        return None
    return str(values[0])


def set_param(line: Any, name: str, value: str) -> None:
    line.params[name.upper()] = [value]


def text_value(component: Any, name: str) -> str:
    lines = component.contents.get(name.lower(), [])
    if not lines:
        return ""
    value = lines[0].value
    return "" if value is None else str(value)


def set_text(component: Any, name: str, value: str) -> None:
    lines = component.contents.get(name.lower(), [])
    if lines:
        lines[0].value = value
    else:
        component.add(name.lower()).value = value


def event_uid(vevent: Any) -> str:
    return text_value(vevent, "uid").strip()


def attendees(vevent: Any) -> list[Any]:
    return list(vevent.contents.get("attendee", []))


def find_attendee(vevent: Any, address: str) -> Any | None:
    target = normalize_address(address)
    for attendee in attendees(vevent):
        if normalize_address(str(attendee.value)) == target:
            return attendee
    return None


def organizer_email(vevent: Any) -> str:
    return strip_mailto(text_value(vevent, "organizer"))


def organizer_name(vevent: Any) -> str:
    lines = vevent.contents.get("organizer", [])
    if not lines:
        return ""
    return get_param(lines[0], "CN") or organizer_email(vevent)


def parse_partstat(value: str | None) -> Partstat:
    if not value:
        return Partstat.NEEDS_ACTION
    try:
        return Partstat(value.strip().upper())
    except ValueError:
        return Partstat.NEEDS_ACTION


def set_attendee_partstat(vevent: Any, address: str, partstat: Partstat) -> bool:
    """Set PARTSTAT on the attendee matching *address*; False when absent."""
    attendee = find_attendee(vevent, address)
    if attendee is None:
        return False
    set_param(attendee, "PARTSTAT", partstat.value)
    return True


def ensure_room_cutype(attendee: Any) -> bool:
    """Force ``CUTYPE=ROOM`` on *attendee*; True when it changed."""
    if (get_param(attendee, "CUTYPE") or "").upper() == CUTYPE_ROOM:
        return False
    set_param(attendee, "CUTYPE", CUTYPE_ROOM)
    return True


def add_attendee(
    vevent: Any,
    address: str,
    *,
    common_name: str,
    cutype: str = CUTYPE_ROOM,
    role: str = "REQ-PARTICIPANT",
    partstat: Partstat = Partstat.NEEDS_ACTION,
) -> Any:
    line = vevent.add("attendee")
    line.value = f"{_MAILTO}{strip_mailto(address)}"
    set_param(line, "CN", common_name)
    set_param(line, "CUTYPE", cutype)
    set_param(line, "ROLE", role)
    set_param(line, "PARTSTAT", partstat.value)
    return line


def room_attendee_partstat(vevent: Any) -> Partstat:
    """PARTSTAT of the room attendee.

    Prefers the ``CUTYPE=ROOM`` attendee; falls back to the first attendee that
    is not the organizer, since some clients label rooms as individuals.
    """
    organizer = organizer_email(vevent).lower()
    fallback: Partstat | None = None
    for attendee in attendees(vevent):
        if (get_param(attendee, "CUTYPE") or "").upper() == CUTYPE_ROOM:
            return parse_partstat(get_param(attendee, "PARTSTAT"))
        if fallback is None and normalize_address(str(attendee.value)) != organizer:
            fallback = parse_partstat(get_param(attendee, "PARTSTAT"))
    return fallback or Partstat.NEEDS_ACTION


def set_room_attendee_partstat(vevent: Any, partstat: Partstat) -> bool:
    """Set PARTSTAT on the room attendee, using the same fallback as the reader."""
    organizer = organizer_email(vevent).lower()
    candidates = attendees(vevent)
    for attendee in candidates:
        if (get_param(attendee, "CUTYPE") or "").upper() == CUTYPE_ROOM:
            set_param(attendee, "PARTSTAT", partstat.value)
            return True
    for attendee in candidates:
        if normalize_address(str(attendee.value)) != organizer:
            set_param(attendee, "PARTSTAT", partstat.value)
            return True
    return False


# ---------------------------------------------------------------------------
# Time values
# ---------------------------------------------------------------------------


def _as_aware(value: date | datetime, default_tz: tzinfo) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None or value.utcoffset() is None:
            return value.replace(tzinfo=default_tz)
        return value
    return datetime(value.year, value.month, value.day, tzinfo=default_tz)


def _raw_value(component: Any, name: str) -> Any | None:
    lines = component.contents.get(name, [])
    if not lines:
        return None
    return lines[0].value


def event_start(vevent: Any, default_tz: tzinfo = UTC) -> datetime | None:
    value = _raw_value(vevent, "dtstart")
    if not isinstance(value, (date, datetime)):
        return None
    return _as_aware(value, default_tz)


def event_end(vevent: Any, default_tz: tzinfo = UTC) -> datetime | None:
    """DTEND, else DTSTART + DURATION, else the RFC 5545 implicit end."""
    start_raw = _raw_value(vevent, "dtstart")
    end_raw = _raw_value(vevent, "dtend")
    if isinstance(end_raw, (date, datetime)):
        return _as_aware(end_raw, default_tz)
    if not isinstance(start_raw, (date, datetime)):
        return None
    start = _as_aware(start_raw, default_tz)
    duration = _raw_value(vevent, "duration")
    if isinstance(duration, timedelta):
        return start + duration
    if not isinstance(start_raw, datetime):
        return start + timedelta(days=1)
    return start


def recurrence_rule(vevent: Any) -> str | None:
    value = text_value(vevent, "rrule").strip()
    return value or None


def event_status(vevent: Any) -> EventStatus | None:
    value = text_value(vevent, "status").strip().upper()
    if not value:
        return None
    try:
        return EventStatus(value)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


def booking_from_event(vevent: Any, *, fallback_uid: str = "", default_tz: tzinfo = UTC) -> Booking:
    return Booking(
        uid=event_uid(vevent) or fallback_uid,
        start=event_start(vevent, default_tz),
        end=event_end(vevent, default_tz),
        summary=text_value(vevent, "summary"),
        organizer_email=organizer_email(vevent),
        organizer_name=organizer_name(vevent),
        partstat=room_attendee_partstat(vevent),
        status=event_status(vevent),
        rrule=recurrence_rule(vevent),
        location=text_value(vevent, "location"),
        description=text_value(vevent, "description"),
    )


def event_info(vevent: Any, default_tz: tzinfo = UTC) -> EventInfo:
    return EventInfo(
        uid=event_uid(vevent),
        summary=text_value(vevent, "summary") or "Unnamed event",
        start=event_start(vevent, default_tz),
        end=event_end(vevent, default_tz),
        organizer_email=organizer_email(vevent),
        organizer_name=organizer_name(vevent),
        description=text_value(vevent, "description"),
        location=text_value(vevent, "location"),
    )


# ---------------------------------------------------------------------------
# Outbound iTIP objects
# ---------------------------------------------------------------------------


def _new_itip(method: str, info: EventInfo) -> tuple[Any, Any]:
    calendar = vobject.iCalendar()
    calendar.add("prodid").value = PRODID
    calendar.add("method").value = method
    vevent = calendar.add("vevent")
    now = datetime.now(ICAL_UTC).replace(microsecond=0)
    vevent.add("uid").value = info.uid
    vevent.add("dtstamp").value = now
    vevent.add("dtstart").value = (info.start or now).astimezone(ICAL_UTC)
    vevent.add("dtend").value = (info.end or info.start or now).astimezone(ICAL_UTC)
    vevent.add("summary").value = info.summary
    return calendar, vevent


def build_reply(room: Room, info: EventInfo, partstat: Partstat) -> str:
    """METHOD:REPLY carrying the room's participation status."""
    calendar, vevent = _new_itip("REPLY", info)
    if info.organizer_email:
        organizer = vevent.add("organizer")
        organizer.value = f"{_MAILTO}{info.organizer_email}"
        set_param(organizer, "CN", info.organizer_name or info.organizer_email)
    add_attendee(
        vevent,
        room.email,
        common_name=room.display_name,
        role="NON-PARTICIPANT",
        partstat=partstat,
    )
    return calendar.serialize()


def build_cancel(info: EventInfo) -> str:
    """METHOD:CANCEL for a removed booking."""
    calendar, vevent = _new_itip("CANCEL", info)
    vevent.add("status").value = EventStatus.CANCELLED.value
    return calendar.serialize()
