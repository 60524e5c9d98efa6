"""Plain-text bodies and subjects for booking notifications."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, tzinfo

from roomkeeper.scheduling.models import EventInfo, Room


class NotificationKind(enum.StrEnum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CONFLICT = "conflict"
    APPROVAL_REQUEST = "approval_request"
    CANCELLED = "cancelled"


_SUBJECT_PREFIXES: dict[NotificationKind, str] = {
    NotificationKind.ACCEPTED: "Booking confirmed",
    NotificationKind.DECLINED: "Booking declined",
    NotificationKind.CONFLICT: "Booking conflict",
    NotificationKind.APPROVAL_REQUEST: "Booking request",
    NotificationKind.CANCELLED: "Booking cancelled",
}


@dataclass(frozen=True)
class RenderedNotification:
    kind: NotificationKind
    subject: str
    body: str


def _format_start(value: datetime | None, tz: tzinfo) -> str:
    if value is None:
        return "Unknown"
    local = value.astimezone(tz)
    return f"{local:%A, %B} {local.day}, {local:%Y %H:%M}"


def _format_end(value: datetime | None, tz: tzinfo) -> str:
    if value is None:
        return "Unknown"
    return f"{value.astimezone(tz):%H:%M}"


def render(
    kind: NotificationKind, room: Room, info: EventInfo, *, reason: str = ""
) -> RenderedNotification:
    """Render the subject and body for one notification."""
    when = f"{_format_start(info.start, room.tz)} – {_format_end(info.end, room.tz)}"
    organizer = info.organizer_name or info.organizer_email
    details = [
        f"Room: {room.display_name}",
        f"Event: {info.summary}",
        f"Date: {when}",
    ]

    if kind == NotificationKind.ACCEPTED:
        intro = "Your booking has been confirmed."
        details.append(f"Organizer: {organizer}")
        outro = "The room has been reserved for your event."
    elif kind == NotificationKind.DECLINED:
        intro = "Your booking request has been declined."
        if reason:
            details.append(f"Reason: {reason}")
        outro = "Please contact the room manager for more information."
    elif kind == NotificationKind.CONFLICT:
        intro = "Your booking could not be processed due to a scheduling conflict."
        outro = "The room is already booked for this time slot. Please choose a different time."
    elif kind == NotificationKind.APPROVAL_REQUEST:
        intro = "A new booking request requires your approval."
        details.append(f"Requested by: {organizer} ({info.organizer_email})")
        outro = "Please accept or decline this request."
    else:
        intro = "A booking has been cancelled."
        details.append(f"Cancelled by: {organizer}")
        outro = "The room is now available for this time slot."

    body = "\n\n".join([intro, "\n".join(details), outro])
    subject = f"{_SUBJECT_PREFIXES[kind]}: {room.display_name} — {info.summary}"
    return RenderedNotification(kind=kind, subject=subject, body=body)
