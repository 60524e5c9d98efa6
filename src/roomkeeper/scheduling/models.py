"""Data models for room scheduling.

Configuration-owned shapes (``Room``, ``AvailabilityRule``, ``PermissionSet``)
are pydantic models so they validate when loaded from ``roomkeeper.toml``.
Per-message shapes (``Booking``, ``SchedulingMessage``, ``SchedulingOutcome``)
are plain dataclasses, mutable where the engine writes results back.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, time, tzinfo
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# RFC 5545 weekday order with Sunday first, matching the 0=Sun..6=Sat convention.
WEEKDAY_CODES: tuple[str, ...] = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")
_WEEKDAY_NAMES: dict[str, int] = {
    **{code.lower(): index for index, code in enumerate(WEEKDAY_CODES)},
    **{
        name: index
        for index, name in enumerate(
            ("sun", "mon", "tue", "wed", "thu", "fri", "sat"),
        )
    },
    **{
        name: index
        for index, name in enumerate(
            ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday"),
        )
    },
}

LOCATION_SEPARATOR = " — "


class Partstat(enum.StrEnum):
    """Participation status of the room attendee."""

    NEEDS_ACTION = "NEEDS-ACTION"
    ACCEPTED = "ACCEPTED"
    TENTATIVE = "TENTATIVE"
    DECLINED = "DECLINED"


class EventStatus(enum.StrEnum):
    """VEVENT STATUS values relevant to bookings."""

    CONFIRMED = "CONFIRMED"
    TENTATIVE = "TENTATIVE"
    CANCELLED = "CANCELLED"


class ScheduleStatus(enum.StrEnum):
    """iTIP REQUEST-STATUS codes written back onto a processed message."""

    DELIVERED = "1.2"
    REFUSED = "3.7"
    CONFLICT = "3.0"
    ERROR = "5.0"

    @property
    def description(self) -> str:
        return _SCHEDULE_STATUS_DESCRIPTIONS[self]


_SCHEDULE_STATUS_DESCRIPTIONS: dict[ScheduleStatus, str] = {
    ScheduleStatus.DELIVERED: "delivered",
    ScheduleStatus.REFUSED: "delivery refused",
    ScheduleStatus.CONFLICT: "delivery failed — conflict",
    ScheduleStatus.ERROR: "delivery error",
}


class Role(enum.IntEnum):
    """Permission tiers, ordered so that a higher tier implies the lower ones."""

    NONE = 0
    VIEWER = 1
    BOOKER = 2
    MANAGER = 3

    def __str__(self) -> str:
        return self.name.lower()


def weekday_index(value: datetime) -> int:
    """Return the 0=Sun..6=Sat weekday of *value*."""
    return (value.weekday() + 1) % 7


def _coerce_weekday(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"invalid weekday: {value!r}")
    if isinstance(value, int):
        if not 0 <= value <= 6:
            raise ValueError(f"weekday must be between 0 (Sunday) and 6 (Saturday): {value}")
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized.isdigit():
            return _coerce_weekday(int(normalized))
        if normalized in _WEEKDAY_NAMES:
            return _WEEKDAY_NAMES[normalized]
    raise ValueError(f"invalid weekday: {value!r}")


class AvailabilityRule(BaseModel):
    """A weekly window during which a room may be booked."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    days: frozenset[int] = Field(default_factory=frozenset)
    start_time: time = time(8, 0)
    end_time: time = time(18, 0)

    @field_validator("days", mode="before")
    @classmethod
    def _normalize_days(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(_coerce_weekday(item) for item in value)
        return value

    @model_validator(mode="after")
    def _validate_window(self) -> AvailabilityRule:
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be later than start_time")
        return self


class AvailabilityRules(BaseModel):
    """Availability restriction switch plus its rule list."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    rules: list[AvailabilityRule] = Field(default_factory=list)

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.rules)


class PermissionEntry(BaseModel):
    """A user or group granted a role."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["user", "group"]
    id: str = Field(min_length=1)


class PermissionSet(BaseModel):
    """Viewer/booker/manager grants for a room or a room group."""

    model_config = ConfigDict(extra="forbid")

    viewers: list[PermissionEntry] = Field(default_factory=list)
    bookers: list[PermissionEntry] = Field(default_factory=list)
    managers: list[PermissionEntry] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.viewers or self.bookers or self.managers)

    def merged(self, other: PermissionSet | None) -> PermissionSet:
        """Return the union of both sets, deduplicated by (type, id), order kept."""
        if other is None:
            return self.model_copy(deep=True)
        return PermissionSet(
            viewers=_union(self.viewers, other.viewers),
            bookers=_union(self.bookers, other.bookers),
            managers=_union(self.managers, other.managers),
        )


def _union(first: list[PermissionEntry], second: list[PermissionEntry]) -> list[PermissionEntry]:
    seen: set[tuple[str, str]] = set()
    merged: list[PermissionEntry] = []
    for entry in [*first, *second]:
        key = (entry.type, entry.id)
        if key in seen:
            continue
        seen.add(key)
        merged.append(entry)
    return merged


class Room(BaseModel):
    """A bookable room, as held by the configuration store."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    email: str = Field(min_length=3)
    display_name: str = Field(min_length=1)
    capacity: int = Field(default=0, ge=0)
    auto_accept: bool = False
    availability: AvailabilityRules = Field(default_factory=AvailabilityRules)
    max_booking_horizon_days: int = 0
    group_id: str | None = None
    active: bool = True
    location: str = ""
    description: str = ""
    timezone: str = "UTC"
    permissions: PermissionSet = Field(default_factory=PermissionSet)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized.startswith("mailto:"):
            normalized = normalized[len("mailto:") :]
        if "@" not in normalized:
            raise ValueError(f"email must contain '@': {value!r}")
        return normalized

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        normalized = value.strip()
        try:
            ZoneInfo(normalized)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"timezone must be a valid IANA timezone: {value}") from exc
        return normalized

    @property
    def tz(self) -> tzinfo:
        return ZoneInfo(self.timezone)

    @property
    def email_local_part(self) -> str:
        return self.email.split("@", 1)[0]

    @property
    def canonical_location(self) -> str:
        """Human-readable location, ``"Name — Location"`` when a location is set."""
        if self.location.strip():
            return f"{self.display_name}{LOCATION_SEPARATOR}{self.location.strip()}"
        return self.display_name


class RoomGroup(BaseModel):
    """A set of rooms sharing a permission set."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    permissions: PermissionSet = Field(default_factory=PermissionSet)


@dataclass
class Booking:
    """A booking as stored in a room calendar."""

    uid: str
    start: datetime | None
    end: datetime | None
    summary: str = ""
    organizer_email: str = ""
    organizer_name: str = ""
    partstat: Partstat = Partstat.NEEDS_ACTION
    status: EventStatus | None = None
    rrule: str | None = None
    location: str = ""
    description: str = ""

    @property
    def cancelled(self) -> bool:
        return self.status == EventStatus.CANCELLED

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-safe dictionary."""
        return {
            "uid": self.uid,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "summary": self.summary,
            "organizer_email": self.organizer_email,
            "organizer_name": self.organizer_name,
            "partstat": self.partstat.value,
            "status": self.status.value if self.status else None,
            "rrule": self.rrule,
            "location": self.location,
            "description": self.description,
        }


@dataclass
class EventInfo:
    """Notification-facing summary of an event."""

    uid: str
    summary: str
    start: datetime | None = None
    end: datetime | None = None
    organizer_email: str = ""
    organizer_name: str = ""
    description: str = ""
    location: str = ""


@dataclass(frozen=True)
class StoredCalendarObject:
    """Raw iCalendar text held by a calendar store."""

    uid: str
    data: str


@dataclass
class SchedulingMessage:
    """An iTIP message addressed to a recipient principal.

    ``payload`` is the parsed VCALENDAR (a ``vobject`` component). The engine
    writes ``result_code`` and ``result_partstat`` after processing.
    """

    method: str
    sender: str
    recipient: str
    payload: Any
    result_code: ScheduleStatus | None = None
    result_partstat: Partstat | None = None


@dataclass(frozen=True)
class SchedulingOutcome:
    """Result of processing one scheduling message for a room."""

    status: ScheduleStatus
    partstat: Partstat | None
    room_id: str
    uid: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "status_description": self.status.description,
            "partstat": self.partstat.value if self.partstat else None,
            "room_id": self.room_id,
            "uid": self.uid,
            "reason": self.reason,
        }


@dataclass
class RoomDirectorySnapshot:
    """Rooms, groups and directory data materialised from configuration."""

    rooms: dict[str, Room] = field(default_factory=dict)
    groups: dict[str, RoomGroup] = field(default_factory=dict)
    group_members: dict[str, set[str]] = field(default_factory=dict)
    admins: set[str] = field(default_factory=set)
    user_emails: dict[str, str] = field(default_factory=dict)
