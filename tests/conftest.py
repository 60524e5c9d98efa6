"""Shared test fixtures for the roomkeeper test suite.

Factories are exposed as fixtures (``make_ics``, ``make_room``,
``make_harness``) so that test modules never import from this file.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import pytest

from roomkeeper.errors import NotificationError
from roomkeeper.scheduling.collaborators import Notifier
from roomkeeper.scheduling.decisions import DecisionLedger
from roomkeeper.scheduling.engine import ReconciliationEngine
from roomkeeper.scheduling.models import EventInfo, Room, RoomDirectorySnapshot, RoomGroup
from roomkeeper.stores.memory import ConfigDirectory, InMemoryCalendarStore

# Friday 2030-03-01 12:00 UTC; 2030-03-04 is the following Monday.
NOW = datetime(2030, 3, 1, 12, 0, tzinfo=UTC)


def _ics(
    uid: str | None = "evt-1",
    *,
    start: str | None = "20300305T090000Z",
    end: str | None = "20300305T100000Z",
    summary: str = "Team sync",
    organizer: str | None = "alice@example.com",
    attendees: Iterable[str] = ("room-a@example.com",),
    cutype: str | None = "INDIVIDUAL",
    rrule: str | None = None,
    location: str | None = None,
    status: str | None = None,
    method: str | None = "REQUEST",
) -> str:
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//roomkeeper tests//EN"]
    if method:
        lines.append(f"METHOD:{method}")
    lines.append("BEGIN:VEVENT")
    if uid:
        lines.append(f"UID:{uid}")
    lines.append("DTSTAMP:20300101T000000Z")
    if start:
        lines.append(f"DTSTART:{start}")
    if end:
        lines.append(f"DTEND:{end}")
    lines.append(f"SUMMARY:{summary}")
    if organizer:
        lines.append(f"ORGANIZER;CN=Alice:mailto:{organizer}")
    for address in attendees:
        params = f";CUTYPE={cutype}" if cutype else ""
        lines.append(f"ATTENDEE{params};PARTSTAT=NEEDS-ACTION:mailto:{address}")
    if rrule:
        lines.append(f"RRULE:{rrule}")
    if location is not None:
        lines.append(f"LOCATION:{location}")
    if status:
        lines.append(f"STATUS:{status}")
    lines.extend(["END:VEVENT", "END:VCALENDAR"])
    return "\r\n".join(lines) + "\r\n"


def _room(**overrides: Any) -> Room:
    data: dict[str, Any] = {
        "id": "room-a",
        "email": "room-a@example.com",
        "display_name": "Room A",
        "location": "Floor 2",
        "auto_accept": True,
    }
    data.update(overrides)
    return Room.model_validate(data)


class FakeNotifier(Notifier):
    """Records every notification call; raises on each one when ``fail`` is set."""

    def __init__(self, *, fail: bool = False) -> None:
        self.calls: list[tuple[str, str, EventInfo, Any]] = []
        self.fail = fail

    @property
    def kinds(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def _record(self, kind: str, room: Room, info: EventInfo, extra: Any = None) -> None:
        self.calls.append((kind, room.id, info, extra))
        if self.fail:
            raise NotificationError(f"{kind} notification failed")

    async def send_accepted(self, room: Room, info: EventInfo) -> None:
        await self._record("accepted", room, info)

    async def send_declined(self, room: Room, info: EventInfo, reason: str = "") -> None:
        await self._record("declined", room, info, reason)

    async def send_conflict(self, room: Room, info: EventInfo) -> None:
        await self._record("conflict", room, info)

    async def send_cancelled(
        self, room: Room, info: EventInfo, recipients: list[str] | None = None
    ) -> None:
        await self._record("cancelled", room, info, list(recipients or []))

    async def notify_managers(self, room: Room, info: EventInfo, recipients: list[str]) -> None:
        await self._record("managers", room, info, list(recipients))


@dataclass
class Harness:
    engine: ReconciliationEngine
    store: InMemoryCalendarStore
    notifier: FakeNotifier
    directory: ConfigDirectory
    ledger: DecisionLedger


def _harness(
    *rooms: Room,
    room_groups: Iterable[RoomGroup] = (),
    admins: Iterable[str] = (),
    group_members: dict[str, set[str]] | None = None,
    users: dict[str, str] | None = None,
    notifier: FakeNotifier | None = None,
    store: InMemoryCalendarStore | None = None,
    now: datetime = NOW,
) -> Harness:
    snapshot = RoomDirectorySnapshot(
        rooms={room.id: room for room in rooms},
        groups={group.id: group for group in room_groups},
        group_members=group_members or {},
        admins=set(admins),
        user_emails=users or {},
    )
    directory = ConfigDirectory(snapshot)
    store = store or InMemoryCalendarStore()
    notifier = notifier or FakeNotifier()
    ledger = DecisionLedger()
    engine = ReconciliationEngine(
        rooms=directory,
        permissions=directory,
        groups=directory,
        store=store,
        notifier=notifier,
        identities=directory,
        ledger=ledger,
        clock=lambda: now,
    )
    return Harness(engine, store, notifier, directory, ledger)


@pytest.fixture
def make_ics() -> Callable[..., str]:
    return _ics


@pytest.fixture
def make_room() -> Callable[..., Room]:
    return _room


@pytest.fixture
def make_harness() -> Callable[..., Harness]:
    return _harness


@pytest.fixture
def failing_notifier() -> FakeNotifier:
    return FakeNotifier(fail=True)
