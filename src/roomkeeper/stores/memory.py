"""In-process collaborators backed by configuration and dictionaries.

``ConfigDirectory`` serves rooms, permissions, groups and user identities from
a ``RoomDirectorySnapshot`` (normally built from ``roomkeeper.toml``).
``InMemoryCalendarStore`` and ``InMemoryCalendarObjectTree`` hold calendar
text in dictionaries; they back the CLI dry-run and the test suite.
"""

from __future__ import annotations

import logging

from roomkeeper.scheduling.collaborators import (
    CalendarObjectTree,
    CalendarStore,
    GroupDirectory,
    IdentityResolver,
    PermissionStore,
    RoomDirectory,
)
from roomkeeper.scheduling.ical import normalize_address
from roomkeeper.scheduling.models import (
    PermissionSet,
    Room,
    RoomDirectorySnapshot,
    StoredCalendarObject,
)

logger = logging.getLogger(__name__)

ROOM_PRINCIPAL_PREFIX = "principals/rooms/"


class ConfigDirectory(RoomDirectory, PermissionStore, GroupDirectory, IdentityResolver):
    """Room, permission, group and identity lookups over a snapshot."""

    def __init__(self, snapshot: RoomDirectorySnapshot) -> None:
        self._snapshot = snapshot
        self._rooms_by_email = {room.email: room for room in snapshot.rooms.values()}
        self._users_by_email = {
            email.strip().lower(): user_id for user_id, email in snapshot.user_emails.items()
        }

    # -- RoomDirectory -----------------------------------------------------

    async def get(self, room_id: str) -> Room | None:
        return self._snapshot.rooms.get(room_id)

    async def resolve_principal(self, address: str) -> Room | None:
        value = address.strip().rstrip("/")
        if value.startswith(ROOM_PRINCIPAL_PREFIX):
            return self._snapshot.rooms.get(value[len(ROOM_PRINCIPAL_PREFIX) :])
        return self._rooms_by_email.get(normalize_address(value))

    async def all_rooms(self) -> list[Room]:
        return list(self._snapshot.rooms.values())

    # -- PermissionStore ---------------------------------------------------

    async def effective_set(self, room_id: str) -> PermissionSet:
        room = self._snapshot.rooms.get(room_id)
        if room is None:
            return PermissionSet()
        group = self._snapshot.groups.get(room.group_id) if room.group_id else None
        return room.permissions.merged(group.permissions if group else None)

    # -- GroupDirectory ----------------------------------------------------

    async def is_member(self, user_id: str, group_id: str) -> bool:
        return user_id in self._snapshot.group_members.get(group_id, set())

    async def members(self, group_id: str) -> list[str]:
        return sorted(self._snapshot.group_members.get(group_id, set()))

    async def is_admin(self, user_id: str) -> bool:
        return user_id in self._snapshot.admins

    # -- IdentityResolver --------------------------------------------------

    async def resolve_sender_to_user(self, address: str) -> str | None:
        return self._users_by_email.get(normalize_address(address))

    async def email_for_user(self, user_id: str) -> str | None:
        return self._snapshot.user_emails.get(user_id)


class InMemoryCalendarStore(CalendarStore):
    """Room calendars as ``{room_id: {uid: data}}``."""

    def __init__(self) -> None:
        self._calendars: dict[str, dict[str, str]] = {}

    async def list(self, room_id: str) -> list[StoredCalendarObject]:
        objects = self._calendars.get(room_id, {})
        return [StoredCalendarObject(uid=uid, data=data) for uid, data in objects.items()]

    async def get_by_uid(self, room_id: str, uid: str) -> StoredCalendarObject | None:
        data = self._calendars.get(room_id, {}).get(uid)
        return StoredCalendarObject(uid=uid, data=data) if data is not None else None

    async def upsert(self, room_id: str, uid: str, data: str) -> None:
        created = uid not in self._calendars.get(room_id, {})
        self._calendars.setdefault(room_id, {})[uid] = data
        logger.debug("%s %s in room calendar %s", "Created" if created else "Updated", uid, room_id)

    async def delete(self, room_id: str, uid: str) -> bool:
        return self._calendars.get(room_id, {}).pop(uid, None) is not None


class InMemoryCalendarObjectTree(CalendarObjectTree):
    """Organizer calendar objects keyed by path.

    Paths follow ``calendars/<owner>/<calendar>/<uid>.ics``; the owner segment
    is mapped to an email through *owner_emails*.
    """

    def __init__(self, owner_emails: dict[str, str] | None = None) -> None:
        self.objects: dict[str, str] = {}
        self.writes: list[str] = []
        self._owner_emails = owner_emails or {}

    async def get(self, path: str) -> str | None:
        return self.objects.get(path)

    async def put(self, path: str, data: str) -> None:
        self.objects[path] = data
        self.writes.append(path)

    async def owner_email(self, path: str) -> str | None:
        parts = path.strip("/").split("/")
        if len(parts) < 2 or parts[0] != "calendars":
            return None
        return self._owner_emails.get(parts[1])
