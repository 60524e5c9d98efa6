"""Abstract collaborators consumed by the scheduling engine.

Each seam is an async ABC so that the engine can run against in-memory
stores, PostgreSQL or a host CalDAV server without changing its logic.
"""

from __future__ import annotations

import abc

from roomkeeper.scheduling.models import (
    EventInfo,
    PermissionSet,
    Room,
    StoredCalendarObject,
)


class RoomDirectory(abc.ABC):
    """Lookup of room definitions."""

    @abc.abstractmethod
    async def get(self, room_id: str) -> Room | None:
        """Return the room with *room_id*, or None."""
        ...

    @abc.abstractmethod
    async def resolve_principal(self, address: str) -> Room | None:
        """Map a calendar user address (``mailto:`` or principal URI) to a room."""
        ...

    @abc.abstractmethod
    async def all_rooms(self) -> list[Room]:
        """Return every configured room, active or not."""
        ...


class PermissionStore(abc.ABC):
    @abc.abstractmethod
    async def effective_set(self, room_id: str) -> PermissionSet:
        """Return the room's permission set merged with its group's set."""
        ...


class GroupDirectory(abc.ABC):
    """User group membership and global admin lookup."""

    @abc.abstractmethod
    async def is_member(self, user_id: str, group_id: str) -> bool: ...

    @abc.abstractmethod
    async def members(self, group_id: str) -> list[str]: ...

    @abc.abstractmethod
    async def is_admin(self, user_id: str) -> bool: ...


class CalendarStore(abc.ABC):
    """Per-room calendar object storage keyed by event UID.

    Implementations raise ``CalendarStoreError`` on backend failures.
    """

    @abc.abstractmethod
    async def list(self, room_id: str) -> list[StoredCalendarObject]:
        """Return every object stored in the room calendar."""
        ...

    @abc.abstractmethod
    async def get_by_uid(self, room_id: str, uid: str) -> StoredCalendarObject | None: ...

    @abc.abstractmethod
    async def upsert(self, room_id: str, uid: str, data: str) -> None:
        """Create or replace the object stored under *uid*."""
        ...

    @abc.abstractmethod
    async def delete(self, room_id: str, uid: str) -> bool:
        """Remove the object stored under *uid*; False when it did not exist."""
        ...


class Notifier(abc.ABC):
    """Outbound booking notifications.

    Callers treat every method as best effort; failures are logged, never
    propagated into scheduling results.
    """

    @abc.abstractmethod
    async def send_accepted(self, room: Room, info: EventInfo) -> None: ...

    @abc.abstractmethod
    async def send_declined(self, room: Room, info: EventInfo, reason: str = "") -> None: ...

    @abc.abstractmethod
    async def send_conflict(self, room: Room, info: EventInfo) -> None: ...

    @abc.abstractmethod
    async def send_cancelled(
        self, room: Room, info: EventInfo, recipients: list[str] | None = None
    ) -> None:
        """Tell the organizer (and any extra *recipients*) a booking was cancelled."""
        ...

    @abc.abstractmethod
    async def notify_managers(self, room: Room, info: EventInfo, recipients: list[str]) -> None:
        """Ask room managers to approve a tentative booking."""
        ...


class IdentityResolver(abc.ABC):
    """Mapping between calendar user addresses and host user ids."""

    @abc.abstractmethod
    async def resolve_sender_to_user(self, address: str) -> str | None: ...

    @abc.abstractmethod
    async def email_for_user(self, user_id: str) -> str | None: ...


class CalendarObjectTree(abc.ABC):
    """Read/write access to organizer calendar objects by path."""

    @abc.abstractmethod
    async def get(self, path: str) -> str | None:
        """Return the iCalendar text stored at *path*, or None."""
        ...

    @abc.abstractmethod
    async def put(self, path: str, data: str) -> None: ...

    @abc.abstractmethod
    async def owner_email(self, path: str) -> str | None:
        """Email of the principal owning the calendar that holds *path*."""
        ...
