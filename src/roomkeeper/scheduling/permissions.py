"""Role resolution for room bookings.

Roles are tiered ``none < viewer < booker < manager``. A user's effective
role is the highest tier whose entries (room set merged with the room's group
set) name the user directly or through a group membership. Global admins are
managers of every room. A room whose effective set is empty is *open*: the
engine skips the permission gate entirely for it.
"""

from __future__ import annotations

import logging

from roomkeeper.scheduling.collaborators import GroupDirectory, PermissionStore
from roomkeeper.scheduling.models import PermissionEntry, PermissionSet, Role, Room

logger = logging.getLogger(__name__)


class PermissionResolver:
    """Resolve roles against a permission store and group directory."""

    def __init__(self, permissions: PermissionStore, groups: GroupDirectory) -> None:
        self._permissions = permissions
        self._groups = groups

    async def effective_set(self, room: Room) -> PermissionSet:
        return await self._permissions.effective_set(room.id)

    async def is_open(self, room: Room) -> bool:
        return (await self.effective_set(room)).is_empty

    async def effective_role(self, user_id: str, room: Room) -> Role:
        if await self._groups.is_admin(user_id):
            return Role.MANAGER

        permission_set = await self.effective_set(room)
        tiers = (
            (Role.MANAGER, permission_set.managers),
            (Role.BOOKER, permission_set.bookers),
            (Role.VIEWER, permission_set.viewers),
        )
        for role, entries in tiers:
            if await self._matches_any(user_id, entries):
                return role
        return Role.NONE

    async def can_view(self, user_id: str, room: Room) -> bool:
        return await self.effective_role(user_id, room) >= Role.VIEWER

    async def can_book(self, user_id: str, room: Room) -> bool:
        return await self.effective_role(user_id, room) >= Role.BOOKER

    async def can_manage(self, user_id: str, room: Room) -> bool:
        return await self.effective_role(user_id, room) >= Role.MANAGER

    async def manager_user_ids(self, room: Room) -> list[str]:
        """User ids of the room's managers, with groups expanded."""
        permission_set = await self.effective_set(room)
        user_ids: list[str] = []
        for entry in permission_set.managers:
            if entry.type == "user":
                candidates = [entry.id]
            else:
                candidates = await self._groups.members(entry.id)
            for user_id in candidates:
                if user_id not in user_ids:
                    user_ids.append(user_id)
        return user_ids

    async def _matches_any(self, user_id: str, entries: list[PermissionEntry]) -> bool:
        for entry in entries:
            if entry.type == "user" and entry.id == user_id:
                return True
            if entry.type == "group" and await self._groups.is_member(user_id, entry.id):
                return True
        return False
