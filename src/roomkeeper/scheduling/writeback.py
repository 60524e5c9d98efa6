"""Organizer-copy write-back hook.

Hosts call ``OrganizerCopyHook.after_write(path)`` after a calendar object is
stored. The hook re-reads the object and

- turns LOCATION-only events into room invitations (saved first, then booked);
- mirrors recorded room decisions, ``CUTYPE=ROOM`` and the room location onto
  the organizer's copy, writing it back only when something changed.
"""

from __future__ import annotations

import logging

from roomkeeper.errors import MalformedEventError
from roomkeeper.scheduling import ical
from roomkeeper.scheduling.collaborators import CalendarObjectTree
from roomkeeper.scheduling.engine import ReconciliationEngine

logger = logging.getLogger(__name__)

CALENDAR_OBJECT_SUFFIX = ".ics"


class OrganizerCopyHook:
    def __init__(self, engine: ReconciliationEngine, tree: CalendarObjectTree) -> None:
        self._engine = engine
        self._tree = tree

    async def after_write(self, path: str) -> bool:
        """Reconcile the calendar object at *path*; True when it was rewritten."""
        if not path.endswith(CALENDAR_OBJECT_SUFFIX):
            return False

        data = await self._tree.get(path)
        if not data:
            return False

        try:
            calendar = ical.parse_calendar(data)
        except MalformedEventError as exc:
            logger.debug("Write-back skipped for %s: %s", path, exc)
            return False
        if ical.first_event(calendar) is None:
            return False

        rewritten = False
        owner = await self._tree.owner_email(path)
        synthesized = await self._engine.synthesize_from_location(calendar, owner=owner)
        if synthesized is not None:
            await self._tree.put(path, ical.serialize_calendar(synthesized))
            rewritten = True
            await self._engine.book_from_location(synthesized)

        before = ical.serialize_calendar(calendar)
        await self._engine.reconcile_organizer_copy(calendar)
        after = ical.serialize_calendar(calendar)
        if after != before:
            await self._tree.put(path, after)
            logger.info("Applied room metadata to organizer copy %s", path)
            rewritten = True
        return rewritten
