"""Bounded record of recent room decisions.

The engine writes the PARTSTAT it decided for each ``(uid, room email)`` pair
here; the organizer-copy write-back reads it to mirror the decision onto the
organizer's calendar. Entries expire after ``ttl_seconds`` and the ledger
evicts least-recently-used entries beyond ``max_entries``.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable

from roomkeeper.scheduling.models import Partstat

DEFAULT_TTL_SECONDS = 3600.0
DEFAULT_MAX_ENTRIES = 1024


class DecisionLedger:
    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[tuple[str, str], tuple[Partstat, float]] = OrderedDict()

    @staticmethod
    def _key(uid: str, room_email: str) -> tuple[str, str]:
        return uid, room_email.strip().lower()

    def record(self, uid: str, room_email: str, partstat: Partstat) -> None:
        key = self._key(uid, room_email)
        self._entries[key] = (partstat, self._clock() + self._ttl)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def lookup(self, uid: str, room_email: str) -> Partstat | None:
        """Return the recorded decision, or None when absent or expired."""
        key = self._key(uid, room_email)
        entry = self._entries.get(key)
        if entry is None:
            return None
        partstat, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return partstat

    def forget(self, uid: str, room_email: str) -> None:
        self._entries.pop(self._key(uid, room_email), None)

    def __len__(self) -> int:
        return len(self._entries)
