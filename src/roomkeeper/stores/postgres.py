"""PostgreSQL-backed room calendar store.

One row per ``(room_id, uid)``; upserts are a single
``INSERT ... ON CONFLICT DO UPDATE`` statement so concurrent deliveries of
the same UID never produce duplicates.
"""

from __future__ import annotations

import logging

import asyncpg

from roomkeeper.errors import CalendarStoreError
from roomkeeper.scheduling.collaborators import CalendarStore
from roomkeeper.scheduling.models import StoredCalendarObject

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS room_calendar_objects (
    room_id TEXT NOT NULL,
    uid TEXT NOT NULL,
    calendar_data TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (room_id, uid)
)
"""


class PostgresCalendarStore(CalendarStore):
    """Room calendars stored in the ``room_calendar_objects`` table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        await self._pool.execute(SCHEMA_SQL)

    async def list(self, room_id: str) -> list[StoredCalendarObject]:
        try:
            rows = await self._pool.fetch(
                """
                SELECT uid, calendar_data
                FROM room_calendar_objects
                WHERE room_id = $1
                ORDER BY uid
                """,
                room_id,
            )
        except asyncpg.PostgresError as exc:
            raise CalendarStoreError(room_id=room_id, uid=None, message=str(exc)) from exc
        return [StoredCalendarObject(uid=row["uid"], data=row["calendar_data"]) for row in rows]

    async def get_by_uid(self, room_id: str, uid: str) -> StoredCalendarObject | None:
        try:
            row = await self._pool.fetchrow(
                """
                SELECT uid, calendar_data
                FROM room_calendar_objects
                WHERE room_id = $1 AND uid = $2
                """,
                room_id,
                uid,
            )
        except asyncpg.PostgresError as exc:
            raise CalendarStoreError(room_id=room_id, uid=uid, message=str(exc)) from exc
        if row is None:
            return None
        return StoredCalendarObject(uid=row["uid"], data=row["calendar_data"])

    async def upsert(self, room_id: str, uid: str, data: str) -> None:
        try:
            await self._pool.execute(
                """
                INSERT INTO room_calendar_objects (room_id, uid, calendar_data)
                VALUES ($1, $2, $3)
                ON CONFLICT (room_id, uid) DO UPDATE SET
                    calendar_data = EXCLUDED.calendar_data,
                    updated_at = now()
                """,
                room_id,
                uid,
                data,
            )
        except asyncpg.PostgresError as exc:
            raise CalendarStoreError(room_id=room_id, uid=uid, message=str(exc)) from exc
        logger.debug("Upserted %s into room calendar %s", uid, room_id)

    async def delete(self, room_id: str, uid: str) -> bool:
        try:
            status = await self._pool.execute(
                "DELETE FROM room_calendar_objects WHERE room_id = $1 AND uid = $2",
                room_id,
                uid,
            )
        except asyncpg.PostgresError as exc:
            raise CalendarStoreError(room_id=room_id, uid=uid, message=str(exc)) from exc
        # asyncpg returns the command tag, e.g. "DELETE 1"
        return status.rsplit(" ", 1)[-1] != "0"
