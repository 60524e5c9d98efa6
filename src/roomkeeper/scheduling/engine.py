"""Room scheduling reconciliation engine.

The engine takes over delivery of iTIP messages addressed to rooms. A REQUEST
passes the permission gate, availability, horizon and conflict checks; the
decided PARTSTAT is written into the room attendee, the event is upserted into
the room calendar keyed by UID and the organizer (or the room managers) are
notified. A CANCEL removes the booking. A refused REQUEST for a UID the room
already holds marks the stored copy DECLINED and CANCELLED, which frees its
old slot.

Because the host never delivers the room's REPLY, the decision lives only in
the room calendar. It is recorded in a ``DecisionLedger`` so that
``reconcile_organizer_copy`` can mirror it onto the organizer's copy the next
time that copy is written (see ``roomkeeper.scheduling.writeback``).

Messages the engine does not recognise as room-addressed return ``None`` and
are left to the host's normal delivery.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from roomkeeper.core.logging import set_room_context
from roomkeeper.core.metrics import SchedulingMetrics
from roomkeeper.core.telemetry import get_tracer, record_span_error, tag_room_span
from roomkeeper.errors import (
    BookingNotFoundError,
    CalendarStoreError,
    MalformedEventError,
    PermissionDeniedError,
    RoomNotFoundError,
)
from roomkeeper.scheduling import ical
from roomkeeper.scheduling.availability import is_within_availability
from roomkeeper.scheduling.collaborators import (
    CalendarStore,
    GroupDirectory,
    IdentityResolver,
    Notifier,
    PermissionStore,
    RoomDirectory,
)
from roomkeeper.scheduling.conflicts import ConflictDetector
from roomkeeper.scheduling.decisions import DecisionLedger
from roomkeeper.scheduling.horizon import is_within_horizon
from roomkeeper.scheduling.location import LocationFallbackMatcher
from roomkeeper.scheduling.models import (
    Booking,
    EventInfo,
    EventStatus,
    Partstat,
    Room,
    ScheduleStatus,
    SchedulingMessage,
    SchedulingOutcome,
)
from roomkeeper.scheduling.permissions import PermissionResolver

logger = logging.getLogger(__name__)

PRINCIPAL_USER_PREFIX = "principals/users/"
HANDLED_METHODS = frozenset({"REQUEST", "CANCEL"})


class _RoomLocks:
    """One ``asyncio.Lock`` per room, dropped once nobody holds or awaits it.

    Every read-check-write of a room calendar runs under its room's lock, so a
    conflict check and the upsert that follows it see the same calendar.
    """

    def __init__(self) -> None:
        self._entries: dict[str, list[Any]] = {}

    @contextlib.asynccontextmanager
    async def hold(self, room_id: str) -> AsyncIterator[None]:
        entry = self._entries.setdefault(room_id, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[room_id]

    def __len__(self) -> int:
        return len(self._entries)


class ReconciliationEngine:
    """Scheduling state machine for room principals."""

    def __init__(
        self,
        *,
        rooms: RoomDirectory,
        permissions: PermissionStore,
        groups: GroupDirectory,
        store: CalendarStore,
        notifier: Notifier,
        identities: IdentityResolver,
        ledger: DecisionLedger | None = None,
        clock: Callable[[], datetime] | None = None,
        metrics: SchedulingMetrics | None = None,
    ) -> None:
        self._rooms = rooms
        self._store = store
        self._notifier = notifier
        self._identities = identities
        self.permissions = PermissionResolver(permissions, groups)
        self.conflicts = ConflictDetector(store)
        self.ledger = ledger if ledger is not None else DecisionLedger()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._metrics = metrics or SchedulingMetrics("roomkeeper")
        self._tracer = get_tracer()
        self._locks = _RoomLocks()

    # ------------------------------------------------------------------
    # iTIP entry point
    # ------------------------------------------------------------------

    async def process_scheduling_message(
        self, message: SchedulingMessage
    ) -> SchedulingOutcome | None:
        """Process an iTIP message addressed to a room.

        Writes ``result_code`` and ``result_partstat`` onto *message* and
        returns the outcome, or returns ``None`` when the message is not for
        an active room or uses a method the engine does not handle.
        """
        method = message.method.strip().upper()
        if method not in HANDLED_METHODS:
            return None

        room = await self._rooms.resolve_principal(message.recipient)
        if room is None or not room.active:
            return None

        set_room_context(room.id)
        with self._tracer.start_as_current_span("roomkeeper.process_scheduling_message") as span:
            tag_room_span(span, room.id, method=method)
            vevent = ical.first_event(message.payload)
            if method == "REQUEST":
                outcome = await self._handle_request(room, message, vevent)
            else:
                outcome = await self._handle_cancel(room, vevent)
            span.set_attribute("roomkeeper.status", outcome.status.value)

        message.result_code = outcome.status
        message.result_partstat = outcome.partstat
        self._record(method, outcome)
        return outcome

    async def _handle_request(
        self, room: Room, message: SchedulingMessage, vevent: Any | None
    ) -> SchedulingOutcome:
        if vevent is None:
            logger.error("REQUEST for room %s carries no VEVENT", room.id)
            return SchedulingOutcome(
                ScheduleStatus.ERROR, None, room.id, reason="message carries no VEVENT"
            )

        if not await self._sender_may_book(room, message.sender):
            return await self._refuse(room, vevent, ScheduleStatus.REFUSED, "sender may not book")

        return await self._book(room, message.payload, vevent)

    async def _handle_cancel(self, room: Room, vevent: Any | None) -> SchedulingOutcome:
        uid = ical.event_uid(vevent) if vevent is not None else ""
        if uid:
            try:
                async with self._locks.hold(room.id):
                    removed = await self._store.delete(room.id, uid)
            except CalendarStoreError:
                logger.exception("Failed to remove booking %s from room %s", uid, room.id)
                return SchedulingOutcome(
                    ScheduleStatus.ERROR, None, room.id, uid, reason="room calendar delete failed"
                )
            self.ledger.forget(uid, room.email)
            logger.info(
                "Booking %s cancelled for room %s (%s)",
                uid,
                room.id,
                "removed" if removed else "not stored",
            )

        if vevent is not None:
            info = ical.event_info(vevent, room.tz)
            await self._notify("cancelled", lambda: self._send_cancelled(room, info))
        return SchedulingOutcome(ScheduleStatus.DELIVERED, None, room.id, uid or None)

    # ------------------------------------------------------------------
    # Booking path shared by iTIP and LOCATION bookings
    # ------------------------------------------------------------------

    async def _book(self, room: Room, calendar: Any, vevent: Any) -> SchedulingOutcome:
        uid = ical.event_uid(vevent)
        start = ical.event_start(vevent, room.tz)
        end = ical.event_end(vevent, room.tz)
        has_times = start is not None and end is not None

        if has_times and not is_within_availability(room, start, end):
            return await self._refuse(
                room, vevent, ScheduleStatus.REFUSED, "outside room availability"
            )

        booking = ical.booking_from_event(vevent, default_tz=room.tz)
        if not is_within_horizon(room, booking, now=self._clock()):
            return await self._refuse(
                room, vevent, ScheduleStatus.REFUSED, "beyond booking horizon"
            )

        if not uid:
            logger.error("Cannot store booking without UID for room %s", room.id)
            return SchedulingOutcome(
                ScheduleStatus.ERROR, None, room.id, reason="event has no UID"
            )

        partstat = Partstat.ACCEPTED if room.auto_accept else Partstat.TENTATIVE
        try:
            async with self._locks.hold(room.id):
                if has_times and await self.conflicts.has_conflict(
                    room.id, start, end, exclude_uid=uid, default_tz=room.tz
                ):
                    conflict = True
                    await self._release_stored(room, uid)
                else:
                    conflict = False
                    self._enrich(room, vevent)
                    self._set_partstat(room, vevent, partstat)
                    await self._upsert(room, uid, ical.serialize_calendar(calendar))
        except (CalendarStoreError, MalformedEventError):
            logger.exception("Failed to deliver booking %s to room %s", uid, room.id)
            return SchedulingOutcome(
                ScheduleStatus.ERROR, None, room.id, uid, reason="room calendar write failed"
            )

        info = ical.event_info(vevent, room.tz)
        if conflict:
            outcome = self._decline(
                room, vevent, ScheduleStatus.CONFLICT, "conflicts with an existing booking"
            )
            await self._notify("conflict", lambda: self._notifier.send_conflict(room, info))
            return outcome

        self.ledger.record(uid, room.email, partstat)
        if partstat == Partstat.ACCEPTED:
            await self._notify("accepted", lambda: self._notifier.send_accepted(room, info))
        else:
            await self._notify("approval", lambda: self._send_approval_request(room, info))
        return SchedulingOutcome(ScheduleStatus.DELIVERED, partstat, room.id, uid)

    async def _refuse(
        self, room: Room, vevent: Any, status: ScheduleStatus, reason: str
    ) -> SchedulingOutcome:
        """Decline a REQUEST, releasing any booking already stored under its UID."""
        uid = ical.event_uid(vevent)
        if uid:
            try:
                async with self._locks.hold(room.id):
                    await self._release_stored(room, uid)
            except (CalendarStoreError, MalformedEventError):
                logger.exception("Failed to release booking %s in room %s", uid, room.id)
                return SchedulingOutcome(
                    ScheduleStatus.ERROR, None, room.id, uid, reason="room calendar write failed"
                )
        return self._decline(room, vevent, status, reason)

    async def _release_stored(self, room: Room, uid: str) -> None:
        # Caller holds the room lock.
        stored = await self._store.get_by_uid(room.id, uid)
        if stored is None:
            return
        calendar = ical.parse_calendar(stored.data)
        vevent = ical.first_event(calendar)
        if vevent is None:
            return
        self._set_partstat(room, vevent, Partstat.DECLINED)
        ical.set_text(vevent, "status", EventStatus.CANCELLED.value)
        await self._upsert(room, uid, ical.serialize_calendar(calendar))
        logger.info("Released the stored slot of booking %s in room %s", uid, room.id)

    def _decline(
        self, room: Room, vevent: Any, status: ScheduleStatus, reason: str
    ) -> SchedulingOutcome:
        uid = ical.event_uid(vevent)
        self._set_partstat(room, vevent, Partstat.DECLINED)
        if uid:
            self.ledger.record(uid, room.email, Partstat.DECLINED)
        logger.info("Room %s declined booking %s: %s", room.id, uid or "<no uid>", reason)
        return SchedulingOutcome(status, Partstat.DECLINED, room.id, uid or None, reason)

    @staticmethod
    def _enrich(room: Room, vevent: Any) -> None:
        attendee = ical.find_attendee(vevent, room.email)
        if attendee is not None:
            ical.ensure_room_cutype(attendee)
        if not ical.text_value(vevent, "location").strip():
            ical.set_text(vevent, "location", room.canonical_location)

    @staticmethod
    def _set_partstat(room: Room, vevent: Any, partstat: Partstat) -> None:
        if not ical.set_attendee_partstat(vevent, room.email, partstat):
            ical.set_room_attendee_partstat(vevent, partstat)

    async def _upsert(self, room: Room, uid: str, data: str) -> None:
        started = time.perf_counter()
        await self._store.upsert(room.id, uid, data)
        self._metrics.record_upsert_latency((time.perf_counter() - started) * 1000)

    # ------------------------------------------------------------------
    # Permission gate
    # ------------------------------------------------------------------

    async def resolve_sender(self, sender: str) -> str | None:
        """Map an iTIP sender (principal URI or ``mailto:``) to a user id."""
        value = sender.strip()
        if value.startswith(PRINCIPAL_USER_PREFIX):
            return value[len(PRINCIPAL_USER_PREFIX) :].strip("/") or None
        if not value:
            return None
        return await self._identities.resolve_sender_to_user(value)

    async def _sender_may_book(self, room: Room, sender: str) -> bool:
        if await self.permissions.is_open(room):
            return True
        user_id = await self.resolve_sender(sender)
        if user_id is None:
            logger.info("Room %s is restricted and sender %r is unknown", room.id, sender)
            return False
        if await self.permissions.can_book(user_id, room):
            return True
        logger.info("User %s may not book room %s", user_id, room.id)
        return False

    # ------------------------------------------------------------------
    # Notifications (best effort)
    # ------------------------------------------------------------------

    async def _notify(self, kind: str, send: Callable[[], Awaitable[None]]) -> None:
        try:
            await send()
        except Exception:
            self._metrics.notification_failed(kind)
            logger.exception("Failed to send %s notification", kind)

    async def manager_emails(self, room: Room) -> list[str]:
        emails: list[str] = []
        for user_id in await self.permissions.manager_user_ids(room):
            email = await self._identities.email_for_user(user_id)
            if email and email.lower() not in emails:
                emails.append(email.lower())
        return emails

    async def _send_approval_request(self, room: Room, info: EventInfo) -> None:
        recipients = await self.manager_emails(room)
        if not recipients:
            logger.info("Room %s has no reachable managers for booking %s", room.id, info.uid)
            return
        await self._notifier.notify_managers(room, info, recipients)

    async def _send_cancelled(self, room: Room, info: EventInfo) -> None:
        await self._notifier.send_cancelled(room, info, await self.manager_emails(room))

    # ------------------------------------------------------------------
    # Organizer copy write-back and LOCATION bookings
    # ------------------------------------------------------------------

    async def reconcile_organizer_copy(self, calendar: Any) -> Any:
        """Mirror room decisions and room metadata onto an organizer's copy.

        Every attendee that is a room principal gets ``CUTYPE=ROOM`` and the
        PARTSTAT recorded for ``(UID, room email)``, when one is recorded. An
        empty LOCATION is filled with the first room's canonical location.
        The calendar is modified in place and returned.
        """
        vevent = ical.first_event(calendar)
        if vevent is None:
            return calendar

        with self._tracer.start_as_current_span("roomkeeper.reconcile_organizer_copy"):
            uid = ical.event_uid(vevent)
            first_room: Room | None = None
            for attendee in ical.attendees(vevent):
                room = await self._rooms.resolve_principal(str(attendee.value))
                if room is None:
                    continue
                first_room = first_room or room
                ical.ensure_room_cutype(attendee)
                decision = self.ledger.lookup(uid, room.email) if uid else None
                if decision is not None:
                    ical.set_param(attendee, "PARTSTAT", decision.value)

            if first_room is not None and not ical.text_value(vevent, "location").strip():
                ical.set_text(vevent, "location", first_room.canonical_location)
        return calendar

    async def synthesize_from_location(self, calendar: Any, owner: str | None = None) -> Any | None:
        """Turn a LOCATION-only event into a room invitation.

        Returns the rewritten calendar, or ``None`` when the event already has
        a room attendee, its LOCATION matches no active room, or no organizer
        can be determined. *owner* is the email of the calendar's owner, used
        as ORGANIZER when the event has none.
        """
        vevent = ical.first_event(calendar)
        if vevent is None:
            return None

        matcher = LocationFallbackMatcher(await self._rooms.all_rooms())
        if matcher.has_room_attendee(vevent):
            return None
        room = matcher.match(ical.text_value(vevent, "location"))
        if room is None:
            return None
        if not matcher.synthesize(calendar, room, owner):
            return None
        logger.info("Added room %s as attendee from LOCATION match", room.id)
        return calendar

    async def book_from_location(self, calendar: Any) -> SchedulingOutcome | None:
        """Book the room attendee of a synthesized event.

        Runs the REQUEST checks without the permission gate, since a calendar
        write carries no sender.
        The room copy is built from a clone so *calendar* stays untouched;
        the decision reaches it through ``reconcile_organizer_copy``.
        """
        vevent = ical.first_event(calendar)
        if vevent is None:
            return None
        room = await self._first_room_attendee(vevent)
        if room is None or not room.active:
            return None

        set_room_context(room.id)
        room_copy = ical.parse_calendar(ical.serialize_calendar(calendar))
        with self._tracer.start_as_current_span("roomkeeper.book_from_location") as span:
            tag_room_span(span, room.id, method="REQUEST")
            outcome = await self._book(room, room_copy, ical.first_event(room_copy))
            span.set_attribute("roomkeeper.status", outcome.status.value)
        self._record("LOCATION", outcome)
        return outcome

    async def _first_room_attendee(self, vevent: Any) -> Room | None:
        for attendee in ical.attendees(vevent):
            room = await self._rooms.resolve_principal(str(attendee.value))
            if room is not None:
                return room
        return None

    # ------------------------------------------------------------------
    # Manager responses
    # ------------------------------------------------------------------

    async def respond_to_booking(
        self, room_id: str, uid: str, partstat: Partstat, actor: str
    ) -> Booking:
        """Accept or decline a pending booking on behalf of a room manager.

        Raises ``RoomNotFoundError``, ``PermissionDeniedError`` when *actor*
        cannot manage the room, and ``BookingNotFoundError`` for unknown UIDs.
        """
        if partstat not in (Partstat.ACCEPTED, Partstat.DECLINED):
            raise ValueError(f"response must be ACCEPTED or DECLINED, got {partstat}")

        room = await self._rooms.get(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        if not await self.permissions.can_manage(actor, room):
            raise PermissionDeniedError(user_id=actor, room_id=room.id, required="manage")

        set_room_context(room.id)
        with self._tracer.start_as_current_span("roomkeeper.respond_to_booking") as span:
            tag_room_span(span, room.id, method="RESPOND")
            try:
                async with self._locks.hold(room.id):
                    stored = await self._store.get_by_uid(room.id, uid)
                    if stored is None:
                        raise BookingNotFoundError(room_id=room.id, uid=uid)
                    calendar = ical.parse_calendar(stored.data)
                    vevent = ical.first_event(calendar)
                    if vevent is None:
                        raise MalformedEventError(f"booking {uid!r} holds no VEVENT")
                    ical.set_room_attendee_partstat(vevent, partstat)
                    status = (
                        EventStatus.CONFIRMED
                        if partstat == Partstat.ACCEPTED
                        else EventStatus.CANCELLED
                    )
                    ical.set_text(vevent, "status", status.value)
                    await self._upsert(room, uid, ical.serialize_calendar(calendar))
            except Exception as exc:
                record_span_error(span, exc)
                raise

        self.ledger.record(uid, room.email, partstat)
        logger.info("Booking %s in room %s set to %s by %s", uid, room.id, partstat, actor)
        self._record("RESPOND", SchedulingOutcome(ScheduleStatus.DELIVERED, partstat, room.id, uid))

        info = ical.event_info(vevent, room.tz)
        if partstat == Partstat.ACCEPTED:
            await self._notify("accepted", lambda: self._notifier.send_accepted(room, info))
        else:
            await self._notify(
                "declined",
                lambda: self._notifier.send_declined(
                    room, info, reason="Declined by a room manager"
                ),
            )
        return ical.booking_from_event(vevent, fallback_uid=uid, default_tz=room.tz)

    def _record(self, method: str, outcome: SchedulingOutcome) -> None:
        self._metrics.record_decision(
            method,
            outcome.status.value,
            outcome.partstat.value if outcome.partstat else None,
        )
        logger.info(
            "%s %s for room %s: %s (%s)",
            method,
            outcome.uid or "<no uid>",
            outcome.room_id,
            outcome.status.description,
            outcome.partstat or "-",
        )
