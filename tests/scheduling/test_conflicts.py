"""Tests for conflict detection and booking listing."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from roomkeeper.scheduling.conflicts import ConflictDetector, list_bookings
from roomkeeper.stores.memory import InMemoryCalendarStore

pytestmark = pytest.mark.unit


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2030, 3, 5, hour, minute, tzinfo=UTC)


def _stamp(hour: int, minute: int = 0) -> str:
    return f"20300305T{hour:02d}{minute:02d}00Z"


@pytest.fixture
def store():
    return InMemoryCalendarStore()


@pytest.fixture
def detector(store):
    return ConflictDetector(store)


@pytest.fixture
def book(store, make_ics):
    async def _book(uid: str, start: tuple[int, int], end: tuple[int, int], **kwargs) -> None:
        data = make_ics(uid, start=_stamp(*start), end=_stamp(*end), method=None, **kwargs)
        await store.upsert("room-a", uid, data)

    return _book


class TestHasConflict:
    async def test_empty_room_has_no_conflict(self, detector):
        assert not await detector.has_conflict("room-a", _at(10), _at(11))

    async def test_overlap_is_a_conflict(self, detector, book):
        await book("existing", (10, 0), (11, 0))
        assert await detector.has_conflict("room-a", _at(10, 30), _at(11, 30))

    async def test_touching_bookings_do_not_conflict(self, detector, book):
        await book("existing", (10, 0), (11, 0))
        assert not await detector.has_conflict("room-a", _at(11), _at(12))
        assert not await detector.has_conflict("room-a", _at(9), _at(10))

    async def test_excluded_uid_never_conflicts_with_itself(self, detector, book):
        await book("existing", (10, 0), (11, 0))
        assert not await detector.has_conflict(
            "room-a", _at(10), _at(11), exclude_uid="existing"
        )

    async def test_cancelled_booking_is_ignored(self, detector, book):
        await book("gone", (10, 0), (11, 0), status="CANCELLED")
        assert not await detector.has_conflict("room-a", _at(10), _at(11))

    async def test_tentative_booking_occupies_the_slot(self, detector, book):
        await book("pending", (10, 0), (11, 0), status="TENTATIVE")
        assert await detector.has_conflict("room-a", _at(10), _at(11))

    async def test_unparsable_objects_are_skipped(self, detector, store, book):
        await store.upsert("room-a", "broken", "this is not a calendar")
        await book("existing", (14, 0), (15, 0))
        assert not await detector.has_conflict("room-a", _at(10), _at(11))
        assert await detector.has_conflict("room-a", _at(14), _at(16))

    async def test_other_rooms_are_not_consulted(self, detector, store, make_ics):
        await store.upsert("room-b", "elsewhere", make_ics("elsewhere", method=None))
        assert not await detector.has_conflict("room-a", _at(9), _at(10))

    @pytest.mark.parametrize(
        ("a", "b"),
        [
            (((10, 0), (11, 0)), ((10, 30), (11, 30))),
            (((10, 0), (11, 0)), ((11, 0), (12, 0))),
            (((9, 0), (13, 0)), ((10, 0), (11, 0))),
        ],
    )
    async def test_symmetric(self, make_ics, a, b):
        forward = InMemoryCalendarStore()
        backward = InMemoryCalendarStore()
        await forward.upsert(
            "room-a", "a", make_ics("a", start=_stamp(*a[0]), end=_stamp(*a[1]), method=None)
        )
        await backward.upsert(
            "room-a", "b", make_ics("b", start=_stamp(*b[0]), end=_stamp(*b[1]), method=None)
        )
        b_against_a = await ConflictDetector(forward).has_conflict("room-a", _at(*b[0]), _at(*b[1]))
        a_against_b = await ConflictDetector(backward).has_conflict(
            "room-a", _at(*a[0]), _at(*a[1])
        )
        assert b_against_a == a_against_b


class TestListBookings:
    async def test_sorted_by_start(self, store, book):
        await book("late", (15, 0), (16, 0))
        await book("early", (8, 0), (9, 0))
        bookings = await list_bookings(store, "room-a")
        assert [booking.uid for booking in bookings] == ["early", "late"]

    async def test_window_filter(self, store, book):
        await book("morning", (8, 0), (9, 0))
        await book("noon", (12, 0), (13, 0))
        await book("evening", (18, 0), (19, 0))
        bookings = await list_bookings(store, "room-a", _at(9), _at(18))
        assert [booking.uid for booking in bookings] == ["noon"]

    async def test_projection_fields(self, store, book):
        await book("existing", (10, 0), (11, 0), summary="Planning")
        (booking,) = await list_bookings(store, "room-a")
        assert booking.summary == "Planning"
        assert booking.organizer_email == "alice@example.com"
        assert booking.start == _at(10)
        assert booking.end == _at(11)
