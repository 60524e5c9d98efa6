"""Tests for the organizer-copy write-back hook."""

from __future__ import annotations

import pytest

from roomkeeper.scheduling import ical
from roomkeeper.scheduling.models import Partstat, SchedulingMessage
from roomkeeper.scheduling.writeback import OrganizerCopyHook
from roomkeeper.stores.memory import InMemoryCalendarObjectTree

pytestmark = pytest.mark.unit

PATH = "calendars/alice/work/evt-1.ics"


@pytest.fixture
def sunroom(make_room):
    return make_room(
        id="sunroom",
        email="sunroom@example.com",
        display_name="Sunroom",
        location="Building 1",
        auto_accept=False,
    )


@pytest.fixture
def harness(make_harness, make_room, sunroom):
    return make_harness(make_room(), sunroom)


@pytest.fixture
def tree():
    return InMemoryCalendarObjectTree(owner_emails={"alice": "alice@example.com"})


@pytest.fixture
def hook(harness, tree):
    return OrganizerCopyHook(harness.engine, tree)


def _attendee(tree, path: str, address: str):
    vevent = ical.first_event(ical.parse_calendar(tree.objects[path]))
    return vevent, ical.find_attendee(vevent, address)


class TestAfterWrite:
    async def test_non_calendar_paths_are_ignored(self, hook, tree):
        tree.objects["calendars/alice/work/notes.txt"] = "hello"
        assert not await hook.after_write("calendars/alice/work/notes.txt")
        assert tree.writes == []

    async def test_missing_object(self, hook):
        assert not await hook.after_write(PATH)

    async def test_unparsable_object_is_skipped(self, hook, tree):
        tree.objects[PATH] = "garbage"
        assert not await hook.after_write(PATH)
        assert tree.writes == []

    async def test_decision_is_mirrored_onto_organizer_copy(
        self, hook, harness, tree, make_ics
    ):
        request = ical.parse_calendar(make_ics())
        await harness.engine.process_scheduling_message(
            SchedulingMessage(
                method="REQUEST",
                sender="mailto:alice@example.com",
                recipient="mailto:room-a@example.com",
                payload=request,
            )
        )
        tree.objects[PATH] = make_ics(method=None)

        assert await hook.after_write(PATH)
        vevent, attendee = _attendee(tree, PATH, "room-a@example.com")
        assert ical.get_param(attendee, "PARTSTAT") == "ACCEPTED"
        assert ical.get_param(attendee, "CUTYPE") == "ROOM"
        assert ical.text_value(vevent, "location") == "Room A — Floor 2"

    async def test_already_reconciled_copy_is_not_rewritten(self, hook, tree, make_ics):
        tree.objects[PATH] = make_ics(method=None, cutype="ROOM", location="Room A — Floor 2")
        assert not await hook.after_write(PATH)
        assert tree.writes == []

    async def test_location_only_event_becomes_a_booking(self, hook, harness, tree, make_ics):
        tree.objects[PATH] = make_ics(attendees=[], organizer=None, location="sunroom", method=None)

        assert await hook.after_write(PATH)

        vevent, attendee = _attendee(tree, PATH, "sunroom@example.com")
        assert attendee is not None
        assert ical.organizer_email(vevent) == "alice@example.com"
        assert ical.text_value(vevent, "location") == "Sunroom — Building 1"
        # The room decision reaches the organizer copy in the same pass.
        assert ical.get_param(attendee, "PARTSTAT") == "TENTATIVE"

        stored = await harness.store.get_by_uid("sunroom", "evt-1")
        assert stored is not None
        room_copy = ical.first_event(ical.parse_calendar(stored.data))
        assert ical.room_attendee_partstat(room_copy) == Partstat.TENTATIVE

    async def test_unknown_location_is_left_alone(self, hook, harness, tree, make_ics):
        tree.objects[PATH] = make_ics(attendees=[], location="Cafeteria", method=None)
        assert not await hook.after_write(PATH)
        assert await harness.store.list("sunroom") == []

    async def test_location_without_organizer_or_owner(self, harness, make_ics):
        tree = InMemoryCalendarObjectTree()
        hook = OrganizerCopyHook(harness.engine, tree)
        tree.objects[PATH] = make_ics(attendees=[], organizer=None, location="Sunroom", method=None)
        assert not await hook.after_write(PATH)
        assert await harness.store.list("sunroom") == []
