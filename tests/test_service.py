"""Tests for engine wiring from configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from roomkeeper.config import load_config
from roomkeeper.notify.email import SmtpNotifier
from roomkeeper.notify.recording import RecordingNotifier
from roomkeeper.scheduling.ical import parse_calendar
from roomkeeper.scheduling.models import SchedulingMessage
from roomkeeper.service import build_engine
from roomkeeper.stores.memory import InMemoryCalendarStore

pytestmark = pytest.mark.unit

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def config(monkeypatch):
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    return load_config(CONFIG_DIR)


def test_default_notifier_is_smtp(config):
    engine = build_engine(config, store=InMemoryCalendarStore())
    assert isinstance(engine._notifier, SmtpNotifier)


async def test_engine_serves_configured_rooms(config, make_ics):
    store = InMemoryCalendarStore()
    notifier = RecordingNotifier()
    engine = build_engine(config, store=store, notifier=notifier)
    message = SchedulingMessage(
        method="REQUEST",
        sender="mailto:alice@example.com",
        recipient="mailto:huddle@example.com",
        payload=parse_calendar(make_ics(attendees=("huddle@example.com",))),
    )

    outcome = await engine.process_scheduling_message(message)

    assert outcome is not None
    assert outcome.room_id == "huddle"
    assert outcome.status.value == "1.2"
    assert await store.get_by_uid("huddle", "evt-1") is not None
