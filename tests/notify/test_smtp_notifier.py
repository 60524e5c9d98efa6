"""Tests for SMTP booking notifications."""

from __future__ import annotations

import email
import smtplib
from datetime import UTC, datetime
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from roomkeeper.errors import NotificationError
from roomkeeper.notify.email import SmtpConfig, SmtpNotifier
from roomkeeper.notify.messages import NotificationKind, render
from roomkeeper.scheduling.models import EventInfo

pytestmark = pytest.mark.unit


@pytest.fixture
def info():
    return EventInfo(
        uid="evt-1",
        summary="Planning",
        start=datetime(2030, 3, 5, 9, 0, tzinfo=UTC),
        end=datetime(2030, 3, 5, 10, 0, tzinfo=UTC),
        organizer_email="alice@example.com",
        organizer_name="Alice",
    )


@pytest.fixture
def credentials(monkeypatch):
    monkeypatch.setenv("ROOMKEEPER_SMTP_USER", "rooms@example.com")
    monkeypatch.setenv("ROOMKEEPER_SMTP_PASSWORD", "hunter2")


@pytest.fixture
def notifier():
    return SmtpNotifier(SmtpConfig(enabled=True, host="smtp.example.com", port=2525))


@pytest.fixture
def smtp():
    with patch("roomkeeper.notify.email.smtplib.SMTP") as smtp_cls:
        yield smtp_cls


def _sent(smtp_cls) -> list[tuple[str, list[str], str]]:
    server = smtp_cls.return_value
    return [call.args for call in server.sendmail.call_args_list]


def _decoded(raw: str) -> str:
    """Concatenated, transfer-decoded text of every leaf part of *raw*."""
    message = email.message_from_string(raw)
    return "".join(
        part.get_payload(decode=True).decode()
        for part in message.walk()
        if not part.is_multipart()
    )


class TestSmtpConfig:
    def test_defaults(self):
        config = SmtpConfig()
        assert config.enabled is False
        assert config.port == 587
        assert config.address_env == "ROOMKEEPER_SMTP_USER"

    def test_rejects_invalid_env_var_names(self):
        with pytest.raises(ValidationError):
            SmtpConfig(password_env="1-password")

    def test_rejects_unknown_keys(self):
        with pytest.raises(ValidationError):
            SmtpConfig(hostname="smtp.example.com")


class TestSmtpNotifier:
    async def test_accepted_mail_carries_reply(self, notifier, make_room, info, smtp, credentials):
        await notifier.send_accepted(make_room(), info)

        smtp.assert_called_once_with("smtp.example.com", 2525)
        server = smtp.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("rooms@example.com", "hunter2")
        server.quit.assert_called_once()

        ((sender, recipients, body),) = _sent(smtp)
        assert sender == "room-a@example.com"
        assert recipients == ["alice@example.com"]
        assert "METHOD:REPLY" in _decoded(body)
        assert "PARTSTAT=ACCEPTED" in _decoded(body)
        assert 'filename="invite.ics"' in body

    async def test_cancelled_goes_to_organizer_and_managers(
        self, notifier, make_room, info, smtp, credentials
    ):
        await notifier.send_cancelled(make_room(), info, ["mia@example.com", "alice@example.com"])
        sent = _sent(smtp)
        assert [recipients for _, recipients, _ in sent] == [
            ["alice@example.com"],
            ["mia@example.com"],
        ]
        assert "METHOD:CANCEL" in _decoded(sent[0][2])
        assert "METHOD:CANCEL" not in _decoded(sent[1][2])

    async def test_managers_receive_approval_requests(
        self, notifier, make_room, info, smtp, credentials
    ):
        await notifier.notify_managers(make_room(), info, ["mia@example.com", "max@example.com"])
        assert [recipients for _, recipients, _ in _sent(smtp)] == [
            ["mia@example.com"],
            ["max@example.com"],
        ]

    async def test_disabled_smtp_sends_nothing(self, make_room, info, smtp):
        notifier = SmtpNotifier(SmtpConfig(enabled=False))
        await notifier.send_conflict(make_room(), info)
        smtp.assert_not_called()

    async def test_missing_organizer_sends_nothing(self, notifier, make_room, smtp):
        await notifier.send_conflict(make_room(), EventInfo(uid="x", summary="S"))
        smtp.assert_not_called()

    async def test_missing_credentials(self, notifier, make_room, info, smtp, monkeypatch):
        monkeypatch.delenv("ROOMKEEPER_SMTP_USER", raising=False)
        monkeypatch.delenv("ROOMKEEPER_SMTP_PASSWORD", raising=False)
        with pytest.raises(NotificationError, match="Missing SMTP credentials"):
            await notifier.send_conflict(make_room(), info)

    async def test_transport_errors_become_notification_errors(
        self, notifier, make_room, info, smtp, credentials
    ):
        smtp.return_value.login.side_effect = smtplib.SMTPAuthenticationError(535, b"denied")
        with pytest.raises(NotificationError):
            await notifier.send_accepted(make_room(), info)
        smtp.return_value.quit.assert_called_once()

    def test_build_mime_headers(self, notifier, make_room, info):
        room = make_room()
        mime = notifier.build_mime(
            room, "alice@example.com", render(NotificationKind.CONFLICT, room, info)
        )
        assert mime["From"] == "Room A <room-a@example.com>"
        assert mime["To"] == "alice@example.com"
        assert mime["Subject"] == "Booking conflict: Room A — Planning"
        assert not mime.is_multipart()

    def test_build_mime_with_calendar(self, notifier, make_room, info):
        room = make_room()
        mime = notifier.build_mime(
            room,
            "alice@example.com",
            render(NotificationKind.CANCELLED, room, info),
            "BEGIN:VCALENDAR\r\nEND:VCALENDAR\r\n",
            "CANCEL",
        )
        assert mime.is_multipart()
        attachment = mime.get_payload()[1]
        assert attachment.get_content_type() == "text/calendar"
        assert attachment.get_param("method") == "CANCEL"
