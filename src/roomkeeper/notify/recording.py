"""Notifier that renders and keeps notifications instead of sending them.

Used by ``roomkeeper deliver`` dry runs so the outcome report can show what
would have been mailed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from roomkeeper.notify.messages import NotificationKind, render
from roomkeeper.scheduling.collaborators import Notifier
from roomkeeper.scheduling.models import EventInfo, Room

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SentNotification:
    kind: NotificationKind
    room_id: str
    recipient: str
    subject: str

    def to_dict(self) -> dict[str, str]:
        return {
            "kind": self.kind.value,
            "room_id": self.room_id,
            "recipient": self.recipient,
            "subject": self.subject,
        }


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.sent: list[SentNotification] = []

    def _keep(
        self, kind: NotificationKind, room: Room, info: EventInfo, recipient: str, reason: str = ""
    ) -> None:
        if not recipient:
            return
        rendered = render(kind, room, info, reason=reason)
        self.sent.append(SentNotification(kind, room.id, recipient, rendered.subject))
        logger.info("Would send %s to %s: %s", kind, recipient, rendered.subject)

    async def send_accepted(self, room: Room, info: EventInfo) -> None:
        self._keep(NotificationKind.ACCEPTED, room, info, info.organizer_email)

    async def send_declined(self, room: Room, info: EventInfo, reason: str = "") -> None:
        self._keep(NotificationKind.DECLINED, room, info, info.organizer_email, reason)

    async def send_conflict(self, room: Room, info: EventInfo) -> None:
        self._keep(NotificationKind.CONFLICT, room, info, info.organizer_email)

    async def send_cancelled(
        self, room: Room, info: EventInfo, recipients: list[str] | None = None
    ) -> None:
        self._keep(NotificationKind.CANCELLED, room, info, info.organizer_email)
        for recipient in recipients or []:
            if recipient.lower() != info.organizer_email.lower():
                self._keep(NotificationKind.CANCELLED, room, info, recipient)

    async def notify_managers(self, room: Room, info: EventInfo, recipients: list[str]) -> None:
        for recipient in recipients:
            self._keep(NotificationKind.APPROVAL_REQUEST, room, info, recipient)
