"""SMTP booking notifications.

Mail is sent from the room's own address (display name = room name) with the
SMTP login taken from environment variables named in ``[roomkeeper.smtp]``.
Organizer-facing mails carry an ``invite.ics`` REPLY or CANCEL so that
calendar clients update the room attendee's status.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from pydantic import BaseModel, ConfigDict, field_validator

from roomkeeper.errors import NotificationError
from roomkeeper.notify.messages import NotificationKind, RenderedNotification, render
from roomkeeper.scheduling.collaborators import Notifier
from roomkeeper.scheduling.ical import build_cancel, build_reply
from roomkeeper.scheduling.models import EventInfo, Partstat, Room

logger = logging.getLogger(__name__)
_ENV_VAR_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _validate_env_var_name(value: str, *, field_name: str) -> str:
    name = value.strip()
    if not _ENV_VAR_NAME_RE.fullmatch(name):
        raise ValueError(
            f"roomkeeper.smtp.{field_name} must be a valid environment variable name "
            "(letters, numbers, underscores; cannot start with a number)"
        )
    return name


class SmtpConfig(BaseModel):
    """Configuration for outbound booking mail."""

    enabled: bool = False
    host: str = "localhost"
    port: int = 587
    use_tls: bool = True
    address_env: str = "ROOMKEEPER_SMTP_USER"
    password_env: str = "ROOMKEEPER_SMTP_PASSWORD"
    model_config = ConfigDict(extra="forbid")

    @field_validator("address_env")
    @classmethod
    def _validate_address_env(cls, value: str) -> str:
        return _validate_env_var_name(value, field_name="address_env")

    @field_validator("password_env")
    @classmethod
    def _validate_password_env(cls, value: str) -> str:
        return _validate_env_var_name(value, field_name="password_env")


class SmtpNotifier(Notifier):
    """Notifier delivering booking mail over SMTP."""

    def __init__(self, config: SmtpConfig) -> None:
        self._config = config

    async def send_accepted(self, room: Room, info: EventInfo) -> None:
        message = render(NotificationKind.ACCEPTED, room, info)
        reply = build_reply(room, info, Partstat.ACCEPTED)
        await self._send(room, info.organizer_email, message, reply, "REPLY")

    async def send_declined(self, room: Room, info: EventInfo, reason: str = "") -> None:
        message = render(NotificationKind.DECLINED, room, info, reason=reason)
        reply = build_reply(room, info, Partstat.DECLINED)
        await self._send(room, info.organizer_email, message, reply, "REPLY")

    async def send_conflict(self, room: Room, info: EventInfo) -> None:
        message = render(NotificationKind.CONFLICT, room, info)
        await self._send(room, info.organizer_email, message)

    async def send_cancelled(
        self, room: Room, info: EventInfo, recipients: list[str] | None = None
    ) -> None:
        message = render(NotificationKind.CANCELLED, room, info)
        await self._send(room, info.organizer_email, message, build_cancel(info), "CANCEL")
        for recipient in recipients or []:
            if recipient.lower() == info.organizer_email.lower():
                continue
            await self._send(room, recipient, message)

    async def notify_managers(self, room: Room, info: EventInfo, recipients: list[str]) -> None:
        message = render(NotificationKind.APPROVAL_REQUEST, room, info)
        for recipient in recipients:
            await self._send(room, recipient, message)

    # ------------------------------------------------------------------
    # Implementation helpers using stdlib smtplib
    # ------------------------------------------------------------------

    def _get_credentials(self) -> tuple[str, str]:
        """Read the SMTP login from environment variables.

        Raises ``NotificationError`` if the configured variables are not set.
        """
        address = os.environ.get(self._config.address_env)
        password = os.environ.get(self._config.password_env)
        if not address or not password:
            raise NotificationError(
                "Missing SMTP credentials: set "
                f"{self._config.address_env} and {self._config.password_env}"
            )
        return address, password

    def build_mime(
        self,
        room: Room,
        to: str,
        message: RenderedNotification,
        calendar: str | None = None,
        method: str | None = None,
    ) -> MIMEText | MIMEMultipart:
        if calendar is None:
            mime: MIMEText | MIMEMultipart = MIMEText(message.body)
        else:
            mime = MIMEMultipart()
            mime.attach(MIMEText(message.body))
            part = MIMEText(calendar, "calendar", "utf-8")
            part.set_param("method", method or "REPLY")
            part.add_header("Content-Disposition", "attachment", filename="invite.ics")
            mime.attach(part)
        mime["Subject"] = message.subject
        mime["From"] = formataddr((room.display_name, room.email))
        mime["To"] = to
        return mime

    def _smtp_send(self, room: Room, to: str, mime: MIMEText | MIMEMultipart) -> None:
        """Blocking SMTP send, run via ``asyncio.to_thread``."""
        address, password = self._get_credentials()

        server = smtplib.SMTP(self._config.host, self._config.port)
        try:
            if self._config.use_tls:
                server.starttls()
            server.login(address, password)
            server.sendmail(room.email, [to], mime.as_string())
        finally:
            server.quit()

        logger.info("Email sent to %s: %s", to, mime["Subject"])

    async def _send(
        self,
        room: Room,
        to: str,
        message: RenderedNotification,
        calendar: str | None = None,
        method: str | None = None,
    ) -> None:
        if not to:
            logger.debug("No recipient for %s notification in room %s", message.kind, room.id)
            return
        if not self._config.enabled:
            logger.info("SMTP disabled; not sending %s to %s", message.kind, to)
            return
        mime = self.build_mime(room, to, message, calendar, method)
        try:
            await asyncio.to_thread(self._smtp_send, room, to, mime)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"Failed to send {message.kind} mail to {to}: {exc}") from exc
