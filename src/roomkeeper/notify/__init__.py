"""Booking notification delivery."""

from roomkeeper.notify.email import SmtpConfig, SmtpNotifier
from roomkeeper.notify.messages import NotificationKind, RenderedNotification, render
from roomkeeper.notify.recording import RecordingNotifier, SentNotification

__all__ = [
    "NotificationKind",
    "RecordingNotifier",
    "RenderedNotification",
    "SentNotification",
    "SmtpConfig",
    "SmtpNotifier",
    "render",
]
