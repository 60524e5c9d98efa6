"""Exception hierarchy shared by the scheduling engine and its adapters.

Policy refusals and conflicts are *outcomes*, not exceptions: they surface as
``ScheduleStatus`` values on the processed message. The errors below cover the
unexpected paths (store I/O, notification transport) and the explicit
manager-facing operations that can be rejected outright.
"""

from __future__ import annotations


class RoomkeeperError(RuntimeError):
    """Base error raised by roomkeeper components."""


class CalendarStoreError(RoomkeeperError):
    """Raised when a calendar object store read/write fails."""

    def __init__(self, *, room_id: str, uid: str | None, message: str) -> None:
        self.room_id = room_id
        self.uid = uid
        self.message = message
        target = f"{room_id}/{uid}" if uid else room_id
        super().__init__(f"Calendar store operation failed for {target}: {message}")


class NotificationError(RoomkeeperError):
    """Raised by notifiers when an outbound message cannot be sent."""


class MalformedEventError(RoomkeeperError):
    """Raised when a calendar payload lacks the data an operation needs."""


class PermissionDeniedError(RoomkeeperError):
    """Raised when an actor lacks the role required for an operation."""

    def __init__(self, *, user_id: str | None, room_id: str, required: str) -> None:
        self.user_id = user_id
        self.room_id = room_id
        self.required = required
        super().__init__(f"User {user_id!r} lacks {required} permission on room {room_id!r}")


class BookingNotFoundError(RoomkeeperError):
    """Raised when no booking with the given UID exists in a room calendar."""

    def __init__(self, *, room_id: str, uid: str) -> None:
        self.room_id = room_id
        self.uid = uid
        super().__init__(f"Booking {uid!r} not found in room {room_id!r}")


class RoomNotFoundError(RoomkeeperError):
    """Raised when an operation names a room that is not configured."""

    def __init__(self, room_id: str) -> None:
        self.room_id = room_id
        super().__init__(f"Room {room_id!r} not found")
