"""Scheduling — room booking reconciliation over iTIP messages and calendar writes."""

from roomkeeper.scheduling.availability import (
    build_vavailability,
    is_within_availability,
    publish_availability,
)
from roomkeeper.scheduling.conflicts import ConflictDetector, list_bookings
from roomkeeper.scheduling.decisions import DecisionLedger
from roomkeeper.scheduling.engine import ReconciliationEngine
from roomkeeper.scheduling.horizon import is_within_horizon
from roomkeeper.scheduling.location import LocationFallbackMatcher
from roomkeeper.scheduling.models import (
    AvailabilityRule,
    AvailabilityRules,
    Booking,
    Partstat,
    PermissionEntry,
    PermissionSet,
    Role,
    Room,
    RoomGroup,
    ScheduleStatus,
    SchedulingMessage,
    SchedulingOutcome,
)
from roomkeeper.scheduling.overlap import overlaps
from roomkeeper.scheduling.permissions import PermissionResolver
from roomkeeper.scheduling.writeback import OrganizerCopyHook

__all__ = [
    "AvailabilityRule",
    "AvailabilityRules",
    "Booking",
    "ConflictDetector",
    "DecisionLedger",
    "LocationFallbackMatcher",
    "OrganizerCopyHook",
    "Partstat",
    "PermissionEntry",
    "PermissionResolver",
    "PermissionSet",
    "ReconciliationEngine",
    "Role",
    "Room",
    "RoomGroup",
    "ScheduleStatus",
    "SchedulingMessage",
    "SchedulingOutcome",
    "build_vavailability",
    "is_within_availability",
    "is_within_horizon",
    "list_bookings",
    "overlaps",
    "publish_availability",
]
