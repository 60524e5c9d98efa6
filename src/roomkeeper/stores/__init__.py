"""Collaborator implementations for room scheduling."""

from roomkeeper.stores.memory import (
    ConfigDirectory,
    InMemoryCalendarObjectTree,
    InMemoryCalendarStore,
)
from roomkeeper.stores.postgres import PostgresCalendarStore

__all__ = [
    "ConfigDirectory",
    "InMemoryCalendarObjectTree",
    "InMemoryCalendarStore",
    "PostgresCalendarStore",
]
