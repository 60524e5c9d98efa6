"""Wiring of a ReconciliationEngine from configuration."""

from __future__ import annotations

import logging

from roomkeeper.config import RoomkeeperConfig
from roomkeeper.core.metrics import SchedulingMetrics, init_metrics
from roomkeeper.core.telemetry import init_telemetry
from roomkeeper.notify.email import SmtpNotifier
from roomkeeper.scheduling.collaborators import CalendarStore, Notifier
from roomkeeper.scheduling.decisions import DecisionLedger
from roomkeeper.scheduling.engine import ReconciliationEngine
from roomkeeper.stores.memory import ConfigDirectory

logger = logging.getLogger(__name__)


def build_engine(
    config: RoomkeeperConfig,
    *,
    store: CalendarStore,
    notifier: Notifier | None = None,
) -> ReconciliationEngine:
    """Build an engine serving the configured rooms from *store*.

    Without an explicit *notifier* mail goes out through SMTP as configured.
    """
    init_telemetry(config.name)
    init_metrics(config.name)

    directory = ConfigDirectory(config.snapshot())
    ledger = DecisionLedger(
        ttl_seconds=config.decisions.ttl_seconds,
        max_entries=config.decisions.max_entries,
    )
    logger.debug("Building engine for %d room(s)", len(config.rooms))
    return ReconciliationEngine(
        rooms=directory,
        permissions=directory,
        groups=directory,
        identities=directory,
        store=store,
        notifier=notifier or SmtpNotifier(config.smtp),
        ledger=ledger,
        metrics=SchedulingMetrics(config.name),
    )
