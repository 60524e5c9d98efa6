"""OpenTelemetry metrics instruments for room scheduling.

Instruments are created lazily from the global MeterProvider, so callers do
not need to pass a Meter around.

Initialization
--------------
Call ``init_metrics(service_name)`` once at startup (alongside
``init_telemetry``). Without OTEL_EXPORTER_OTLP_ENDPOINT the global no-op
MeterProvider stays in place and every recording is a silent no-op.

Instruments
-----------
  roomkeeper.scheduling.decisions       Counter (labels: method, status, partstat)
      Scheduling messages processed for rooms, by outcome.

  roomkeeper.notifications.failures     Counter (label: kind)
      Notifications that raised and were dropped.

  roomkeeper.store.upsert_latency_ms    Histogram
      Duration of room calendar upserts.

All instruments carry a ``service`` label.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "roomkeeper"


def init_metrics(service_name: str) -> metrics.Meter:
    """Install an OTLP-exporting MeterProvider when an endpoint is configured."""
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    # Exporter is an optional extra
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    resource = Resource.create({"service.name": service_name})
    exporter = OTLPMetricExporter(endpoint=endpoint)
    reader = PeriodicExportingMetricReader(exporter, export_interval_millis=15_000)
    provider = MeterProvider(resource=resource, metric_readers=[reader])

    metrics.set_meter_provider(provider)
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)

    return metrics.get_meter(_METER_NAME)


def get_meter() -> metrics.Meter:
    """Return a Meter from the current global provider (no-op before init)."""
    return metrics.get_meter(_METER_NAME)


def _scheduling_decisions() -> metrics.Counter:
    return get_meter().create_counter(
        name="roomkeeper.scheduling.decisions",
        description="Scheduling messages processed for rooms, by outcome",
        unit="messages",
    )


def _notification_failures() -> metrics.Counter:
    return get_meter().create_counter(
        name="roomkeeper.notifications.failures",
        description="Booking notifications that failed and were dropped",
        unit="notifications",
    )


def _store_upsert_latency_ms() -> metrics.Histogram:
    return get_meter().create_histogram(
        name="roomkeeper.store.upsert_latency_ms",
        description="Room calendar upsert duration in milliseconds",
        unit="ms",
    )


class SchedulingMetrics:
    """Per-service recorder for scheduling metrics.

    Usage::

        metrics = SchedulingMetrics("roomkeeper")
        metrics.record_decision("REQUEST", "1.2", "ACCEPTED")
    """

    def __init__(self, service_name: str) -> None:
        self._attrs = {"service": service_name}
        # Created on first use: the provider may not be installed yet.
        self.__decisions: metrics.Counter | None = None
        self.__notify_failures: metrics.Counter | None = None
        self.__upsert_latency: metrics.Histogram | None = None

    @property
    def _decisions(self) -> metrics.Counter:
        if self.__decisions is None:
            self.__decisions = _scheduling_decisions()
        return self.__decisions

    @property
    def _notify_failures(self) -> metrics.Counter:
        if self.__notify_failures is None:
            self.__notify_failures = _notification_failures()
        return self.__notify_failures

    @property
    def _upsert_latency(self) -> metrics.Histogram:
        if self.__upsert_latency is None:
            self.__upsert_latency = _store_upsert_latency_ms()
        return self.__upsert_latency

    def record_decision(self, method: str, status: str, partstat: str | None) -> None:
        """Record one processed scheduling message."""
        self._decisions.add(
            1,
            {**self._attrs, "method": method, "status": status, "partstat": partstat or "none"},
        )

    def notification_failed(self, kind: str) -> None:
        self._notify_failures.add(1, {**self._attrs, "kind": kind})

    def record_upsert_latency(self, latency_ms: float) -> None:
        self._upsert_latency.record(latency_ms, self._attrs)
