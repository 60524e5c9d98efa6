"""Logging setup for roomkeeper.

Modules log through ``logging.getLogger(__name__)``; ``configure_logging``
routes those records through structlog so every line carries the room being
scheduled and the active trace ids.

``text`` output is meant for a terminal, ``json`` for log shipping. A JSON
copy at DEBUG can additionally be written to ``{log_root}/{service_name}.log``.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

_room_context: ContextVar[str | None] = ContextVar("room_id", default=None)

# Libraries whose INFO/DEBUG chatter drowns out scheduling decisions.
_NOISE_LOGGERS = ("asyncpg", "vobject")

_TRACE_ID_ZERO = "0" * 32
_SPAN_ID_ZERO = "0" * 16


def set_room_context(room_id: str | None) -> None:
    """Attribute log lines in the current task to *room_id*."""
    _room_context.set(room_id)


def get_room_context() -> str | None:
    return _room_context.get()


def add_room_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    event_dict["room"] = _room_context.get()
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Stamp ``trace_id``/``span_id``; all zeros outside a recorded span."""
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        trace_id = format(span_context.trace_id, "032x")
        span_id = format(span_context.span_id, "016x")
    else:
        trace_id, span_id = _TRACE_ID_ZERO, _SPAN_ID_ZERO
    event_dict.update(trace_id=trace_id, span_id=span_id)
    return event_dict


def _pre_chain(timestamp_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt),
        add_room_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _formatter(
    renderer: structlog.types.Processor, pre_chain: list[structlog.types.Processor]
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | None = None,
    service_name: str = "roomkeeper",
) -> None:
    """Install roomkeeper's handlers on the root logger.

    Safe to call again: previous root handlers are replaced.

    Args:
        level: Root level name, case-insensitive. Unknown names fall back to INFO.
        fmt: ``"text"`` or ``"json"`` for the stderr handler.
        log_root: Directory for the JSON log file; created when missing.
        service_name: Stem of the log file name.
    """
    if fmt == "json":
        pre_chain = _pre_chain("iso")
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        pre_chain = _pre_chain("%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_formatter(renderer, pre_chain))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(stderr_handler)
    root.setLevel(logging.getLevelNamesMapping().get(level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        log_dir = Path(log_root)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / f"{service_name}.log")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            _formatter(structlog.processors.JSONRenderer(), _pre_chain("iso"))
        )
        root.addHandler(file_handler)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
