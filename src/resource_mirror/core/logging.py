"""Structured logging for resource-mirror.

Every module logs through ``logging.getLogger(__name__)``; the handlers
installed by :func:`configure_logging` run those records through a structlog
``ProcessorFormatter``, so plain stdlib call sites render as structured events.

Collection operations bind ``collection=<uri>`` with
:func:`structlog.contextvars.bound_contextvars`; the bound values are merged
into every record emitted inside that scope, together with the current
OpenTelemetry trace and span ids.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog
from opentelemetry import trace

# Third-party loggers that only repeat what the collection already logs.
_NOISE_LOGGERS = (
    "httpx",
    "httpcore",
    "aiohttp.client",
    "aiohttp.internal",
)

_ZERO_TRACE_ID = "0" * 32
_ZERO_SPAN_ID = "0" * 16


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Add the active span's ``trace_id`` / ``span_id`` (zeroed outside a span)."""
    ctx = trace.get_current_span().get_span_context()
    if ctx and ctx.trace_id:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    else:
        event_dict["trace_id"] = _ZERO_TRACE_ID
        event_dict["span_id"] = _ZERO_SPAN_ID
    return event_dict


def _pre_chain(timestamp_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt),
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
    log_file: Path | None = None,
) -> None:
    """Install structured handlers on the root logger.

    Parameters
    ----------
    level:
        Root log level name, e.g. ``"DEBUG"``.
    fmt:
        ``"text"`` renders colored console lines, ``"json"`` renders one JSON
        object per line.
    log_file:
        If given, also append JSON lines to this file (parents are created).
        The file handler records everything down to ``DEBUG``.
    """
    if fmt == "json":
        pre_chain = _pre_chain("iso")
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        pre_chain = _pre_chain("%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    handlers[0].setFormatter(_formatter(renderer, pre_chain))

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            _formatter(structlog.processors.JSONRenderer(), _pre_chain("iso"))
        )
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    # Replace rather than extend, so reconfiguring never duplicates output.
    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # Direct structlog.get_logger() callers share the same pre-chain.
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
