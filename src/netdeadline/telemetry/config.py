"""
Telemetry setup for applications embedding netdeadline.

The library itself only asks for tracers and loggers; nothing is configured
on import. ``configure_telemetry`` is an opt-in helper that installs an
OpenTelemetry SDK tracer provider and routes structlog through the standard
``logging`` module as JSON, honouring the usual ``OTEL_*`` variables and
``NETDEADLINE_LOG_LEVEL``.
"""

import logging
import os
from typing import Any, Dict, List, Optional, Sequence

import structlog
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from netdeadline.config import get_env_config

DEFAULT_SERVICE_NAME = "netdeadline"
TRUTHY = frozenset({"1", "true", "t", "yes", "y", "on"})


def parse_key_values(value: Optional[str]) -> Dict[str, str]:
    """
    Parse ``key=value`` pairs separated by commas, as in
    ``OTEL_RESOURCE_ATTRIBUTES``. Pairs without ``=`` are skipped.
    """
    pairs: Dict[str, str] = {}
    for item in (value or "").split(","):
        key, sep, val = item.partition("=")
        if sep and key.strip():
            pairs[key.strip()] = val.strip()
    return pairs


def tracing_disabled() -> bool:
    """Whether ``OTEL_SDK_DISABLED`` switches tracing off."""
    return os.environ.get("OTEL_SDK_DISABLED", "").strip().lower() in TRUTHY


def configure_telemetry(
    service_name: Optional[str] = None,
    resource_attributes: Optional[Dict[str, str]] = None,
    trace_enabled: Optional[bool] = None,
    log_level: Optional[str] = None,
    log_processors: Optional[List[Any]] = None,
    trace_exporters: Optional[List[str]] = None,
) -> bool:
    """
    Install tracing and structured logging for the listener and dial events.

    Args:
        service_name: ``service.name`` of the tracing resource; defaults to
            ``OTEL_SERVICE_NAME``, then ``"netdeadline"``
        resource_attributes: Attributes added to those parsed from
            ``OTEL_RESOURCE_ATTRIBUTES``
        trace_enabled: Whether to install a tracer provider; defaults to
            the inverse of ``OTEL_SDK_DISABLED``
        log_level: Minimum log level name; defaults to
            ``NETDEADLINE_LOG_LEVEL``, then ``"INFO"``
        log_processors: structlog processors run just before rendering
        trace_exporters: Exporter names; defaults to ``OTEL_TRACES_EXPORTER``

    Returns:
        Whether tracing was installed
    """
    if trace_enabled is None:
        trace_enabled = not tracing_disabled()

    if trace_enabled:
        attributes = parse_key_values(os.environ.get("OTEL_RESOURCE_ATTRIBUTES"))
        attributes.update(resource_attributes or {})
        attributes["service.name"] = (
            service_name or os.environ.get("OTEL_SERVICE_NAME") or DEFAULT_SERVICE_NAME
        )
        provider = TracerProvider(resource=Resource.create(attributes))
        add_exporters(provider, trace_exporters)
        trace.set_tracer_provider(provider)

    configure_logging(
        log_level or get_env_config("log_level") or "INFO", log_processors
    )
    return trace_enabled


def add_exporters(
    provider: TracerProvider, exporters: Optional[Sequence[str]] = None
) -> None:
    """
    Attach span exporters to ``provider``.

    Only ``"console"`` ships with the SDK; other names, including ``"none"``,
    add nothing.
    """
    if exporters is None:
        exporters = os.environ.get("OTEL_TRACES_EXPORTER", "console").split(",")
    for name in exporters:
        if name.strip() == "console":
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))


def add_trace_context(_, __, event_dict):
    """structlog processor tagging entries emitted inside a span with its ids."""
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        event_dict["trace_id"] = format(span_context.trace_id, "032x")
        event_dict["span_id"] = format(span_context.span_id, "016x")
    return event_dict


def configure_logging(log_level: str, extra_processors=None) -> None:
    """Render structlog events as JSON lines through the ``logging`` module."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(format="%(message)s", level=level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.processors.add_log_level,
        add_trace_context,
        structlog.processors.TimeStamper(fmt="iso"),
        *(extra_processors or []),
        structlog.processors.JSONRenderer(),
    ]
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
