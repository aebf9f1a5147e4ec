"""
Telemetry module for netdeadline.

Structured logging goes through structlog and tracing through OpenTelemetry.
Until ``configure_telemetry`` (or the application) installs a tracer
provider, OpenTelemetry hands out non-recording spans, so instrumented code
costs next to nothing when observability is not wanted.
"""

from typing import Any, Tuple

import structlog
from opentelemetry import trace

from netdeadline.telemetry.config import configure_telemetry


def get_telemetry(name: str) -> Tuple[trace.Tracer, Any]:
    """
    Get tracer and logger instances for the given name.

    Args:
        name: The name to use for the tracer and logger

    Returns:
        A tuple containing a tracer and a structlog logger
    """
    return trace.get_tracer(name), structlog.get_logger(name)


__all__ = ["configure_telemetry", "get_telemetry"]
