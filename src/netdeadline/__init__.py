"""
netdeadline: idle-timeout enforcement for stream connections.

Every read and write on a connection produced by this package first moves
the connection's deadline to ``now + timeout``, so a stalled peer can never
hold a call for longer than one timeout.
"""

from netdeadline.config import Timeouts, resolve_timeouts
from netdeadline.errors import (
    CertificateError,
    ClosedConnectionError,
    ConfigurationError,
    ConnectionError,
    ConnectionTimeoutError,
    DeadlineExceededError,
    NetDeadlineError,
    UnsupportedNetworkError,
)
from netdeadline.http import DeadlineHTTPTransport, new_transport
from netdeadline.stream import (
    DeadlineConnection,
    DeadlineListener,
    StreamConnection,
    StreamListener,
    connect,
    new_listener,
    new_listener_tls,
)
from netdeadline.telemetry import configure_telemetry

__version__ = "0.1.0"

__all__ = [
    "DeadlineConnection",
    "DeadlineListener",
    "DeadlineHTTPTransport",
    "StreamConnection",
    "StreamListener",
    "new_listener",
    "new_listener_tls",
    "new_transport",
    "connect",
    "Timeouts",
    "resolve_timeouts",
    "configure_telemetry",
    "NetDeadlineError",
    "ConfigurationError",
    "UnsupportedNetworkError",
    "CertificateError",
    "ConnectionError",
    "ClosedConnectionError",
    "ConnectionTimeoutError",
    "DeadlineExceededError",
]
