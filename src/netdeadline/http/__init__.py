"""
Outbound HTTP support.

An httpx transport whose dial function produces deadline connections.
"""

from netdeadline.http.backend import DeadlineNetworkBackend, DeadlineNetworkStream
from netdeadline.http.transport import (
    DEFAULT_LIMITS,
    DeadlineHTTPTransport,
    create_client_ssl_context,
    new_transport,
)

__all__ = [
    "DeadlineHTTPTransport",
    "DeadlineNetworkBackend",
    "DeadlineNetworkStream",
    "DEFAULT_LIMITS",
    "create_client_ssl_context",
    "new_transport",
]
