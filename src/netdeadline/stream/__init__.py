"""
Deadline-enforcing stream connections and listeners.

This package provides the stream protocols, their anyio-backed socket
implementations, the deadline decorators and the factories that tie them
together.
"""

from netdeadline.stream.address import join_host_port, split_host_port
from netdeadline.stream.deadline import DeadlineConnection, DeadlineListener
from netdeadline.stream.factory import (
    DEFAULT_ALPN_PROTOCOLS,
    connect,
    create_server_ssl_context,
    dial_stream,
    new_listener,
    new_listener_tls,
)
from netdeadline.stream.protocol import StreamConnection, StreamListener
from netdeadline.stream.registry import (
    NetworkRegistry,
    TCPNetwork,
    UnixNetwork,
    get_network_registry,
    register_network,
)
from netdeadline.stream.socket import (
    SocketConnection,
    SocketStreamListener,
    TLSSocketConnection,
    TLSStreamListener,
)

__all__ = [
    "StreamConnection",
    "StreamListener",
    "SocketConnection",
    "TLSSocketConnection",
    "SocketStreamListener",
    "TLSStreamListener",
    "DeadlineConnection",
    "DeadlineListener",
    "DEFAULT_ALPN_PROTOCOLS",
    "new_listener",
    "new_listener_tls",
    "create_server_ssl_context",
    "connect",
    "dial_stream",
    "NetworkRegistry",
    "TCPNetwork",
    "UnixNetwork",
    "get_network_registry",
    "register_network",
    "split_host_port",
    "join_host_port",
]
