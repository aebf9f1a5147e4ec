"""
Error hierarchy for netdeadline.

Errors raised by the stream primitives, the listener factories and the
outbound dial path. Errors coming from the operating system (bind failures,
connection resets) and from anyio (closed or broken resources) are propagated
as-is and are not part of this hierarchy, except that ``ClosedConnectionError``
is also an ``anyio.ClosedResourceError`` so callers can catch every
use-after-close failure with one type.
"""

import builtins

import anyio


class NetDeadlineError(Exception):
    """Base class for all netdeadline errors."""


class ConfigurationError(NetDeadlineError):
    """Error raised for an invalid timeout, address or other construction input."""


class UnsupportedNetworkError(ConfigurationError):
    """Error raised when a network family has no registered listener or dialer."""

    def __init__(self, network: str, supported: tuple = ()):
        self.network = network
        self.supported = tuple(supported)
        message = f"Unsupported network: {network!r}"
        if self.supported:
            message += f". Available networks: {', '.join(self.supported)}"
        super().__init__(message)


class CertificateError(NetDeadlineError):
    """Error raised when a certificate/key pair cannot be loaded."""


class ConnectionError(NetDeadlineError):
    """Base class for connection-level errors."""


class ClosedConnectionError(ConnectionError, anyio.ClosedResourceError):
    """Error raised when a deadline is set on a connection that is already closed."""


class ConnectionTimeoutError(ConnectionError, builtins.TimeoutError):
    """Error raised when establishing a connection exceeds the connect timeout."""


class DeadlineExceededError(ConnectionError, builtins.TimeoutError):
    """Error raised when a read or write is still pending at its deadline."""

    def __init__(self, operation: str, deadline: float):
        self.operation = operation
        self.deadline = deadline
        super().__init__(f"{operation} deadline exceeded")
