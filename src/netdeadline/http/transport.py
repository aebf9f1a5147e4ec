"""
httpx transport whose connections enforce read and write deadlines.

``DeadlineHTTPTransport`` is a regular ``httpx.AsyncHTTPTransport`` with its
connection pool switched to a ``DeadlineNetworkBackend``. Pooling,
keep-alive and HTTP framing stay with httpcore.
"""

import ssl
from typing import Any, Dict, Iterable, Optional, Union

import certifi
import httpcore
import httpx

from netdeadline.config import apply_default_timeout, resolve_timeouts
from netdeadline.http.backend import DeadlineNetworkBackend

DEFAULT_LIMITS = httpx.Limits(max_connections=100, max_keepalive_connections=20)


def create_client_ssl_context(verify: Union[bool, ssl.SSLContext] = True) -> ssl.SSLContext:
    """
    Build the SSL context used for outbound TLS connections.

    Args:
        verify: True to verify servers against the certifi CA bundle, False
            to disable verification, or a ready-made context

    Returns:
        The SSL context
    """
    if isinstance(verify, ssl.SSLContext):
        return verify
    if not verify:
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context
    return ssl.create_default_context(cafile=certifi.where())


class DeadlineHTTPTransport(httpx.AsyncHTTPTransport):
    """httpx transport that dials deadline connections."""

    def __init__(
        self,
        address: Optional[str] = None,
        timeout: Optional[float] = None,
        *,
        read_timeout: Optional[float] = None,
        write_timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        network: str = "tcp",
        verify: Union[bool, ssl.SSLContext] = True,
        http1: bool = True,
        http2: bool = False,
        limits: httpx.Limits = DEFAULT_LIMITS,
        local_address: Optional[str] = None,
        socket_options: Optional[Iterable[Any]] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize a new deadline transport.

        Args:
            address: Optional ``host:port`` (or socket path for ``"unix"``)
                that every connection dials instead of the request's host
            timeout: Default for the connect, read and write timeouts
            read_timeout: Per-read idle timeout in seconds
            write_timeout: Per-write idle timeout in seconds
            connect_timeout: Time limit for establishing a connection
            network: Network used to dial, ``"tcp"`` by default
            verify: Server certificate verification, see
                ``create_client_ssl_context``
            http1: Whether to allow HTTP/1.1
            http2: Whether to allow HTTP/2 (requires the h2 package)
            limits: Connection pool limits
            local_address: Local interface to bind outbound connections to
            socket_options: Socket options applied to every new connection
            config: Optional mapping of ``read_timeout``, ``write_timeout``
                and ``connect_timeout``, below the explicit arguments
        """
        ssl_context = create_client_ssl_context(verify)
        super().__init__(verify=ssl_context, http1=http1, http2=http2, limits=limits)

        self.timeouts = resolve_timeouts(
            read_timeout,
            write_timeout,
            connect_timeout,
            apply_default_timeout(timeout, config),
        )
        self.backend = DeadlineNetworkBackend(self.timeouts, address=address, network=network)
        self._pool = httpcore.AsyncConnectionPool(
            ssl_context=ssl_context,
            max_connections=limits.max_connections,
            max_keepalive_connections=limits.max_keepalive_connections,
            keepalive_expiry=limits.keepalive_expiry,
            http1=http1,
            http2=http2,
            local_address=local_address,
            socket_options=socket_options,
            network_backend=self.backend,
        )


def new_transport(
    address: Optional[str] = None,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> DeadlineHTTPTransport:
    """
    Create an httpx transport whose connections enforce read and write deadlines.

    Every connection the transport opens is established within the connect
    timeout, and each read and write on it is bounded by the read and write
    timeouts; all three default to ``timeout``.

    Args:
        address: Optional address every connection dials instead of the
            request's host
        timeout: Default timeout in seconds
        **kwargs: Further ``DeadlineHTTPTransport`` options

    Returns:
        The transport, for ``httpx.AsyncClient(transport=...)``
    """
    return DeadlineHTTPTransport(address, timeout, **kwargs)
