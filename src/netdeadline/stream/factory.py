"""
Factories for deadline listeners and outbound deadline connections.

All factories validate their timeouts before touching the network, so a
failed construction never leaves a bound socket or an open connection behind.
"""

import ssl
from typing import Any, Dict, Optional, Sequence

from anyio.abc import SocketStream

from netdeadline.concurrency import deadline_after, fail_at
from netdeadline.config import apply_default_timeout, resolve_timeouts
from netdeadline.errors import CertificateError, ConnectionTimeoutError
from netdeadline.stream.deadline import DeadlineConnection, DeadlineListener
from netdeadline.stream.registry import get_network_registry
from netdeadline.stream.socket import (
    SocketConnection,
    SocketStreamListener,
    TLSStreamListener,
)
from netdeadline.telemetry import get_telemetry

DEFAULT_ALPN_PROTOCOLS = ("http/1.1",)

_tracer, _logger = get_telemetry("netdeadline.stream")


def create_server_ssl_context(
    cert_file: str,
    key_file: str,
    alpn_protocols: Optional[Sequence[str]] = None,
) -> ssl.SSLContext:
    """
    Build a server-side SSL context from a certificate/key pair.

    A fresh context is created on every call.

    Args:
        cert_file: Path to the PEM certificate (chain) file
        key_file: Path to the PEM private key file
        alpn_protocols: Protocols to advertise through ALPN; defaults to
            ``["http/1.1"]`` when None. An empty sequence disables ALPN.

    Returns:
        The SSL context

    Raises:
        CertificateError: If the certificate or key cannot be loaded
    """
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    try:
        context.load_cert_chain(cert_file, key_file)
    except OSError as e:
        _logger.error(
            "tls.certificate_load_failed",
            cert_file=str(cert_file),
            key_file=str(key_file),
            error=str(e),
            error_type=type(e).__name__,
        )
        raise CertificateError(
            f"Failed to load certificate {cert_file!s} with key {key_file!s}: {e}"
        ) from e

    if alpn_protocols is None:
        alpn_protocols = DEFAULT_ALPN_PROTOCOLS
    if alpn_protocols:
        context.set_alpn_protocols(list(alpn_protocols))
    return context


async def _bind(network: str, address: str) -> SocketStreamListener:
    net = get_network_registry().get(network)
    with _tracer.start_as_current_span("netdeadline.listen") as span:
        span.set_attribute("net.network", network)
        span.set_attribute("net.address", address)
        try:
            listeners = await net.listen(address)
        except OSError as e:
            _logger.error(
                "listener.bind_failed",
                network=network,
                address=address,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    listener = SocketStreamListener(listeners)
    _logger.debug(
        "listener.bound",
        network=network,
        address=address,
        local_addresses=[str(addr) for addr in listener.local_addresses],
    )
    return listener


async def new_listener(
    network: str,
    address: str,
    read_timeout: Optional[float] = None,
    write_timeout: Optional[float] = None,
    *,
    config: Optional[Dict[str, Any]] = None,
) -> DeadlineListener:
    """
    Listen on a stream network and wrap accepted connections with deadlines.

    Args:
        network: A registered network name: ``"tcp"``, ``"tcp4"``, ``"tcp6"``
            or ``"unix"``
        address: ``host:port`` for TCP (an empty host listens on all
            interfaces, as in ``":8080"``), a filesystem path for Unix sockets
        read_timeout: Per-read idle timeout in seconds; None reads the
            configuration
        write_timeout: Per-write idle timeout in seconds; None reads the
            configuration
        config: Optional mapping with ``read_timeout`` and ``write_timeout``
            keys, consulted before the environment

    Returns:
        The listener

    Raises:
        UnsupportedNetworkError: If the network is not registered
        ConfigurationError: If a timeout or the address is invalid
        OSError: If binding fails
    """
    timeouts = resolve_timeouts(read_timeout, write_timeout, config=config)
    listener = await _bind(network, address)
    return DeadlineListener(listener, timeouts.read, timeouts.write)


async def new_listener_tls(
    network: str,
    address: str,
    cert_file: str,
    key_file: str,
    read_timeout: Optional[float] = None,
    write_timeout: Optional[float] = None,
    *,
    alpn_protocols: Optional[Sequence[str]] = None,
    standard_compatible: bool = False,
    config: Optional[Dict[str, Any]] = None,
) -> DeadlineListener:
    """
    TLS-enabled version of ``new_listener``.

    The certificate pair is loaded before anything is bound. Accepted
    connections run the TLS handshake on their first read or write.

    Args:
        network: A registered network name
        address: The address to listen on
        cert_file: Path to the PEM certificate file
        key_file: Path to the PEM private key file
        read_timeout: Per-read idle timeout in seconds
        write_timeout: Per-write idle timeout in seconds
        alpn_protocols: ALPN protocols to advertise, ``["http/1.1"]`` by default
        standard_compatible: Whether closing a connection waits for the
            peer's TLS close_notify
        config: Optional timeout mapping, as for ``new_listener``

    Returns:
        The listener

    Raises:
        CertificateError: If the certificate pair cannot be loaded
        UnsupportedNetworkError: If the network is not registered
        ConfigurationError: If a timeout or the address is invalid
        OSError: If binding fails
    """
    timeouts = resolve_timeouts(read_timeout, write_timeout, config=config)
    ssl_context = create_server_ssl_context(cert_file, key_file, alpn_protocols)
    listener = await _bind(network, address)
    tls_listener = TLSStreamListener(
        listener, ssl_context, standard_compatible=standard_compatible
    )
    return DeadlineListener(tls_listener, timeouts.read, timeouts.write)


async def dial_stream(
    network: str,
    address: str,
    connect_timeout: float,
    local_address: Optional[str] = None,
) -> SocketStream:
    """
    Connect to ``address``, giving up after ``connect_timeout`` seconds.

    Returns:
        The connected anyio socket stream

    Raises:
        ConnectionTimeoutError: If the connection was not established in time
        OSError: If the connection failed
    """
    net = get_network_registry().get(network)

    def timed_out(_deadline: float) -> ConnectionTimeoutError:
        return ConnectionTimeoutError(
            f"Connection to {address} timed out after {connect_timeout}s"
        )

    with _tracer.start_as_current_span("netdeadline.dial") as span:
        span.set_attribute("net.network", network)
        span.set_attribute("net.address", address)
        try:
            with fail_at(deadline_after(connect_timeout), timed_out):
                stream = await net.dial(address, local_address)
        except (OSError, ConnectionTimeoutError) as e:
            _logger.warning(
                "dial.failed",
                network=network,
                address=address,
                connect_timeout=connect_timeout,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    _logger.debug("dial.connected", network=network, address=address)
    return stream


async def connect(
    address: str,
    timeout: Optional[float] = None,
    *,
    read_timeout: Optional[float] = None,
    write_timeout: Optional[float] = None,
    connect_timeout: Optional[float] = None,
    network: str = "tcp",
    local_address: Optional[str] = None,
    config: Optional[Dict[str, Any]] = None,
) -> DeadlineConnection:
    """
    Dial ``address`` and wrap the connection with read and write deadlines.

    ``timeout`` is the default for the connect, read and write timeouts;
    each can be overridden separately.

    Args:
        address: The address to connect to
        timeout: Default timeout in seconds
        read_timeout: Per-read idle timeout in seconds
        write_timeout: Per-write idle timeout in seconds
        connect_timeout: Time limit for establishing the connection
        network: A registered network name
        local_address: Local interface to bind before connecting (TCP only)
        config: Optional timeout mapping, below the explicit arguments

    Returns:
        The connected deadline connection

    Raises:
        ConnectionTimeoutError: If the connection was not established in time
        OSError: If the connection failed
    """
    timeouts = resolve_timeouts(
        read_timeout,
        write_timeout,
        connect_timeout,
        apply_default_timeout(timeout, config),
    )

    stream = await dial_stream(network, address, timeouts.connect, local_address)
    return DeadlineConnection(SocketConnection(stream), timeouts.read, timeouts.write)
