"""
httpcore network backend that dials deadline connections.

httpcore calls the backend's ``connect_*`` methods whenever its connection
pool needs a new connection; every connection handed back enforces the
configured read and write idle timeouts. Errors are translated into
httpcore's exception types at this boundary so httpx reports them as its own
``ConnectTimeout``, ``ReadTimeout`` and so on.
"""

import select
import socket
import ssl
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional, Type

import anyio
import httpcore
from anyio.abc import SocketAttribute, SocketStream
from anyio.streams.tls import TLSAttribute, TLSStream

from netdeadline.concurrency import deadline_after, fail_at, shield
from netdeadline.config import Timeouts
from netdeadline.errors import ConfigurationError, NetDeadlineError
from netdeadline.stream.address import join_host_port
from netdeadline.stream.deadline import DeadlineConnection
from netdeadline.stream.factory import dial_stream
from netdeadline.stream.socket import SocketConnection

TCP_NETWORKS = ("tcp", "tcp4", "tcp6")


@contextmanager
def map_exceptions(
    timeout_exc: Type[Exception], error_exc: Type[Exception]
) -> Iterator[None]:
    """Translate stream errors into the given httpcore exception types."""
    try:
        yield
    except TimeoutError as e:
        raise timeout_exc(str(e)) from e
    except (
        anyio.BrokenResourceError,
        anyio.ClosedResourceError,
        anyio.EndOfStream,
        NetDeadlineError,
        OSError,
    ) as e:
        raise error_exc(str(e) or type(e).__name__) from e


def is_socket_readable(sock: Optional[socket.socket]) -> bool:
    """
    Return whether a socket has pending input or has been closed.

    An idle keep-alive connection that turns readable was dropped by the
    server (or has unexpected data), so the pool must not reuse it.
    """
    if sock is None or sock.fileno() < 0:
        return True
    if hasattr(select, "poll"):
        poller = select.poll()
        poller.register(sock, select.POLLIN)
        return bool(poller.poll(0))
    readable, _, _ = select.select([sock], [], [], 0)
    return bool(readable)


class DeadlineNetworkStream(httpcore.AsyncNetworkStream):
    """httpcore network stream over a deadline connection."""

    def __init__(self, conn: SocketConnection, timeouts: Timeouts):
        """
        Initialize a new network stream.

        Args:
            conn: The connected socket connection; the stream owns it
            timeouts: Read and write idle timeouts for the connection, and
                the time limit for a TLS upgrade
        """
        self._socket = conn
        self._timeouts = timeouts
        self._conn = DeadlineConnection(conn, timeouts.read, timeouts.write)

    @property
    def connection(self) -> DeadlineConnection:
        return self._conn

    async def read(self, max_bytes: int, timeout: Optional[float] = None) -> bytes:
        with map_exceptions(httpcore.ReadTimeout, httpcore.ReadError):
            with anyio.fail_after(timeout):
                return await self._conn.read(max_bytes)

    async def write(self, buffer: bytes, timeout: Optional[float] = None) -> None:
        if not buffer:
            return
        with map_exceptions(httpcore.WriteTimeout, httpcore.WriteError):
            with anyio.fail_after(timeout):
                await self._conn.write(buffer)

    async def aclose(self) -> None:
        await self._conn.aclose()

    async def start_tls(
        self,
        ssl_context: ssl.SSLContext,
        server_hostname: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> "DeadlineNetworkStream":
        limit = self._timeouts.connect
        if timeout is not None:
            limit = min(limit, timeout)

        def timed_out(_deadline: float) -> TimeoutError:
            return TimeoutError(f"TLS handshake timed out after {limit}s")

        with map_exceptions(httpcore.ConnectTimeout, httpcore.ConnectError):
            try:
                with fail_at(deadline_after(limit), timed_out):
                    tls_stream = await TLSStream.wrap(
                        self._socket.stream,
                        server_side=False,
                        hostname=server_hostname,
                        ssl_context=ssl_context,
                        standard_compatible=False,
                    )
            except Exception:
                await shield(self.aclose)
                raise

        return DeadlineNetworkStream(SocketConnection(tls_stream), self._timeouts)

    def get_extra_info(self, info: str) -> Any:
        if info == "ssl_object":
            return self._socket.extra(TLSAttribute.ssl_object, None)
        if info == "client_addr":
            return self._socket.extra(SocketAttribute.local_address, None)
        if info == "server_addr":
            return self._socket.extra(SocketAttribute.remote_address, None)
        if info == "socket":
            return self._socket.extra(SocketAttribute.raw_socket, None)
        if info == "is_readable":
            return is_socket_readable(self._socket.extra(SocketAttribute.raw_socket, None))
        return None


class DeadlineNetworkBackend(httpcore.AsyncNetworkBackend):
    """
    The dial function of a ``DeadlineHTTPTransport``.

    Each connection is established within the connect timeout and wrapped
    so every read and write is bounded by the read and write timeouts.
    When ``address`` is set, every connection dials it instead of the
    requested host.
    """

    def __init__(
        self,
        timeouts: Timeouts,
        address: Optional[str] = None,
        network: str = "tcp",
    ):
        if network not in TCP_NETWORKS and not address:
            raise ConfigurationError(
                f"An address is required to dial over the {network!r} network"
            )
        self.timeouts = timeouts
        self.address = address
        self.network = network

    def _connect_limit(self, timeout: Optional[float]) -> float:
        if timeout is None:
            return self.timeouts.connect
        return min(timeout, self.timeouts.connect)

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options: Optional[Iterable[Any]] = None,
    ) -> DeadlineNetworkStream:
        address = self.address or join_host_port(host, port)
        with map_exceptions(httpcore.ConnectTimeout, httpcore.ConnectError):
            stream = await dial_stream(
                self.network, address, self._connect_limit(timeout), local_address
            )
        return await self._wrap(stream, socket_options)

    async def connect_unix_socket(
        self,
        path: str,
        timeout: Optional[float] = None,
        socket_options: Optional[Iterable[Any]] = None,
    ) -> DeadlineNetworkStream:
        with map_exceptions(httpcore.ConnectTimeout, httpcore.ConnectError):
            stream = await dial_stream("unix", path, self._connect_limit(timeout))
        return await self._wrap(stream, socket_options)

    async def sleep(self, seconds: float) -> None:
        await anyio.sleep(seconds)

    async def _wrap(
        self, stream: SocketStream, socket_options: Optional[Iterable[Any]]
    ) -> DeadlineNetworkStream:
        if socket_options:
            sock = stream.extra(SocketAttribute.raw_socket)
            try:
                for option in socket_options:
                    sock.setsockopt(*option)
            except OSError as e:
                await shield(stream.aclose)
                raise httpcore.ConnectError(str(e)) from e
        return DeadlineNetworkStream(SocketConnection(stream), self.timeouts)
