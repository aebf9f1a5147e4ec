"""
AnyIO-backed stream primitives.

``SocketConnection`` keeps the read and write deadlines of one byte stream
and enforces them with cancel scopes. The listeners produce these
connections from bound anyio socket listeners.
"""

import ssl
from functools import partial
from typing import Any, List, Optional, Sequence

import anyio
from anyio.abc import ByteStream, SocketAttribute, SocketListener, SocketStream
from anyio.streams.tls import TLSStream

from netdeadline.concurrency import fail_at
from netdeadline.errors import ClosedConnectionError, DeadlineExceededError
from netdeadline.stream.protocol import DEFAULT_READ_SIZE
from netdeadline.telemetry import get_telemetry

_, _logger = get_telemetry("netdeadline.stream")


class SocketConnection:
    """A stream connection over an anyio byte stream, with read and write deadlines."""

    def __init__(self, stream: ByteStream):
        """
        Initialize a new socket connection.

        Args:
            stream: The connected anyio byte stream; the connection takes
                ownership of it.
        """
        self._stream = stream
        self._read_deadline: Optional[float] = None
        self._write_deadline: Optional[float] = None
        self._closed = False

    @property
    def stream(self) -> ByteStream:
        """The wrapped anyio stream."""
        return self._stream

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def read_deadline(self) -> Optional[float]:
        return self._read_deadline

    @property
    def write_deadline(self) -> Optional[float]:
        return self._write_deadline

    def set_read_deadline(self, deadline: Optional[float]) -> None:
        self._check_open()
        self._read_deadline = deadline

    def set_write_deadline(self, deadline: Optional[float]) -> None:
        self._check_open()
        self._write_deadline = deadline

    async def read(self, max_bytes: int = DEFAULT_READ_SIZE) -> bytes:
        if self._closed:
            raise anyio.ClosedResourceError
        if max_bytes == 0:
            return b""
        with fail_at(self._read_deadline, partial(DeadlineExceededError, "read")):
            try:
                stream = await self._get_stream()
                return await stream.receive(max_bytes)
            except anyio.EndOfStream:
                return b""

    async def write(self, data: bytes) -> int:
        if self._closed:
            raise anyio.ClosedResourceError
        with fail_at(self._write_deadline, partial(DeadlineExceededError, "write")):
            stream = await self._get_stream()
            await stream.send(data)
        return len(data)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._stream.aclose()

    @property
    def local_address(self) -> Any:
        return self._stream.extra(SocketAttribute.local_address)

    @property
    def remote_address(self) -> Any:
        return self._stream.extra(SocketAttribute.remote_address)

    def extra(self, attribute: Any, *default: Any) -> Any:
        return self._stream.extra(attribute, *default)

    async def __aenter__(self) -> "SocketConnection":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def _get_stream(self) -> ByteStream:
        return self._stream

    def _check_open(self) -> None:
        if self._closed:
            raise ClosedConnectionError("Cannot set a deadline on a closed connection")

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<{type(self).__name__} {state}>"


class TLSSocketConnection(SocketConnection):
    """
    Server side of a TLS connection.

    The handshake runs on the first read or write, under that call's
    deadline, so a client that stalls mid-handshake is cut off like any other
    idle peer. A failed handshake leaves the connection broken.
    """

    def __init__(
        self,
        stream: ByteStream,
        ssl_context: ssl.SSLContext,
        standard_compatible: bool = False,
    ):
        """
        Initialize a new TLS connection.

        Args:
            stream: The accepted, not yet encrypted, anyio byte stream
            ssl_context: The server-side SSL context
            standard_compatible: Whether to require a closing TLS handshake
                from the peer (passed to ``TLSStream.wrap``)
        """
        super().__init__(stream)
        self._ssl_context = ssl_context
        self._standard_compatible = standard_compatible
        self._handshake_lock = anyio.Lock()
        self._handshake_done = False
        self._handshake_error: Optional[BaseException] = None

    @property
    def handshake_done(self) -> bool:
        return self._handshake_done

    async def do_handshake(self) -> None:
        """Run the TLS handshake now instead of on the first read or write."""
        await self._get_stream()

    async def _get_stream(self) -> ByteStream:
        if self._handshake_done:
            return self._stream

        async with self._handshake_lock:
            if self._handshake_error is not None:
                raise anyio.BrokenResourceError(
                    "TLS handshake failed earlier"
                ) from self._handshake_error
            if not self._handshake_done:
                try:
                    self._stream = await TLSStream.wrap(
                        self._stream,
                        server_side=True,
                        ssl_context=self._ssl_context,
                        standard_compatible=self._standard_compatible,
                    )
                except BaseException as e:
                    self._handshake_error = e
                    raise
                self._handshake_done = True
        return self._stream


class SocketStreamListener:
    """
    Listener over one or more bound anyio socket listeners.

    Binding an empty host can produce one socket per address family;
    ``accept`` returns the next connection from whichever socket has one
    pending.
    """

    def __init__(self, listeners: Sequence[SocketListener]):
        if not listeners:
            raise ValueError("At least one socket listener is required")
        self._listeners: List[SocketListener] = list(listeners)
        self._wait_scope: Optional[anyio.CancelScope] = None
        self._closed = False

    @property
    def listeners(self) -> List[SocketListener]:
        return list(self._listeners)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def local_address(self) -> Any:
        return self._listeners[0].extra(SocketAttribute.local_address)

    @property
    def local_addresses(self) -> List[Any]:
        return [
            listener.extra(SocketAttribute.local_address)
            for listener in self._listeners
        ]

    async def accept_stream(self) -> SocketStream:
        """Accept the next incoming connection as a raw anyio socket stream."""
        if self._closed:
            raise anyio.ClosedResourceError
        if len(self._listeners) == 1:
            return await self._listeners[0].accept()
        listener = await self._wait_pending()
        return await listener.accept()

    async def accept(self) -> SocketConnection:
        return SocketConnection(await self.accept_stream())

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        local_addresses = [str(address) for address in self.local_addresses]
        if self._wait_scope is not None:
            self._wait_scope.cancel()
        for listener in self._listeners:
            await listener.aclose()
        _logger.debug("listener.closed", local_addresses=local_addresses)

    async def __aenter__(self) -> "SocketStreamListener":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def _wait_pending(self) -> SocketListener:
        ready: List[SocketListener] = []

        async def wait(listener: SocketListener, scope: anyio.CancelScope) -> None:
            await anyio.wait_readable(listener.extra(SocketAttribute.raw_socket))
            ready.append(listener)
            scope.cancel()

        try:
            async with anyio.create_task_group() as tg:
                self._wait_scope = tg.cancel_scope
                for listener in self._listeners:
                    tg.start_soon(wait, listener, tg.cancel_scope)
        except BaseExceptionGroup as group:
            # Every waiter fails for the same reason.
            raise group.exceptions[0]
        finally:
            self._wait_scope = None

        if self._closed or not ready:
            raise anyio.ClosedResourceError
        return ready[0]


class TLSStreamListener:
    """Listener layer that terminates TLS on every connection it accepts."""

    def __init__(
        self,
        listener: SocketStreamListener,
        ssl_context: ssl.SSLContext,
        standard_compatible: bool = False,
    ):
        self._listener = listener
        self._ssl_context = ssl_context
        self._standard_compatible = standard_compatible

    @property
    def listener(self) -> SocketStreamListener:
        return self._listener

    @property
    def ssl_context(self) -> ssl.SSLContext:
        return self._ssl_context

    @property
    def local_address(self) -> Any:
        return self._listener.local_address

    async def accept(self) -> TLSSocketConnection:
        stream = await self._listener.accept_stream()
        return TLSSocketConnection(
            stream, self._ssl_context, standard_compatible=self._standard_compatible
        )

    async def aclose(self) -> None:
        await self._listener.aclose()

    async def __aenter__(self) -> "TLSStreamListener":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
