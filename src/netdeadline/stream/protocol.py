"""
Stream connection and listener protocols.

These protocols describe the capability sets the deadline decorators wrap.
Anything that implements them (the anyio-backed primitives in
``netdeadline.stream.socket``, a test double, another decorator) can be
wrapped.
"""

from typing import Any, Optional, Protocol, TypeVar, runtime_checkable

T = TypeVar("T", bound="StreamConnection")
L = TypeVar("L", bound="StreamListener")

DEFAULT_READ_SIZE = 65536


@runtime_checkable
class StreamConnection(Protocol):
    """
    Protocol defining the interface of a bidirectional byte-stream connection.

    Deadlines are absolute times on the event loop clock
    (``anyio.current_time()``). A read or write still pending at its deadline
    fails with ``DeadlineExceededError``.
    """

    async def read(self, max_bytes: int = DEFAULT_READ_SIZE) -> bytes:
        """
        Read up to ``max_bytes`` bytes.

        Returns:
            The bytes read, or ``b""`` at end of stream or when
            ``max_bytes`` is 0.
        """
        ...

    async def write(self, data: bytes) -> int:
        """
        Write all of ``data``.

        Returns:
            The number of bytes written.
        """
        ...

    def set_read_deadline(self, deadline: Optional[float]) -> None:
        """Set the absolute deadline for reads, or clear it with None."""
        ...

    def set_write_deadline(self, deadline: Optional[float]) -> None:
        """Set the absolute deadline for writes, or clear it with None."""
        ...

    async def aclose(self) -> None:
        """Close the connection."""
        ...

    @property
    def local_address(self) -> Any:
        """The local address of the connection."""
        ...

    @property
    def remote_address(self) -> Any:
        """The address of the peer."""
        ...

    def extra(self, attribute: Any, *default: Any) -> Any:
        """Look up an anyio typed attribute of the underlying stream."""
        ...

    async def __aenter__(self: T) -> T:
        ...

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        ...


@runtime_checkable
class StreamListener(Protocol):
    """Protocol defining the interface of a listener for stream connections."""

    async def accept(self) -> StreamConnection:
        """Wait for and return the next incoming connection."""
        ...

    async def aclose(self) -> None:
        """Stop listening. Connections already accepted are not affected."""
        ...

    @property
    def local_address(self) -> Any:
        """The address the listener is bound to."""
        ...

    async def __aenter__(self: L) -> L:
        ...

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        ...
