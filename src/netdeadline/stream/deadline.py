"""
Deadline-enforcing connection and listener decorators.

``DeadlineConnection`` moves the wrapped connection's read (or write)
deadline to ``now + timeout`` before every read (or write), so a stalled peer
can hold a call for at most one timeout. Every other operation is forwarded
unchanged. ``DeadlineListener`` wraps each accepted connection the same way.
"""

from typing import Any, Optional

from netdeadline.concurrency import current_time
from netdeadline.config import validate_timeout
from netdeadline.stream.protocol import (
    DEFAULT_READ_SIZE,
    StreamConnection,
    StreamListener,
)


class DeadlineConnection:
    """A stream connection that enforces an idle timeout on every read and write."""

    def __init__(
        self, conn: StreamConnection, read_timeout: float, write_timeout: float
    ):
        """
        Initialize a new deadline connection.

        Args:
            conn: The established connection to wrap; closing this wrapper
                closes it.
            read_timeout: Seconds each read may wait for data
            write_timeout: Seconds each write may wait to be sent

        Raises:
            ConfigurationError: If a timeout is negative or not a number
        """
        self._conn = conn
        self._read_timeout = validate_timeout("read_timeout", read_timeout)
        self._write_timeout = validate_timeout("write_timeout", write_timeout)

    @property
    def conn(self) -> StreamConnection:
        """The wrapped connection."""
        return self._conn

    @property
    def read_timeout(self) -> float:
        return self._read_timeout

    @property
    def write_timeout(self) -> float:
        return self._write_timeout

    async def read(self, max_bytes: int = DEFAULT_READ_SIZE) -> bytes:
        """
        Read up to ``max_bytes`` bytes within ``read_timeout`` seconds.

        Raises:
            ClosedConnectionError: If the deadline could not be set; no read
                is attempted.
            DeadlineExceededError: If no data arrived before the deadline.
        """
        self._conn.set_read_deadline(current_time() + self._read_timeout)
        return await self._conn.read(max_bytes)

    async def write(self, data: bytes) -> int:
        """
        Write ``data`` within ``write_timeout`` seconds.

        Raises:
            ClosedConnectionError: If the deadline could not be set; nothing
                is written.
            DeadlineExceededError: If the data could not be sent before the
                deadline.
        """
        self._conn.set_write_deadline(current_time() + self._write_timeout)
        return await self._conn.write(data)

    def set_read_deadline(self, deadline: Optional[float]) -> None:
        self._conn.set_read_deadline(deadline)

    def set_write_deadline(self, deadline: Optional[float]) -> None:
        self._conn.set_write_deadline(deadline)

    async def aclose(self) -> None:
        await self._conn.aclose()

    @property
    def local_address(self) -> Any:
        return self._conn.local_address

    @property
    def remote_address(self) -> Any:
        return self._conn.remote_address

    def extra(self, attribute: Any, *default: Any) -> Any:
        return self._conn.extra(attribute, *default)

    async def __aenter__(self) -> "DeadlineConnection":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return (
            f"DeadlineConnection({self._conn!r}, read_timeout={self._read_timeout}, "
            f"write_timeout={self._write_timeout})"
        )


class DeadlineListener:
    """
    Listener that wraps every accepted connection in a ``DeadlineConnection``.

    Each accepted connection gets its own wrapper carrying this listener's
    read and write timeouts.
    """

    def __init__(
        self, listener: StreamListener, read_timeout: float, write_timeout: float
    ):
        self._listener = listener
        self._read_timeout = validate_timeout("read_timeout", read_timeout)
        self._write_timeout = validate_timeout("write_timeout", write_timeout)

    @property
    def listener(self) -> StreamListener:
        """The wrapped listener."""
        return self._listener

    @property
    def read_timeout(self) -> float:
        return self._read_timeout

    @property
    def write_timeout(self) -> float:
        return self._write_timeout

    async def accept(self) -> DeadlineConnection:
        """
        Wait for the next incoming connection.

        Returns:
            The accepted connection, wrapped with this listener's timeouts.
        """
        conn = await self._listener.accept()
        return DeadlineConnection(conn, self._read_timeout, self._write_timeout)

    async def aclose(self) -> None:
        await self._listener.aclose()

    @property
    def local_address(self) -> Any:
        return self._listener.local_address

    async def __aenter__(self) -> "DeadlineListener":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return (
            f"DeadlineListener({self._listener!r}, read_timeout={self._read_timeout}, "
            f"write_timeout={self._write_timeout})"
        )
