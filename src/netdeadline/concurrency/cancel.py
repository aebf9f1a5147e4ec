"""Absolute-deadline cancel scopes."""

import math
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar

import anyio

T = TypeVar("T")


def current_time() -> float:
    """Return the current time on the event loop clock."""
    return anyio.current_time()


def deadline_after(delay: float) -> float:
    """Return the absolute deadline ``delay`` seconds from now."""
    return anyio.current_time() + delay


@contextmanager
def fail_at(
    deadline: Optional[float], make_error: Callable[[float], BaseException]
) -> Iterator[anyio.CancelScope]:
    """Cancel the enclosed block at an absolute deadline and raise instead.

    Unlike ``anyio.fail_after``, the deadline is absolute and the raised
    exception is built by ``make_error`` so callers can report which
    operation timed out.

    Args:
        deadline: Absolute time on the event loop clock, or None for no deadline
        make_error: Called with the deadline to build the exception to raise

    Yields:
        The underlying cancel scope

    Raises:
        The exception returned by ``make_error`` if the deadline elapsed.
    """
    limit = math.inf if deadline is None else deadline
    with anyio.CancelScope(deadline=limit) as scope:
        yield scope
    if scope.cancelled_caught and anyio.current_time() >= limit:
        raise make_error(limit)


async def shield(func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
    """Await ``func(*args, **kwargs)`` in a shielded scope.

    Cleanup such as closing a half-open stream after a failed dial must run
    to completion even when the surrounding task has been cancelled.
    """
    with anyio.CancelScope(shield=True):
        return await func(*args, **kwargs)
