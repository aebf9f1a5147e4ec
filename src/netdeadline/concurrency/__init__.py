"""Deadline and cancellation helpers for netdeadline.

Thin wrappers around AnyIO cancel scopes, so the stream primitives behave the
same on the asyncio and trio backends.
"""

from netdeadline.concurrency.cancel import current_time, deadline_after, fail_at, shield

__all__ = ["current_time", "deadline_after", "fail_at", "shield"]
