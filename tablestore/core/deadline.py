"""
Caller-supplied deadlines and cancellation.

A `Deadline` combines an absolute expiry on the monotonic clock with an
optional `asyncio.Event` the caller can set to cancel. Single-item calls
are bounded with `within()`; batch and paginated loops check
`Deadline.cancelled()` before each chunk or page and stop early.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from tablestore.core.errors import DeadlineExceededError, OperationCancelledError


class Deadline:
    """
    Expiry and/or cancellation signal for one caller operation.

    Args:
        expires_at: Absolute expiry on `clock` (None: no time limit)
        cancel_event: Event the caller sets to cancel (None: not cancellable)
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        expires_at: float | None = None,
        cancel_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.expires_at = expires_at
        self.cancel_event = cancel_event
        self._clock = clock

    @classmethod
    def after(
        cls,
        seconds: float,
        cancel_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "Deadline":
        return cls(expires_at=clock() + seconds, cancel_event=cancel_event, clock=clock)

    def cancel(self) -> None:
        if self.cancel_event is None:
            self.cancel_event = asyncio.Event()
        self.cancel_event.set()

    def remaining(self) -> float | None:
        """Seconds left before expiry, never negative; None without a time limit."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def cancelled(self) -> bool:
        """True once the caller cancelled or the deadline passed."""
        if self.cancel_event is not None and self.cancel_event.is_set():
            return True
        return self.expired()


async def within[T](deadline: Deadline | None, call: Callable[[], Awaitable[T]]) -> T:
    """
    Run one engine call under `deadline`.

    The call is not started when the deadline already passed or the
    caller cancelled. A call interrupted by expiry may still have been
    applied by the engine.

    Raises:
        OperationCancelledError: Cancelled or expired before the call started
        DeadlineExceededError: Expired while the call was in flight
    """
    if deadline is None:
        return await call()
    if deadline.cancelled():
        raise OperationCancelledError(
            "Operation cancelled before it started",
            details={"expired": deadline.expired()},
        )
    try:
        async with asyncio.timeout(deadline.remaining()):
            return await call()
    except TimeoutError as e:
        raise DeadlineExceededError(
            "Deadline exceeded while waiting for the engine",
            details={"expires_at": deadline.expires_at},
        ) from e
