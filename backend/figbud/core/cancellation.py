"""
Cooperative cancellation for in-flight provider calls.

Parallel and race strategies hand every attempt its own token. When a winner
is found the strategy cancels the remaining tokens; the query executor
checks its token before issuing a request and races the network call
against the token, so a cancelled attempt stops at its next I/O boundary
instead of being torn down from outside.
"""
import asyncio
from typing import Any, Awaitable, Optional, TypeVar

T = TypeVar("T")


class RequestCancelled(Exception):
    """Raised when a call is abandoned because its token was cancelled."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(reason)
        self.reason = reason


class CancellationToken:
    """Single-use cancellation flag for one provider attempt."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation. Idempotent; the first reason wins."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled(self._reason or "cancelled")

    async def sleep(self, delay: float) -> bool:
        """
        Sleep for ``delay`` seconds unless cancelled first.

        Returns:
            True if the token was cancelled before the delay elapsed
        """
        if delay <= 0:
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the token is cancelled first.

        On cancellation the underlying task is cancelled and drained, then
        RequestCancelled is raised. If both finish together the completed
        result wins.
        """
        self.raise_if_cancelled()

        task: "asyncio.Future[Any]" = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        waiter.cancel()
        if task.done():
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise RequestCancelled(self._reason or "cancelled")
