"""Cooperative cancellation of in-flight requests."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Optional, TypeVar

from clickspec.exceptions import QueryCancelledError

__all__ = ("CancellationToken",)

T = TypeVar("T")


class CancellationToken:
    """A one-shot cancellation signal.

    Each command owns its own token, so cancelling it only interrupts the awaitables
    that command passed through :meth:`guard`. Cancelling after the guarded work has
    finished has no effect.
    """

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise QueryCancelledError

    async def guard(
        self, awaitable: "Awaitable[T]", discard: "Optional[Callable[[T], object]]" = None
    ) -> T:
        """Await ``awaitable`` unless the token fires first.

        Args:
            awaitable: The operation to run.
            discard: Called with the operation's result when it completed anyway but
                is not returned because the token won the race, e.g. to release a
                response.

        Raises:
            QueryCancelledError: If the token was or becomes cancelled before the
                operation completes. The operation itself is cancelled.

        Returns:
            The operation's result.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise QueryCancelledError
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            _discard_result(task, discard)
            raise
        if task.done():
            waiter.cancel()
            return task.result()
        task.cancel()
        await asyncio.wait({task})
        _discard_result(task, discard)
        raise QueryCancelledError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(cancelled={self.cancelled})"


def _discard_result(task: "asyncio.Future[T]", discard: "Optional[Callable[[T], object]]") -> None:
    # The task may have finished before cancel() reached it.
    if discard is None or not task.done() or task.cancelled() or task.exception() is not None:
        return
    discard(task.result())
