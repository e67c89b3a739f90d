"""Cooperative cancellation tokens for long-running async work.

A token is created per job and passed through every layer. Tokens can be
linked: cancelling a parent cancels all of its children, while a child can be
cancelled on its own (this is how the watchdog stops a job without involving
the caller).
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from archrag.errors import OperationCancelledError

T = TypeVar("T")


class CancellationToken:
    """Cancellation signal backed by an ``asyncio.Event``."""

    def __init__(self, parent: CancellationToken | None = None):
        """Initialize token.

        Args:
            parent: Optional token whose cancellation propagates to this one
        """
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[str], None]] = []
        self._reason: str | None = None
        self._parent: CancellationToken | None = None

        if parent is not None:
            if parent.cancelled:
                self.cancel(parent.reason or "Parent token cancelled")
            else:
                parent.register(self.cancel)
                self._parent = parent

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "Operation was cancelled") -> None:
        """Cancel the token and every token linked to it."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)

    def register(self, callback: Callable[[str], None]) -> None:
        """Run ``callback(reason)`` on cancellation (immediately if already cancelled)."""
        if self.cancelled:
            callback(self._reason or "Operation was cancelled")
            return
        self._callbacks.append(callback)

    def unregister(self, callback: Callable[[str], None]) -> None:
        """Drop a callback added with ``register``; unknown callbacks are ignored."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def detach(self) -> None:
        """Unlink from the parent so a finished child is not kept alive by it."""
        if self._parent is not None:
            self._parent.unregister(self.cancel)
            self._parent = None

    def linked(self) -> CancellationToken:
        """Create a child token linked to this one."""
        return CancellationToken(parent=self)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelledError(self._reason or "Operation was cancelled")

    async def wait_for(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token is cancelled first.

        On cancellation the pending awaitable is cancelled and
        ``OperationCancelledError`` is raised.
        """
        self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        # Let the cancelled task unwind before reporting.
        await asyncio.gather(task, return_exceptions=True)
        raise OperationCancelledError(self._reason or "Operation was cancelled")

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds``, waking immediately if cancelled."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()


async def run_cancellable(
    awaitable: Awaitable[T], cancel_token: CancellationToken | None
) -> T:
    """Await ``awaitable`` under ``cancel_token`` when one is given."""
    if cancel_token is None:
        return await awaitable
    return await cancel_token.wait_for(awaitable)


async def cancellable_sleep(
    seconds: float, cancel_token: CancellationToken | None
) -> None:
    if cancel_token is None:
        await asyncio.sleep(seconds)
    else:
        await cancel_token.sleep(seconds)
