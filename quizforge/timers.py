"""Local deadlines for provider calls.

A provider's own timeout is not guaranteed to fire promptly, so every attempt
races the call against a CancellableTimer on the event loop. SettleOnce makes
the two outcomes mutually exclusive: the first to settle wins, the loser is
ignored, and race_with_timeout always releases the loser (the timer is
cancelled on every exit path; a still-running call is cancelled after a
timeout).
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from quizforge.errors import GenerationTimeoutError

log = logging.getLogger(__name__)

T = TypeVar("T")


class CancellableTimer:
    """One-shot ``loop.call_later`` wrapper that knows whether it fired."""

    def __init__(
        self,
        delay: float,
        callback: Callable[[], Any],
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._callback = callback
        self._fired = False
        self._cancelled = False
        self._handle = self._loop.call_later(max(0.0, float(delay)), self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        self._fired = True
        self._callback()

    def cancel(self) -> bool:
        """Stop the timer; returns False if it already fired or was cancelled."""
        if self._fired or self._cancelled:
            return False
        self._cancelled = True
        self._handle.cancel()
        return True

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pending(self) -> bool:
        return not (self._fired or self._cancelled)


class SettleOnce(Generic[T]):
    """A result slot that accepts exactly one outcome; later ones are dropped."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._future: asyncio.Future = (loop or asyncio.get_running_loop()).create_future()

    @property
    def settled(self) -> bool:
        return self._future.done()

    def resolve(self, value: T) -> bool:
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def reject(self, exc: BaseException) -> bool:
        if self._future.done():
            return False
        self._future.set_exception(exc)
        return True

    def cancel(self) -> bool:
        return self._future.cancel()

    async def wait(self) -> T:
        return await self._future


def _retrieve(task: asyncio.Future) -> None:
    # Mark a finished task's exception as seen so asyncio does not warn about it
    if task.done() and not task.cancelled():
        exc = task.exception()
        if exc is not None:
            log.debug("timers: dropped late outcome %r", exc)


async def race_with_timeout(
    awaitable: Awaitable[T],
    timeout: float,
    *,
    label: str = "request",
    timer_factory: Callable[..., CancellableTimer] = CancellableTimer,
) -> T:
    """Await ``awaitable`` but give up after ``timeout`` seconds.

    Raises GenerationTimeoutError when the local timer wins. Whatever the
    awaitable raises is re-raised unchanged when it wins.
    """
    loop = asyncio.get_running_loop()
    outcome: SettleOnce[T] = SettleOnce(loop)
    task = asyncio.ensure_future(awaitable)

    def _on_done(t: asyncio.Future) -> None:
        if t.cancelled():
            outcome.cancel()
            return
        exc = t.exception()
        if exc is not None:
            outcome.reject(exc)
        else:
            outcome.resolve(t.result())

    def _on_timeout() -> None:
        if outcome.reject(GenerationTimeoutError(timeout, label)):
            log.info("timers: %s deadline hit after %.2fs", label, timeout)

    task.add_done_callback(_on_done)
    timer = timer_factory(timeout, _on_timeout, loop=loop)
    try:
        return await outcome.wait()
    finally:
        timer.cancel()
        task.remove_done_callback(_on_done)
        if not task.done():
            task.cancel()
        else:
            _retrieve(task)
