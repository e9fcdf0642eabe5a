"""Cancellable periodic and deferred asyncio tasks."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

LOGGER = logging.getLogger("reveille.timers")

TickCallback = Callable[[], Any]


class PeriodicTask:
    """Run ``callback`` every ``interval`` seconds until cancelled.

    The callback may be sync or async. Returning ``False`` ends the loop; an
    exception is logged and the loop keeps going. ``cancel()`` is synchronous so
    callers can stop the repetition before they yield to the event loop.
    """

    def __init__(
        self,
        callback: TickCallback,
        interval: float,
        *,
        name: str,
        immediate: bool = True,
    ) -> None:
        if interval <= 0:
            raise ValueError("Interval must be positive")
        self._callback = callback
        self.interval = interval
        self.name = name
        self._immediate = immediate
        self._task: asyncio.Task[None] | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self.runs = 0
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def cancel(self) -> None:
        task = self._task
        self._task = None
        if task and not task.done():
            task.cancel()

    async def wait(self) -> None:
        """Wait for the loop to finish on its own (or be cancelled)."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def _run(self) -> None:
        if not self._immediate:
            await asyncio.sleep(self.interval)
        while True:
            try:
                result = self._callback()
                if inspect.isawaitable(result):
                    result = await result
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Periodic task %s failed", self.name)
                result = None
            self.runs += 1
            if result is False:
                return
            await asyncio.sleep(self.interval)


class DeferredCalls:
    """A group of ``loop.call_later`` handles that can be cancelled together."""

    def __init__(self) -> None:
        self._handles: set[asyncio.TimerHandle] = set()

    @property
    def pending(self) -> int:
        return len(self._handles)

    def schedule(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        handle: asyncio.TimerHandle

        def _fire() -> None:
            self._handles.discard(handle)
            callback(*args)

        handle = asyncio.get_running_loop().call_later(delay, _fire)
        self._handles.add(handle)
        return handle

    def cancel_all(self) -> int:
        cancelled = len(self._handles)
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        return cancelled
