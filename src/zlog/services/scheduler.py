"""Tickers that drive recurring background work.

A ticker decides *when* the next cycle of a worker runs; the worker only
loops ``while await ticker.tick()``. Production uses :class:`IntervalTicker`
(wall-clock interval with an initial delay); tests use :class:`ManualTicker`
to release cycles one at a time without sleeping.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Protocol


class CancellationToken:
    """One-shot cancellation signal shared by a worker and its ticker."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait until cancelled or ``timeout`` elapses; return ``cancelled``."""
        if timeout is None:
            await self._event.wait()
            return True
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        return self.cancelled


class Ticker(Protocol):
    """Source of cycle start signals."""

    async def tick(self, token: CancellationToken) -> bool:
        """Block until the next cycle is due; return False once cancelled."""
        ...


class IntervalTicker:
    """Fires after ``initial_delay`` seconds and then every ``interval`` seconds."""

    def __init__(self, interval: float, initial_delay: float = 0.0) -> None:
        self.interval = max(0.1, float(interval))
        self.initial_delay = max(0.0, float(initial_delay))
        self._first = True

    async def tick(self, token: CancellationToken) -> bool:
        delay = self.initial_delay if self._first else self.interval
        self._first = False
        if token.cancelled:
            return False
        if delay and await token.wait(delay):
            return False
        return not token.cancelled


class ManualTicker:
    """Ticker released explicitly by calling :meth:`release`."""

    def __init__(self) -> None:
        self._pending: asyncio.Queue[None] = asyncio.Queue()
        self.ticks = 0

    def release(self, cycles: int = 1) -> None:
        for _ in range(cycles):
            self._pending.put_nowait(None)

    async def tick(self, token: CancellationToken) -> bool:
        if token.cancelled:
            return False
        getter = asyncio.ensure_future(self._pending.get())
        cancelled = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {getter, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (getter, cancelled):
                if not task.done():
                    task.cancel()
        if getter in done and not token.cancelled:
            self.ticks += 1
            return True
        return False
