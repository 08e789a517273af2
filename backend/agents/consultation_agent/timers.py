"""
timers.py - Cancellable deferred calls for the SessionController.

The controller only needs "run this callback after N time units" and "cancel it".
LoopScheduler maps that onto asyncio's loop.call_later(); tests substitute a
virtual clock implementing the same Scheduler protocol.
"""
import asyncio
from typing import Callable, Optional, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """
    Scheduler backed by the running asyncio event loop.

    The loop is resolved lazily on first use so the scheduler can be created
    outside async context (e.g. in lifespan setup or at import time).
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)
