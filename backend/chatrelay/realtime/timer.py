"""Cancellable timers on the asyncio event loop.

Callbacks may be plain functions or coroutine functions. Coroutines are run
as tasks on the loop that armed the timer; their exceptions are logged and
never propagate into the loop.
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Set

logger = logging.getLogger(__name__)

Callback = Callable[[], Any]


class CancellableTimer:
    """One-shot timer: ``arm(delay, on_fire)`` and ``cancel()``.

    Arming while already armed replaces the pending fire, so there is never
    more than one outstanding callback per timer.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def arm(self, delay: float, on_fire: Callback) -> None:
        self.cancel()
        self._handle = self._get_loop().call_later(delay, self._fire, on_fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, on_fire: Callback) -> None:
        self._handle = None
        self._run(on_fire)

    def _run(self, callback: Callback) -> None:
        try:
            result = callback()
        except Exception:
            logger.exception("[Timer] Callback failed")
            return
        if inspect.isawaitable(result):
            task = self._get_loop().create_task(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[Timer] Callback task failed: %s", exc, exc_info=exc)


class RepeatingTimer(CancellableTimer):
    """Fixed-rate timer: ticks at start + n * interval until cancelled.

    Ticks are scheduled against the original start time, so a slow callback
    does not shift later ticks.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        super().__init__(loop)
        self._interval = 0.0
        self._next_at = 0.0

    def start(self, interval: float, on_tick: Callback) -> None:
        self.cancel()
        loop = self._get_loop()
        self._interval = interval
        self._next_at = loop.time() + interval
        self._handle = loop.call_at(self._next_at, self._tick, on_tick)

    def _tick(self, on_tick: Callback) -> None:
        self._next_at += self._interval
        self._handle = self._get_loop().call_at(self._next_at, self._tick, on_tick)
        self._run(on_tick)
