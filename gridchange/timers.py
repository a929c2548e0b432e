# gridchange/timers.py

import threading
from typing import Callable, Protocol


class ScheduledCall(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall: ...


class ThreadingScheduler:
    """Runs callbacks on daemon `threading.Timer` threads."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


class BlinkTask:
    """
    Attention animation for one overlay: after `delay`, alternate between
    `low` and `high` every `tick` seconds for 2*times ticks, then hold
    `settle`. Cancelling stops any further style change.
    """

    def __init__(self, scheduler: Scheduler, apply: Callable[[float], None],
                 times: int, settle: float, delay: float,
                 tick: float, low: float, high: float):
        self.scheduler = scheduler
        self.apply = apply
        self.times = max(int(times), 0)
        self.settle = settle
        self.delay = delay
        self.tick = tick
        self.low = low
        self.high = high

        self.count = 0
        self.cancelled = False
        self.finished = False
        self._pending = None
        self._lock = threading.RLock()

    def start(self) -> "BlinkTask":
        with self._lock:
            self._pending = self.scheduler.call_later(self.delay, self._begin)
        return self

    def _begin(self) -> None:
        with self._lock:
            if self.cancelled:
                return
            if self.times == 0:
                self._finish()
                return
            self._pending = self.scheduler.call_later(self.tick, self._step)

    def _step(self) -> None:
        with self._lock:
            if self.cancelled:
                return
            self.apply(self.low if self.count % 2 == 0 else self.high)
            self.count += 1
            if self.count >= self.times * 2:
                self._finish()
                return
            self._pending = self.scheduler.call_later(self.tick, self._step)

    def _finish(self) -> None:
        self.apply(self.settle)
        self.finished = True
        self._pending = None

    @property
    def running(self) -> bool:
        return not (self.cancelled or self.finished)

    def cancel(self) -> None:
        with self._lock:
            self.cancelled = True
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None
