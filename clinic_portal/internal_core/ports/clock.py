from __future__ import annotations

import heapq
import itertools
import threading
import time
from typing import Callable, List, Tuple

from .base import Clock, TimerHandle


class _ThreadingTimerHandle(TimerHandle):
    def __init__(self, timer: threading.Timer):
        self._timer = timer
        self._fired = threading.Event()

    def mark_fired(self) -> None:
        self._fired.set()

    def cancel(self) -> None:
        self._timer.cancel()

    @property
    def pending(self) -> bool:
        return self._timer.is_alive() and not self._timer.finished.is_set() and not self._fired.is_set()


class ThreadingClock(Clock):
    """Real clock: callbacks run on daemon ``threading.Timer`` threads."""

    def now(self) -> float:
        return time.time()

    def call_later(self, delay_sec: float, callback: Callable[[], None]) -> TimerHandle:
        handle: _ThreadingTimerHandle

        def _run() -> None:
            handle.mark_fired()
            callback()

        timer = threading.Timer(max(0.0, float(delay_sec)), _run)
        timer.daemon = True
        handle = _ThreadingTimerHandle(timer)
        timer.start()
        return handle


class _ManualTimerHandle(TimerHandle):
    def __init__(self, due: float):
        self.due = due
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def pending(self) -> bool:
        return not self.cancelled and not self.fired


class ManualClock(Clock):
    """Deterministic clock for tests; time only moves on ``advance``."""

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = float(start)
        self._seq = itertools.count()
        self._queue: List[Tuple[float, int, _ManualTimerHandle, Callable[[], None]]] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay_sec: float, callback: Callable[[], None]) -> TimerHandle:
        handle = _ManualTimerHandle(self._now + max(0.0, float(delay_sec)))
        heapq.heappush(self._queue, (handle.due, next(self._seq), handle, callback))
        return handle

    def pending_count(self) -> int:
        return sum(1 for _, _, handle, _ in self._queue if handle.pending)

    def advance(self, seconds: float) -> int:
        """Move time forward, firing due callbacks in order. Returns how many fired."""
        target = self._now + max(0.0, float(seconds))
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._queue)
            if not handle.pending:
                continue
            self._now = due
            handle.fired = True
            callback()
            fired += 1
        self._now = target
        return fired
