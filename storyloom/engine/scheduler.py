"""
Cooperative scheduler for delayed and deferred engine work.

Nothing runs on its own: the host calls ``run_due()`` (normally through
``StoryEngine.tick()``) from its main loop, and every timer whose due time
has passed runs on that call, in (due time, insertion) order.
"""
from __future__ import annotations

import heapq
import itertools
import logging
import time
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class TimerHandle:
    __slots__ = ("callback", "due", "_cancelled", "_done", "label")

    def __init__(self, callback: Callable[[], None], due: float, label: str = "") -> None:
        self.callback = callback
        self.due = due
        self.label = label
        self._cancelled = False
        self._done = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._done

    @property
    def pending(self) -> bool:
        return not (self._cancelled or self._done)

    def cancel(self) -> bool:
        """Cancel the timer. Returns False if it already ran or was cancelled."""
        if not self.pending:
            return False
        self._cancelled = True
        return True

    def __repr__(self) -> str:  # pragma: no cover - debug aid
        state = "cancelled" if self._cancelled else "done" if self._done else "pending"
        return f"<TimerHandle {self.label or self.callback!r} due={self.due:.3f} {state}>"


class Scheduler:
    """
    Single-threaded timer queue.

    Args:
        clock: returns the current time in seconds (default ``time.monotonic``)
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.monotonic
        self._heap: List[Tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()
        self._running = False

    def now(self) -> float:
        return self._clock()

    def call_later(self, delay_ms: float, fn: Callable[[], None], label: str = "") -> TimerHandle:
        due = self._clock() + max(0.0, float(delay_ms)) / 1000.0
        handle = TimerHandle(fn, due, label)
        heapq.heappush(self._heap, (due, next(self._seq), handle))
        return handle

    def call_soon(self, fn: Callable[[], None], label: str = "") -> TimerHandle:
        return self.call_later(0, fn, label)

    def cancel_all(self) -> int:
        count = 0
        for _, _, handle in self._heap:
            if handle.cancel():
                count += 1
        self._heap.clear()
        return count

    def pending(self) -> int:
        return sum(1 for _, _, h in self._heap if h.pending)

    def next_due_in_ms(self) -> Optional[float]:
        """Milliseconds until the next live timer, or None when idle."""
        self._drop_cancelled()
        if not self._heap:
            return None
        return max(0.0, (self._heap[0][0] - self._clock()) * 1000.0)

    def _drop_cancelled(self) -> None:
        while self._heap and not self._heap[0][2].pending:
            heapq.heappop(self._heap)

    def run_due(self, max_tasks: int = 100) -> int:
        """Run due timers. Returns number of callbacks run; nested calls return 0."""
        if self._running:
            return 0

        self._running = True
        count = 0
        now = self._clock()
        # timers added by callbacks wait for the next call
        limit = next(self._seq)
        try:
            while count < max_tasks:
                self._drop_cancelled()
                if not self._heap or self._heap[0][0] > now or self._heap[0][1] > limit:
                    break
                _, _, handle = heapq.heappop(self._heap)
                handle._done = True
                count += 1
                try:
                    handle.callback()
                except Exception:
                    logger.exception(f"Scheduled callback {handle!r} failed")
        finally:
            self._running = False

        return count
