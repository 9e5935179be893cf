"""PRD-175: Notification Routing & Escalation - Clock & Timers.

Delayed actions and escalation timeouts wait on an injected Clock rather
than on wall-clock sleeps. SystemClock runs timers on threads; VirtualClock
keeps a heap of due callbacks and fires them only when advanced, which makes
timeouts and the resolve/timeout race reproducible in tests.
"""

import heapq
import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

_handle_ids = itertools.count(1)


@dataclass(eq=False)
class TimerHandle:
    """Handle to one scheduled callback."""

    due: datetime
    callback: Callable[[], None] = field(repr=False)
    handle_id: int = field(default_factory=lambda: next(_handle_ids))
    cancelled: bool = False
    fired: bool = False

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.fired)


class Clock(Protocol):
    """Time source and one-shot timer scheduler."""

    def now(self) -> datetime: ...

    def after(self, delay: timedelta, callback: Callable[[], None]) -> TimerHandle: ...

    def cancel(self, handle: TimerHandle) -> bool: ...


class SystemClock:
    """Wall-clock time with one threading.Timer per scheduled callback."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._timers: Dict[int, Tuple[TimerHandle, threading.Timer]] = {}

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def after(self, delay: timedelta, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(due=self.now() + delay, callback=callback)
        timer = threading.Timer(max(0.0, delay.total_seconds()), self._fire, args=(handle,))
        timer.daemon = True
        with self._lock:
            self._timers[handle.handle_id] = (handle, timer)
        timer.start()
        return handle

    def cancel(self, handle: TimerHandle) -> bool:
        with self._lock:
            entry = self._timers.pop(handle.handle_id, None)
            if entry is None or not handle.pending:
                return False
            handle.cancelled = True
        entry[1].cancel()
        return True

    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def shutdown(self) -> int:
        """Cancel every pending timer; returns how many were cancelled."""
        with self._lock:
            entries = list(self._timers.values())
            self._timers.clear()
        for handle, timer in entries:
            handle.cancelled = True
            timer.cancel()
        if entries:
            logger.info("Cancelled %d pending timers", len(entries))
        return len(entries)

    def _fire(self, handle: TimerHandle) -> None:
        with self._lock:
            if self._timers.pop(handle.handle_id, None) is None or handle.cancelled:
                return
            handle.fired = True
        try:
            handle.callback()
        except Exception:
            logger.exception("Timer callback %d failed", handle.handle_id)


class VirtualClock:
    """Deterministic clock whose time only moves when advanced.

    Example:
        clock = VirtualClock()
        clock.after(timedelta(minutes=5), on_timeout)
        clock.advance(timedelta(minutes=5))  # fires on_timeout
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._lock = threading.RLock()
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        # (due, sequence, handle); sequence keeps FIFO order for equal due times
        self._heap: List[Tuple[datetime, int, TimerHandle]] = []
        self._counter = itertools.count()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def after(self, delay: timedelta, callback: Callable[[], None]) -> TimerHandle:
        with self._lock:
            handle = TimerHandle(due=self._now + max(delay, timedelta(0)), callback=callback)
            heapq.heappush(self._heap, (handle.due, next(self._counter), handle))
            return handle

    def cancel(self, handle: TimerHandle) -> bool:
        with self._lock:
            if not handle.pending:
                return False
            handle.cancelled = True
            return True

    def pending(self) -> int:
        with self._lock:
            return sum(1 for _, _, h in self._heap if h.pending)

    def shutdown(self) -> int:
        """Cancel every pending timer; returns how many were cancelled."""
        with self._lock:
            handles = [h for _, _, h in self._heap if h.pending]
            for handle in handles:
                handle.cancelled = True
            self._heap.clear()
        return len(handles)

    def advance(self, delta: timedelta) -> int:
        """Move time forward, firing due callbacks in due-time order.

        Callbacks scheduled while advancing also fire if they fall due
        before the target time.

        Returns:
            Number of callbacks fired.
        """
        with self._lock:
            target = self._now + delta
        fired = 0
        while True:
            with self._lock:
                if not self._heap or self._heap[0][0] > target:
                    self._now = target
                    return fired
                due, _, handle = heapq.heappop(self._heap)
                if not handle.pending:
                    continue
                self._now = max(self._now, due)
                handle.fired = True
            handle.callback()
            fired += 1
