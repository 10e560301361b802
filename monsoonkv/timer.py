"""Millisecond timers kept in deadline order by a timer manager."""

from __future__ import annotations

import bisect
import itertools
import threading
import time
import weakref
from typing import Any, Callable, List, Optional

_ROLLOVER_MS = 60 * 60 * 1000


def get_elapsed_ms() -> int:
    """Milliseconds on the monotonic clock."""
    return time.monotonic_ns() // 1_000_000


def _order(timer: "Timer") -> tuple:
    return (timer._deadline, timer._seq)


def _deadline_of(timer: "Timer") -> int:
    return timer._deadline


class Timer:
    """A one-shot or recurring timer owned by a TimerManager."""

    __slots__ = ("_recurring", "_interval", "_deadline", "_callback", "_manager", "_seq")

    def __init__(
        self,
        manager: "TimerManager",
        ms: int,
        cb: Callable[[], Any],
        recurring: bool,
        seq: int,
    ) -> None:
        self._manager = manager
        self._recurring = recurring
        self._interval = ms
        self._callback: Optional[Callable[[], Any]] = cb
        self._seq = seq
        self._deadline = manager._clock() + ms

    @property
    def interval_ms(self) -> int:
        return self._interval

    @property
    def deadline_ms(self) -> int:
        return self._deadline

    @property
    def recurring(self) -> bool:
        return self._recurring

    @property
    def active(self) -> bool:
        return self._callback is not None

    def cancel(self) -> bool:
        """Stop the timer; False if it had already fired or been cancelled."""
        manager = self._manager
        with manager._lock:
            if self._callback is None:
                return False
            self._callback = None
            manager._remove(self)
            return True

    def refresh(self) -> bool:
        """Restart the current interval from now."""
        manager = self._manager
        with manager._lock:
            if self._callback is None or not manager._remove(self):
                return False
            self._deadline = manager._clock() + self._interval
            manager._insert(self)
            return True

    def reset(self, ms: int, from_now: bool) -> bool:
        """Change the interval, counting from now or from the last start."""
        if ms == self._interval and not from_now:
            return True
        manager = self._manager
        with manager._lock:
            if self._callback is None:
                return True
            if not manager._remove(self):
                return False
            start = manager._clock() if from_now else self._deadline - self._interval
            self._interval = ms
            self._deadline = start + ms
            at_front = manager._add_locked(self)
        if at_front:
            manager.on_timer_inserted_at_front()
        return True

    def __repr__(self) -> str:
        return (
            f"Timer(interval_ms={self._interval}, deadline_ms={self._deadline}, "
            f"recurring={self._recurring}, active={self.active})"
        )


class TimerManager:
    """Holds timers ordered by deadline and hands out the callbacks that are due."""

    def __init__(
        self,
        on_front: Optional[Callable[[], Any]] = None,
        clock: Callable[[], int] = get_elapsed_ms,
    ) -> None:
        self._lock = threading.Lock()
        self._timers: List[Timer] = []
        self._tickled = False
        self._clock = clock
        self._on_front = on_front
        self._seq = itertools.count()
        self._previous_time = clock()

    def on_timer_inserted_at_front(self) -> None:
        """Called when a new timer becomes the earliest one; runs ``on_front`` if given."""
        if self._on_front is not None:
            self._on_front()

    def add_timer(self, ms: int, cb: Callable[[], Any], recurring: bool = False) -> Timer:
        timer = Timer(self, ms, cb, recurring, next(self._seq))
        with self._lock:
            at_front = self._add_locked(timer)
        if at_front:
            self.on_timer_inserted_at_front()
        return timer

    def add_condition_timer(
        self,
        ms: int,
        cb: Callable[[], Any],
        cond: Any,
        recurring: bool = False,
    ) -> Timer:
        """Add a timer whose callback only runs while ``cond`` is still alive."""
        ref = cond if isinstance(cond, weakref.ReferenceType) else weakref.ref(cond)

        def _on_timer() -> None:
            if ref() is not None:
                cb()

        return self.add_timer(ms, _on_timer, recurring)

    def get_next_timer(self) -> Optional[int]:
        """Milliseconds until the earliest deadline, 0 if overdue, None if there is none."""
        with self._lock:
            self._tickled = False
            if not self._timers:
                return None
            now_ms = self._clock()
            deadline = self._timers[0]._deadline
            return 0 if now_ms >= deadline else deadline - now_ms

    def list_expired_callbacks(self) -> List[Callable[[], Any]]:
        """Take the callbacks of all due timers; recurring ones are rescheduled."""
        now_ms = self._clock()
        with self._lock:
            if not self._timers:
                return []
            rollover = self._detect_clock_rollover(now_ms)
            if not rollover and self._timers[0]._deadline > now_ms:
                return []
            if rollover:
                cut = len(self._timers)
            else:
                cut = bisect.bisect_right(self._timers, now_ms, key=_deadline_of)
            expired = self._timers[:cut]
            del self._timers[:cut]

            callbacks = []
            for timer in expired:
                callbacks.append(timer._callback)
                if timer._recurring:
                    timer._deadline = now_ms + timer._interval
                    self._insert(timer)
                else:
                    timer._callback = None
            return callbacks

    def has_timer(self) -> bool:
        with self._lock:
            return bool(self._timers)

    def _insert(self, timer: Timer) -> int:
        idx = bisect.bisect_right(self._timers, _order(timer), key=_order)
        self._timers.insert(idx, timer)
        return idx

    def _add_locked(self, timer: Timer) -> bool:
        at_front = self._insert(timer) == 0 and not self._tickled
        if at_front:
            self._tickled = True
        return at_front

    def _remove(self, timer: Timer) -> bool:
        idx = bisect.bisect_left(self._timers, _order(timer), key=_order)
        if idx < len(self._timers) and self._timers[idx] is timer:
            del self._timers[idx]
            return True
        return False

    def _detect_clock_rollover(self, now_ms: int) -> bool:
        rollover = now_ms < self._previous_time and now_ms < self._previous_time - _ROLLOVER_MS
        self._previous_time = now_ms
        return rollover