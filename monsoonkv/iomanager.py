"""I/O-aware scheduler: runs callbacks or fibers when descriptors become ready or timers fire."""

from __future__ import annotations

import logging
import os
import selectors
import threading
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any, Callable, Dict, Optional

from .fiber import Fiber, FiberState, current_fiber
from .scheduler import Scheduler, current_scheduler
from .thread import RWLock
from .timer import Timer, TimerManager

log = logging.getLogger(__name__)

# Longest a single wait for readiness may last, in milliseconds.
_MAX_TIMEOUT_MS = 5000
_TICKLE_READ_SIZE = 256


class Event(IntFlag):
    NONE = 0x0
    READ = 0x1
    WRITE = 0x4


def _to_mask(events: int) -> int:
    mask = 0
    if events & Event.READ:
        mask |= selectors.EVENT_READ
    if events & Event.WRITE:
        mask |= selectors.EVENT_WRITE
    return mask


@dataclass
class _EventContext:
    scheduler: Optional[Scheduler] = None
    fiber: Optional[Fiber] = None
    cb: Optional[Callable[[], Any]] = None

    @property
    def empty(self) -> bool:
        return self.scheduler is None and self.fiber is None and self.cb is None

    def clear(self) -> None:
        self.scheduler = None
        self.fiber = None
        self.cb = None


@dataclass
class _FdContext:
    fd: int
    events: Event = Event.NONE
    read: _EventContext = field(default_factory=_EventContext)
    write: _EventContext = field(default_factory=_EventContext)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def context_for(self, event: Event) -> _EventContext:
        if event == Event.READ:
            return self.read
        if event == Event.WRITE:
            return self.write
        raise ValueError(f"unknown event: {event!r}")

    def trigger(self, event: Event) -> None:
        """Hand the waiting callback or fiber to its scheduler; caller holds ``lock``."""
        if not self.events & event:
            raise RuntimeError(f"event {event.name} is not registered on fd {self.fd}")
        self.events = Event(self.events & ~int(event))
        ctx = self.context_for(event)
        scheduler = ctx.scheduler
        task = ctx.cb if ctx.cb is not None else ctx.fiber
        ctx.clear()
        if scheduler is not None and task is not None:
            scheduler.schedule(task)


class IOManager(Scheduler):
    """A scheduler whose idle threads wait for descriptor readiness and timers."""

    def __init__(self, threads: int = 1, use_caller: bool = True, name: str = "IOManager") -> None:
        super().__init__(threads, use_caller, name)
        self._selector = selectors.DefaultSelector()
        self._tickle_r, self._tickle_w = os.pipe()
        os.set_blocking(self._tickle_r, False)
        os.set_blocking(self._tickle_w, False)
        self._selector.register(self._tickle_r, selectors.EVENT_READ, None)
        self._contexts: Dict[int, _FdContext] = {}
        self._contexts_lock = RWLock()
        self._pending = 0
        self._pending_lock = threading.Lock()
        self._closed = False
        self._timers = TimerManager(on_front=self.on_timer_inserted_at_front)
        self.start()

    @property
    def pending_event_count(self) -> int:
        """Number of registered events that have not fired yet."""
        with self._pending_lock:
            return self._pending

    def _add_pending(self, delta: int) -> None:
        with self._pending_lock:
            self._pending += delta

    def _context(self, fd: int, create: bool) -> Optional[_FdContext]:
        with self._contexts_lock.read_lock():
            ctx = self._contexts.get(fd)
        if ctx is None and create:
            with self._contexts_lock.write_lock():
                ctx = self._contexts.setdefault(fd, _FdContext(fd))
        return ctx

    def _apply(self, fd: int, old: int, new: int, ctx: _FdContext) -> None:
        """Bring the selector registration of ``fd`` from ``old`` to ``new`` events."""
        try:
            if old and new:
                self._selector.modify(fd, _to_mask(new), ctx)
            elif new:
                self._selector.register(fd, _to_mask(new), ctx)
            elif old:
                self._selector.unregister(fd)
        except (KeyError, ValueError, OSError) as exc:
            raise OSError(f"cannot update readiness watch for fd {fd}: {exc}") from exc

    # Timer access -------------------------------------------------------

    def add_timer(self, ms: int, cb: Callable[[], Any], recurring: bool = False) -> Timer:
        """Schedule ``cb`` to run after ``ms`` milliseconds."""
        return self._timers.add_timer(ms, lambda: self.schedule(cb), recurring)

    def add_condition_timer(
        self, ms: int, cb: Callable[[], Any], cond: Any, recurring: bool = False
    ) -> Timer:
        """Like add_timer, but ``cb`` only runs while ``cond`` is still alive."""
        return self._timers.add_condition_timer(ms, cb, cond, recurring)

    def has_timer(self) -> bool:
        return self._timers.has_timer()

    # Events -------------------------------------------------------------

    def add_event(self, fd: int, event: Event, cb: Optional[Callable[[], Any]] = None) -> None:
        """Wait for ``event`` on ``fd``; run ``cb`` or, without one, resume the calling fiber."""
        if fd < 0:
            raise ValueError(f"invalid descriptor: {fd}")
        event = Event(event)
        if event not in (Event.READ, Event.WRITE):
            raise ValueError(f"event must be READ or WRITE, not {event!r}")
        ctx = self._context(fd, create=True)
        assert ctx is not None
        with ctx.lock:
            if ctx.events & event:
                raise RuntimeError(f"event {event.name} already registered on fd {fd}")
            event_ctx = ctx.context_for(event)
            if not event_ctx.empty:
                raise RuntimeError(f"stale {event.name} context on fd {fd}")
            fiber = None
            if cb is None:
                fiber = current_fiber()
                if fiber.state is not FiberState.RUNNING:
                    raise RuntimeError(f"waiting fiber in state {fiber.state.name}")
            new_events = ctx.events | event
            self._apply(fd, ctx.events, new_events, ctx)
            self._add_pending(1)
            ctx.events = Event(new_events)
            event_ctx.scheduler = current_scheduler() or self
            event_ctx.cb = cb
            event_ctx.fiber = fiber
        log.debug("add event success,fd = %d", fd)

    def del_event(self, fd: int, event: Event) -> bool:
        """Forget ``event`` on ``fd`` without running its waiter."""
        ctx = self._context(fd, create=False)
        if ctx is None:
            return False
        with ctx.lock:
            if not ctx.events & event:
                return False
            new_events = Event(ctx.events & ~int(event))
            try:
                self._apply(fd, ctx.events, new_events, ctx)
            except OSError:
                log.warning("delevent: cannot update fd %d", fd)
                return False
            self._add_pending(-1)
            ctx.events = new_events
            ctx.context_for(Event(event)).clear()
            return True

    def cancel_event(self, fd: int, event: Event) -> bool:
        """Stop waiting for ``event`` on ``fd`` and run its waiter now."""
        ctx = self._context(fd, create=False)
        if ctx is None:
            return False
        with ctx.lock:
            if not ctx.events & event:
                return False
            new_events = Event(ctx.events & ~int(event))
            try:
                self._apply(fd, ctx.events, new_events, ctx)
            except OSError:
                log.warning("cancelevent: cannot update fd %d", fd)
                return False
            ctx.trigger(Event(event))
            self._add_pending(-1)
            return True

    def cancel_all(self, fd: int) -> bool:
        """Stop every wait on ``fd`` and run all of their waiters now."""
        ctx = self._context(fd, create=False)
        if ctx is None:
            return False
        with ctx.lock:
            if not ctx.events:
                return False
            try:
                self._apply(fd, ctx.events, Event.NONE, ctx)
            except OSError:
                log.warning("cancelall: cannot update fd %d", fd)
                return False
            for event in (Event.READ, Event.WRITE):
                if ctx.events & event:
                    ctx.trigger(event)
                    self._add_pending(-1)
            if ctx.events:
                raise RuntimeError(f"fd {fd} not totally cleared")
            return True

    # Scheduling hooks ---------------------------------------------------

    def tickle(self) -> None:
        """Wake a thread blocked waiting for readiness."""
        if not self.has_idle_threads():
            return
        try:
            os.write(self._tickle_w, b"T")
        except BlockingIOError:
            pass  # the pipe is already full, so a wake-up is pending anyway

    def stopping(self) -> bool:
        return self._stopping_with(self._timers.get_next_timer())

    def _stopping_with(self, next_timeout: Optional[int]) -> bool:
        return next_timeout is None and self.pending_event_count == 0 and super().stopping()

    def on_timer_inserted_at_front(self) -> None:
        self.tickle()

    def _drain_tickle(self) -> None:
        try:
            while os.read(self._tickle_r, _TICKLE_READ_SIZE):
                pass
        except BlockingIOError:
            pass

    def idle(self) -> None:
        """Wait for readiness or timers, queue what became runnable, then yield."""
        while True:
            next_timeout = self._timers.get_next_timer()
            if self._stopping_with(next_timeout):
                log.debug("name=%s idle stopping exit", self.name)
                break
            wait_ms = _MAX_TIMEOUT_MS if next_timeout is None else min(next_timeout, _MAX_TIMEOUT_MS)
            try:
                ready = self._selector.select(wait_ms / 1000)
            except OSError as exc:
                log.warning("select failed: %s", exc)
                ready = []

            for cb in self._timers.list_expired_callbacks():
                cb()

            for key, mask in ready:
                if key.data is None:
                    self._drain_tickle()
                    continue
                ctx: _FdContext = key.data
                with ctx.lock:
                    real = Event.NONE
                    if mask & selectors.EVENT_READ:
                        real |= Event.READ
                    if mask & selectors.EVENT_WRITE:
                        real |= Event.WRITE
                    real = Event(real & ctx.events)
                    if not real:
                        continue
                    left = Event(ctx.events & ~int(real))
                    try:
                        self._apply(ctx.fd, ctx.events, left, ctx)
                    except OSError as exc:
                        log.warning("cannot update fd %d: %s", ctx.fd, exc)
                        continue
                    for event in (Event.READ, Event.WRITE):
                        if real & event:
                            ctx.trigger(event)
                            self._add_pending(-1)
            current_fiber().yield_()

    # Lifetime -----------------------------------------------------------

    def close(self) -> None:
        """Run everything still pending, stop the threads and release the descriptors."""
        if self._closed:
            return
        self.stop()
        self._closed = True
        self._selector.close()
        os.close(self._tickle_r)
        os.close(self._tickle_w)

    def __enter__(self) -> "IOManager":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def current_io_manager() -> Optional[IOManager]:
    """The IOManager the calling thread works for, or None."""
    scheduler = current_scheduler()
    return scheduler if isinstance(scheduler, IOManager) else None