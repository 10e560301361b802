"""Stackful coroutines.

Each fiber runs its callback on a carrier thread of its own, and control is
handed back and forth so that only the resumer or the fiber runs at a time.
"""

from __future__ import annotations

import itertools
import logging
import threading
import weakref
from enum import Enum
from typing import Any, Callable, Optional

from .thread import _adopt_context, _current_context, _ThreadContext

log = logging.getLogger(__name__)

DEFAULT_STACK_SIZE = 128 * 1024

_local = threading.local()
_counter_lock = threading.Lock()
_ids = itertools.count()
_live = 0


def _register() -> int:
    global _live
    with _counter_lock:
        _live += 1
        return next(_ids)


def _unregister() -> None:
    global _live
    with _counter_lock:
        _live -= 1


class FiberState(Enum):
    READY = "READY"
    RUNNING = "RUNNING"
    TERM = "TERM"


class Fiber:
    """A coroutine that can give control back from anywhere in its call stack."""

    def __init__(
        self,
        cb: Callable[[], Any],
        stack_size: int = 0,
        run_in_scheduler: bool = True,
    ) -> None:
        if not callable(cb):
            raise TypeError("fiber callback must be callable")
        self._setup(cb, stack_size if stack_size > 0 else DEFAULT_STACK_SIZE, run_in_scheduler, False)

    @classmethod
    def _new_main(cls) -> "Fiber":
        fiber = cls.__new__(cls)
        fiber._setup(None, 0, False, True)
        fiber._state = FiberState.RUNNING
        log.debug("[fiber] create fiber , id = %d", fiber._id)
        return fiber

    def _setup(
        self,
        cb: Optional[Callable[[], Any]],
        stack_size: int,
        run_in_scheduler: bool,
        is_main: bool,
    ) -> None:
        self._id = _register()
        weakref.finalize(self, _unregister)
        self._cb = cb
        self._stack_size = stack_size
        self._run_in_scheduler = run_in_scheduler
        self._is_main = is_main
        self._state = FiberState.READY
        self._wake = threading.Semaphore(0)
        self._resumer: Optional[Fiber] = None
        self._context: Optional[_ThreadContext] = None
        self._carrier: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None

    @property
    def id(self) -> int:
        return self._id

    @property
    def state(self) -> FiberState:
        return self._state

    @property
    def stack_size(self) -> int:
        return self._stack_size

    @property
    def run_in_scheduler(self) -> bool:
        return self._run_in_scheduler

    @property
    def is_main(self) -> bool:
        return self._is_main

    def resume(self) -> None:
        """Run the fiber until it yields or finishes; re-raise what its callback raised."""
        if self._state is not FiberState.READY:
            raise RuntimeError(f"cannot resume fiber {self._id} in state {self._state.name}")
        caller = current_fiber()
        self._resumer = caller
        self._context = _current_context()
        self._state = FiberState.RUNNING
        if self._carrier is None:
            self._carrier = threading.Thread(
                target=self._bootstrap, name=f"fiber-{self._id}", daemon=True
            )
            self._carrier.start()
        else:
            self._wake.release()
        caller._wake.acquire()
        if self._error is not None:
            error, self._error = self._error, None
            raise error

    def yield_(self) -> None:
        """Hand control back to whoever resumed this fiber."""
        if getattr(_local, "fiber", None) is not self:
            raise RuntimeError("a fiber can only yield from inside itself")
        if self._is_main or self._resumer is None:
            raise RuntimeError("a thread's main fiber cannot yield")
        self._state = FiberState.READY
        resumer, self._resumer = self._resumer, None
        resumer._wake.release()
        self._wake.acquire()
        if self._context is not None:
            _adopt_context(self._context)

    def reset(self, cb: Callable[[], Any]) -> None:
        """Reuse a finished fiber for a new callback."""
        if self._is_main:
            raise RuntimeError("a thread's main fiber cannot be reset")
        if self._state is not FiberState.TERM:
            raise RuntimeError(f"cannot reset fiber {self._id} in state {self._state.name}")
        if not callable(cb):
            raise TypeError("fiber callback must be callable")
        self._cb = cb
        self._error = None
        self._state = FiberState.READY

    def _bootstrap(self) -> None:
        _local.fiber = self
        if self._context is not None:
            _adopt_context(self._context)
        try:
            cb = self._cb
            if cb is not None:
                cb()
        except BaseException as exc:  # handed to resume()
            self._error = exc
        finally:
            self._cb = None
            self._state = FiberState.TERM
            self._carrier = None
            resumer, self._resumer = self._resumer, None
            if resumer is not None:
                resumer._wake.release()

    def __repr__(self) -> str:
        kind = "main" if self._is_main else "child"
        return f"Fiber(id={self._id}, {kind}, state={self._state.name})"


def current_fiber() -> Fiber:
    """The fiber running the caller; creates the thread's main fiber if needed."""
    fiber = getattr(_local, "fiber", None)
    if fiber is None:
        fiber = Fiber._new_main()
        _local.fiber = fiber
    return fiber


def total_fiber_count() -> int:
    """Number of fiber objects currently alive."""
    return _live