"""Cooperative N:M task scheduler that runs fibers and callbacks on a thread pool."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .fiber import Fiber, FiberState, current_fiber
from .thread import Thread, get_thread_id, set_thread_name

log = logging.getLogger(__name__)

# Longest time an idle fiber waits for work before handing control back.
_IDLE_WAIT_S = 0.05

_registry: Dict[int, "Scheduler"] = {}
_registry_lock = threading.Lock()


def _bind(ident: int, scheduler: "Scheduler") -> None:
    with _registry_lock:
        _registry[ident] = scheduler


def _unbind(ident: int, scheduler: "Scheduler") -> None:
    with _registry_lock:
        if _registry.get(ident) is scheduler:
            del _registry[ident]


def current_scheduler() -> Optional["Scheduler"]:
    """The scheduler the calling thread works for, or None."""
    with _registry_lock:
        return _registry.get(get_thread_id())


@dataclass
class _Task:
    fiber: Optional[Fiber] = None
    cb: Optional[Callable[[], Any]] = None
    thread: Optional[int] = None


TaskType = Union[Fiber, Callable[[], Any]]


class Scheduler:
    """Runs scheduled fibers and callbacks on worker threads and, optionally, the caller."""

    def __init__(self, threads: int = 1, use_caller: bool = True, name: str = "Scheduler") -> None:
        if threads <= 0:
            raise ValueError("threads must be positive")
        self._name = name
        self._use_caller = use_caller
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        self._tasks: List[_Task] = []
        self._pool: List[Thread] = []
        self._thread_ids: List[int] = []
        self._active = 0
        self._idle = 0
        self._stopped = False
        self._root_fiber: Optional[Fiber] = None
        self._root_thread: Optional[int] = None

        if use_caller:
            log.debug("[scheduler] current thread as called thread")
            threads -= 1
            current_fiber()
            if current_scheduler() is not None:
                raise RuntimeError("the calling thread already belongs to a scheduler")
            ident = get_thread_id()
            _bind(ident, self)
            self._root_fiber = Fiber(self._run, 0, False)
            set_thread_name(name)
            self._root_thread = ident
            self._thread_ids.append(ident)
        self._thread_count = threads
        log.debug("-------scheduler init success-------")

    @property
    def name(self) -> str:
        return self._name

    @property
    def thread_ids(self) -> List[int]:
        """Ids of the threads that run tasks, the caller's first when it takes part."""
        with self._lock:
            return list(self._thread_ids)

    def schedule(self, task: TaskType, thread: Optional[int] = None) -> None:
        """Queue a fiber or callable; ``thread`` pins it to one thread id."""
        if isinstance(task, Fiber):
            item = _Task(fiber=task, thread=thread)
        elif callable(task):
            item = _Task(cb=task, thread=thread)
        else:
            raise TypeError("a task must be a Fiber or a callable")
        with self._lock:
            need_tickle = not self._tasks
            self._tasks.append(item)
        if need_tickle:
            self.tickle()

    def start(self) -> None:
        """Start the worker threads."""
        log.debug("[scheduler] scheduler start")
        with self._lock:
            if self._stopped:
                log.info("scheduler has stopped")
                return
            if self._pool:
                raise RuntimeError("thread pool is not empty")
            for i in range(self._thread_count):
                worker = Thread(self._run, f"{self._name}_{i}")
                self._pool.append(worker)
                self._thread_ids.append(worker.id)

    def stop(self) -> None:
        """Run every queued task to completion, then shut the threads down."""
        log.debug("[scheduler] stop")
        if self.stopping():
            return
        if self._use_caller:
            if current_scheduler() is not self:
                raise RuntimeError("stop must be called from the caller thread")
        elif current_scheduler() is self:
            raise RuntimeError("stop must not be called from a scheduler thread")
        with self._lock:
            self._stopped = True

        for _ in range(self._thread_count):
            self.tickle()
        try:
            if self._root_fiber is not None:
                self.tickle()
                self._root_fiber.resume()
                log.debug("root fiber end")
            with self._lock:
                workers, self._pool = self._pool, []
            for worker in workers:
                worker.join()
        finally:
            if self._root_thread is not None:
                _unbind(self._root_thread, self)

    def tickle(self) -> None:
        """Wake idle threads because work has arrived."""
        log.debug("tickle")
        with self._cond:
            self._cond.notify_all()

    def idle(self) -> None:
        """Body of the idle fiber: wait for work and hand control back until stopping."""
        while not self.stopping():
            with self._cond:
                self._cond.wait_for(lambda: bool(self._tasks) or self._stopped, timeout=_IDLE_WAIT_S)
            current_fiber().yield_()

    def stopping(self) -> bool:
        with self._lock:
            return self._stopped and not self._tasks and self._active == 0

    def has_idle_threads(self) -> bool:
        with self._lock:
            return self._idle > 0

    def _take(self, ident: int) -> Tuple[Optional[_Task], bool]:
        with self._lock:
            tickle_me = False
            for i, task in enumerate(self._tasks):
                if task.thread is not None and task.thread != ident:
                    tickle_me = True
                    continue
                del self._tasks[i]
                self._active += 1
                return task, tickle_me or i < len(self._tasks)
            return None, tickle_me

    @staticmethod
    def _execute(fiber: Fiber) -> None:
        try:
            fiber.resume()
        except Exception:
            log.exception("scheduled task raised")

    def _run(self) -> None:
        log.debug("[scheduler] begin run")
        ident = get_thread_id()
        _bind(ident, self)
        idle_fiber = Fiber(self.idle)
        cb_fiber: Optional[Fiber] = None
        try:
            while True:
                task, tickle_me = self._take(ident)
                if tickle_me:
                    self.tickle()

                if task is None:
                    if idle_fiber.state is FiberState.TERM:
                        log.debug("idle fiber term")
                        break
                    with self._lock:
                        self._idle += 1
                    try:
                        idle_fiber.resume()
                    finally:
                        with self._lock:
                            self._idle -= 1
                    continue

                try:
                    if task.fiber is not None:
                        if task.fiber.state is not FiberState.READY:
                            raise RuntimeError(
                                f"fiber task in state {task.fiber.state.name}, expected READY"
                            )
                        self._execute(task.fiber)
                    else:
                        assert task.cb is not None
                        if cb_fiber is not None and cb_fiber.state is FiberState.TERM:
                            cb_fiber.reset(task.cb)
                        else:
                            cb_fiber = Fiber(task.cb)
                        self._execute(cb_fiber)
                finally:
                    with self._lock:
                        self._active -= 1
        finally:
            if ident != self._root_thread:
                _unbind(ident, self)
        log.debug("run exit")

    def __enter__(self) -> "Scheduler":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    def __repr__(self) -> str:
        return f"Scheduler(name={self._name!r}, threads={self._thread_count}, use_caller={self._use_caller})"