"""Named threads, per-thread identity and a reader-writer lock."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

DEFAULT_THREAD_NAME = "UNKNOW"


@dataclass
class _ThreadContext:
    """Identity of a logical thread, shared with every fiber it resumes."""

    ident: int
    name: str = DEFAULT_THREAD_NAME
    thread: Optional["Thread"] = None


_local = threading.local()


def _current_context() -> _ThreadContext:
    ctx = getattr(_local, "context", None)
    if ctx is None:
        ctx = _ThreadContext(threading.get_native_id())
        _local.context = ctx
    return ctx


def _adopt_context(ctx: _ThreadContext) -> None:
    """Make the calling OS thread act on behalf of the logical thread ``ctx``."""
    _local.context = ctx


def current_thread() -> Optional["Thread"]:
    """The Thread object running the caller, or None outside such a thread."""
    return _current_context().thread


def current_thread_name() -> str:
    return _current_context().name


def set_thread_name(name: str) -> None:
    """Rename the calling thread; an empty name is ignored."""
    if not name:
        return
    ctx = _current_context()
    ctx.name = name
    if ctx.thread is not None:
        ctx.thread._name = name


def get_thread_id() -> int:
    """Kernel id of the calling logical thread."""
    return _current_context().ident


class Thread:
    """A named thread that starts running ``cb`` as soon as it is created."""

    def __init__(self, cb: Callable[[], Any], name: str = DEFAULT_THREAD_NAME) -> None:
        self._cb: Optional[Callable[[], Any]] = cb
        self._name = name or DEFAULT_THREAD_NAME
        self._id = 0
        self._error: Optional[BaseException] = None
        self._started = threading.Event()
        self._thread: Optional[threading.Thread] = threading.Thread(
            target=self._run, name=self._name, daemon=True
        )
        try:
            self._thread.start()
        except RuntimeError as exc:
            raise RuntimeError(f"cannot start thread {self._name}") from exc
        self._started.wait()

    @property
    def id(self) -> int:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    def _run(self) -> None:
        ctx = _ThreadContext(threading.get_native_id(), self._name, self)
        _adopt_context(ctx)
        self._id = ctx.ident
        cb, self._cb = self._cb, None
        self._started.set()
        try:
            if cb is not None:
                cb()
        except BaseException as exc:  # handed to join()
            self._error = exc

    def join(self) -> None:
        """Wait for the thread to finish; re-raise what its callback raised."""
        if self._thread is None:
            return
        self._thread.join()
        self._thread = None
        if self._error is not None:
            error, self._error = self._error, None
            raise error

    def __repr__(self) -> str:
        return f"Thread(name={self._name!r}, id={self._id})"


class RWLock:
    """Many readers or a single writer at a time."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False

    @contextmanager
    def read_lock(self) -> Iterator[None]:
        with self._cond:
            self._cond.wait_for(lambda: not self._writer)
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write_lock(self) -> Iterator[None]:
        with self._cond:
            self._cond.wait_for(lambda: not self._writer and not self._readers)
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()