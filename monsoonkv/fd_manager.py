"""Per-descriptor bookkeeping: socket detection, non-blocking mode and I/O timeouts."""

from __future__ import annotations

import functools
import os
import socket
import stat
from enum import IntEnum
from typing import List, Optional

from .thread import RWLock

_INITIAL_SIZE = 64


class TimeoutKind(IntEnum):
    RECV = getattr(socket, "SO_RCVTIMEO", 20)
    SEND = getattr(socket, "SO_SNDTIMEO", 21)


class FdCtx:
    """What is known about one file descriptor; sockets are switched to non-blocking."""

    def __init__(self, fd: int) -> None:
        self._fd = fd
        self._is_init = False
        self._is_socket = False
        self._is_closed = False
        self.sys_nonblock = False
        self.user_nonblock = False
        self._recv_timeout: Optional[int] = None
        self._send_timeout: Optional[int] = None
        self._init()

    def _init(self) -> bool:
        if self._is_init:
            return True
        self._recv_timeout = None
        self._send_timeout = None
        try:
            mode = os.fstat(self._fd).st_mode
        except OSError:
            self._is_init = False
            self._is_socket = False
        else:
            self._is_init = True
            self._is_socket = stat.S_ISSOCK(mode)

        if self._is_socket:
            if os.get_blocking(self._fd):
                os.set_blocking(self._fd, False)
            self.sys_nonblock = True
        else:
            self.sys_nonblock = False
        self.user_nonblock = False
        self._is_closed = False
        return self._is_init

    @property
    def fd(self) -> int:
        return self._fd

    @property
    def is_init(self) -> bool:
        return self._is_init

    @property
    def is_socket(self) -> bool:
        return self._is_socket

    @property
    def is_closed(self) -> bool:
        return self._is_closed

    def set_timeout(self, kind: int, value: Optional[int]) -> None:
        """Set the receive timeout for RECV, otherwise the send timeout, in ms."""
        if kind == TimeoutKind.RECV:
            self._recv_timeout = value
        else:
            self._send_timeout = value

    def get_timeout(self, kind: int) -> Optional[int]:
        """The receive or send timeout in ms; None means no timeout."""
        if kind == TimeoutKind.RECV:
            return self._recv_timeout
        return self._send_timeout

    def __repr__(self) -> str:
        return f"FdCtx(fd={self._fd}, socket={self._is_socket}, init={self._is_init})"


class FdManager:
    """Table of FdCtx objects indexed by descriptor number."""

    def __init__(self) -> None:
        self._lock = RWLock()
        self._data: List[Optional[FdCtx]] = [None] * _INITIAL_SIZE

    def get(self, fd: int, auto_create: bool = False) -> Optional[FdCtx]:
        """Look up ``fd``; create its context when missing and ``auto_create`` is set."""
        if fd < 0:
            return None
        with self._lock.read_lock():
            if fd < len(self._data):
                ctx = self._data[fd]
                if ctx is not None or not auto_create:
                    return ctx
            elif not auto_create:
                return None

        with self._lock.write_lock():
            if fd < len(self._data) and self._data[fd] is not None:
                return self._data[fd]
            ctx = FdCtx(fd)
            if fd >= len(self._data):
                self._data.extend([None] * (int(fd * 1.5) + 1 - len(self._data)))
            self._data[fd] = ctx
            return ctx

    def delete(self, fd: int) -> None:
        """Forget the context of ``fd``, if any."""
        with self._lock.write_lock():
            if 0 <= fd < len(self._data):
                self._data[fd] = None


@functools.lru_cache(maxsize=None)
def fd_manager() -> FdManager:
    """The process-wide FdManager."""
    return FdManager()