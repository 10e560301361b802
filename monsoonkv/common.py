"""Shared settings and helpers: logging, assertions, a blocking queue and the KV command."""

from __future__ import annotations

import json
import random
import re
import socket
import sys
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any, Callable, Deque, Generic, Iterator, TypeVar

DEBUG = True

# Multiplier for all time settings, so slow networks can stretch every timeout.
DEBUG_MUL = 1
HEART_BEAT_TIMEOUT = 25 * DEBUG_MUL
APPLY_INTERVAL = 10 * DEBUG_MUL
MIN_RANDOMIZED_ELECTION_TIME = 300 * DEBUG_MUL
MAX_RANDOMIZED_ELECTION_TIME = 500 * DEBUG_MUL
CONSENSUS_TIMEOUT = 500 * DEBUG_MUL

FIBER_THREAD_NUM = 1
FIBER_USE_CALLER_THREAD = False

# Replies a KV server sends back to a clerk.
OK = "OK"
ERR_NO_KEY = "ErrNoKey"
ERR_WRONG_LEADER = "ErrWrongLeader"

_PORT_PROBE_LIMIT = 30

_C_SPEC = re.compile(
    r"%([-+ #0]*(?:\*|\d+)?(?:\.(?:\*|\d+))?)(?:hh|h|ll|l|L|q|j|z|t)?([diouxXeEfFgGcs%])"
)

T = TypeVar("T")


@contextmanager
def defer(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Iterator[None]:
    """Run ``func(*args, **kwargs)`` when the ``with`` block is left, however it is left."""
    try:
        yield
    finally:
        func(*args, **kwargs)


def format_c(format_str: str, *args: Any) -> str:
    """Format with a printf-style template; C length modifiers are accepted and ignored."""
    template = _C_SPEC.sub(lambda m: "%" + m.group(1) + m.group(2), format_str)
    try:
        return template % args
    except (TypeError, ValueError) as exc:
        raise ValueError("Error during formatting.") from exc


def dprintf(fmt: str, *args: Any) -> None:
    """Print a timestamped debug line when debugging is on."""
    if not DEBUG:
        return
    t = time.localtime()
    stamp = f"[{t.tm_year}-{t.tm_mon}-{t.tm_mday}-{t.tm_hour}-{t.tm_min}-{t.tm_sec}] "
    print(stamp + format_c(fmt, *args))


def my_assert(condition: bool, message: str = "Assertion failed!") -> None:
    """Report ``message`` on stderr and exit with status 1 when ``condition`` is false."""
    if not condition:
        print(f"Error: {message}", file=sys.stderr)
        raise SystemExit(1)


def now() -> float:
    """High-resolution monotonic time point in seconds."""
    return time.perf_counter()


def get_randomized_election_timeout() -> timedelta:
    """A random election timeout between the configured bounds, inclusive."""
    ms = random.randint(MIN_RANDOMIZED_ELECTION_TIME, MAX_RANDOMIZED_ELECTION_TIME)
    return timedelta(milliseconds=ms)


def sleep_n_milliseconds(n: int) -> None:
    """Block the calling thread for ``n`` milliseconds."""
    time.sleep(n / 1000)


def is_release_port(port: int) -> bool:
    """Whether a TCP socket can be bound to ``port`` on the loopback address."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", port))
    except (OSError, OverflowError):
        return False
    return True


def get_release_port(port: int) -> int:
    """Return the first free port starting at ``port``, probing a limited range."""
    tried = 0
    while not is_release_port(port) and tried < _PORT_PROBE_LIMIT:
        port += 1
        tried += 1
    if tried >= _PORT_PROBE_LIMIT:
        raise OSError(f"no free port found within {_PORT_PROBE_LIMIT} ports")
    return port


class LockQueue(Generic[T]):
    """Thread-safe FIFO: any thread may push, readers block until data arrives."""

    def __init__(self) -> None:
        self._items: Deque[T] = deque()
        self._cond = threading.Condition()

    def push(self, data: T) -> None:
        with self._cond:
            self._items.append(data)
            self._cond.notify()

    def pop(self) -> T:
        """Remove and return the oldest item, waiting as long as needed."""
        with self._cond:
            self._cond.wait_for(lambda: self._items)
            return self._items.popleft()

    def timeout_pop(self, timeout_ms: int) -> T:
        """Remove and return the oldest item; raise TimeoutError after ``timeout_ms``."""
        with self._cond:
            if not self._cond.wait_for(lambda: self._items, timeout=timeout_ms / 1000):
                raise TimeoutError(f"queue stayed empty for {timeout_ms} ms")
            return self._items.popleft()

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)


@dataclass
class Op:
    """A command a KV server hands to the replicated log."""

    operation: str = ""  # "Get", "Put" or "Append"
    key: str = ""
    value: str = ""
    client_id: str = ""
    request_id: int = 0

    def as_string(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def parse_from_string(cls, text: str) -> "Op":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"malformed command: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("malformed command: not an object")
        try:
            return cls(
                operation=str(data["operation"]),
                key=str(data["key"]),
                value=str(data["value"]),
                client_id=str(data["client_id"]),
                request_id=int(data["request_id"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"malformed command: {exc}") from exc

    def __str__(self) -> str:
        return (
            f"[MyClass:Operation{{{self.operation}}},Key{{{self.key}}},Value{{{self.value}}},"
            f"ClientId{{{self.client_id}}},RequestId{{{self.request_id}}}"
        )