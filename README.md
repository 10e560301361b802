# monsoonkv

monsoonkv holds the building blocks for a small Raft-backed key-value
service: cooperative fibers and a scheduler to run them, timers, an IO
manager that waits for descriptor readiness, and an ordered skip-list store.
Only the standard library is used.

## Modules

- `monsoonkv.common` – settings (election timeout bounds, heartbeat and
  apply intervals, `DEBUG`) and helpers:
  - `LockQueue`: thread-safe FIFO with `push`, a blocking `pop`, and
    `timeout_pop(timeout_ms)`, which raises `TimeoutError` if nothing
    arrives in time.
  - `Op`: the command a key-value server hands to the log (`operation`,
    `key`, `value`, `client_id`, `request_id`), turned into text with
    `as_string()` and back with `Op.parse_from_string(text)`, which raises
    `ValueError` on malformed input.
  - `defer(func, *args)`: a context manager that calls `func` when the
    block is left.
  - `format_c(fmt, *args)`: printf-style formatting; C length modifiers
    such as `%ld` are accepted.
  - `dprintf`, `my_assert` (prints to stderr and exits with status 1),
    `now`, `get_randomized_election_timeout`, `sleep_n_milliseconds`.
  - `is_release_port(port)` and `get_release_port(port)`, which returns the
    first bindable port among the next 30 or raises `OSError`.
  - Reply codes `OK`, `ERR_NO_KEY`, `ERR_WRONG_LEADER`.
- `monsoonkv.timer` – `TimerManager` and `Timer`: one-shot, recurring and
  conditional timers kept in deadline order. `Timer` has `cancel`,
  `refresh` and `reset(ms, from_now)`. `TimerManager.get_next_timer()`
  gives the milliseconds to the next deadline (0 if overdue, `None` if
  there are no timers); `list_expired_callbacks()` returns the callbacks
  that are due and reschedules recurring timers. A manager can be given an
  `on_front` callable, or subclassed to override
  `on_timer_inserted_at_front`, to learn when a new timer becomes the
  earliest.
- `monsoonkv.skiplist` – `SkipList(max_level)`, a sorted map.
  `insert_element` returns `False` if the key exists; `insert_set_element`
  inserts or replaces; `search_element` returns the value or raises
  `KeyError`; `delete_element` returns whether the key was present;
  `dump_file()` returns a string that `load_file()` accepts;
  `display_list()` prints every level. It also supports `len`, `in`,
  iteration over keys and `items()`.
- `monsoonkv.thread` – `Thread(cb, name)`, a named thread that starts at
  once and whose `join()` re-raises what the callback raised;
  `current_thread`, `current_thread_name`, `set_thread_name`,
  `get_thread_id`; and `RWLock` with `read_lock()` / `write_lock()`
  context managers.
- `monsoonkv.fiber` – `Fiber`, a coroutine with `resume()`, `yield_()` and
  `reset(cb)`, whose state is a `FiberState` (`READY`, `RUNNING`,
  `TERM`); `current_fiber()` and `total_fiber_count()`.
- `monsoonkv.scheduler` – `Scheduler(threads=1, use_caller=True)`, which
  runs fibers and callables on worker threads and, with `use_caller`, on
  the calling thread during `stop()`. `schedule(task, thread=None)` can pin
  a task to a thread id. `current_scheduler()` returns the scheduler the
  calling thread works for. A scheduler is also a context manager that
  starts on entry and stops on exit.
- `monsoonkv.fd_manager` – `FdCtx` (socket detection, non-blocking mode,
  receive/send timeouts) and `FdManager`, with the shared instance from
  `fd_manager()`.
- `monsoonkv.iomanager` – `IOManager`, a `Scheduler` that starts itself
  and whose idle threads wait for readiness and timers. `add_event(fd,
  Event.READ or Event.WRITE, cb=None)` runs `cb`, or resumes the calling
  fiber, when the descriptor is ready; `del_event`, `cancel_event` and
  `cancel_all` withdraw waits (the cancel forms run the waiters).
  `add_timer` and `add_condition_timer` schedule callbacks. `close()` (or
  leaving a `with` block) runs everything pending and releases resources.
  `current_io_manager()` returns the one running the calling thread.
- `monsoonkv.echo_server` – a TCP echo server on top of `IOManager`.

## Installing

```
pip install .
```

Python 3.10 or later is needed.

## Using it

A skip list as a sorted key-value store:

```python
from monsoonkv.skiplist import SkipList

store = SkipList(6)
store.insert_element(1, "one")
store.insert_set_element(1, "uno")   # replaces the existing value
print(store.search_element(1))       # uno
snapshot = store.dump_file()

copy = SkipList(6)
copy.load_file(snapshot)
```

Commands passed through the log:

```python
from monsoonkv.common import Op

op = Op(operation="Put", key="x", value="1", client_id="c1", request_id=1)
same = Op.parse_from_string(op.as_string())
assert same == op
```

Scheduling work:

```python
from monsoonkv.scheduler import Scheduler

sc = Scheduler()
sc.schedule(lambda: print("task 1"))
sc.start()
sc.stop()          # runs until every queued task has finished
```

Waiting for a timer with an IO manager:

```python
from monsoonkv.iomanager import IOManager

with IOManager() as iom:
    iom.add_timer(100, lambda: print("fired"))
```

## The echo server

```
monsoonkv-echo --port 8080
```

listens on the given port (8080 by default); whatever a client sends is
printed and sent straight back. From code, `monsoonkv.echo_server.serve(port,
iomanager)` starts the same server on an existing `IOManager` and returns the
listening socket.

## What it does not do

The package provides the parts, not the service: there is no Raft
consensus node, no replicated key-value server and no client that talks to
one. Nothing here persists data to disk; `SkipList.dump_file` only produces
a string.

## Running the tests

```
pip install .[test]
pytest
```