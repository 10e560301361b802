import os
import socket
import threading

import pytest

from monsoonkv.fiber import current_fiber
from monsoonkv.iomanager import Event, IOManager, current_io_manager


@pytest.fixture
def pipe():
    r, w = os.pipe()
    yield r, w
    for fd in (r, w):
        try:
            os.close(fd)
        except OSError:
            pass


def test_read_callback_runs_when_data_arrives(pipe):
    r, w = pipe
    hits = []
    iom = IOManager()
    try:
        iom.add_event(r, Event.READ, lambda: hits.append(os.read(r, 16)))
        assert iom.pending_event_count == 1
        os.write(w, b"data")
    finally:
        iom.close()
    assert hits == [b"data"]
    assert iom.pending_event_count == 0


def test_event_flag_values_combine():
    assert int(Event.READ | Event.WRITE) == 5
    assert Event(Event.READ | Event.WRITE) & ~int(Event.READ) == Event.WRITE


def test_duplicate_event_is_rejected(pipe):
    r, _ = pipe
    iom = IOManager()
    try:
        iom.add_event(r, Event.READ, lambda: None)
        with pytest.raises(RuntimeError):
            iom.add_event(r, Event.READ, lambda: None)
        assert iom.pending_event_count == 1
        assert iom.del_event(r, Event.READ) is True
    finally:
        iom.close()
    assert iom.pending_event_count == 0


def test_invalid_arguments_are_rejected():
    iom = IOManager()
    try:
        with pytest.raises(ValueError):
            iom.add_event(-1, Event.READ, lambda: None)
        with pytest.raises(ValueError):
            iom.add_event(0, Event.NONE, lambda: None)
    finally:
        iom.close()
    assert iom.pending_event_count == 0


def test_del_event_does_not_run_callback(pipe):
    r, w = pipe
    hits = []
    iom = IOManager()
    try:
        iom.add_event(r, Event.READ, lambda: hits.append("read"))
        os.write(w, b"x")
        assert iom.del_event(r, Event.READ) is True
        assert iom.del_event(r, Event.READ) is False
        assert iom.del_event(12345, Event.READ) is False
    finally:
        iom.close()
    assert hits == []


def test_cancel_event_runs_callback_without_readiness(pipe):
    r, _ = pipe
    hits = []
    iom = IOManager()
    try:
        iom.add_event(r, Event.READ, lambda: hits.append("cancelled"))
        assert iom.cancel_event(r, Event.READ) is True
        assert iom.cancel_event(r, Event.READ) is False
        assert iom.pending_event_count == 0
    finally:
        iom.close()
    assert hits == ["cancelled"]


def test_cancel_all_triggers_every_registered_event():
    a, b = socket.socketpair()
    hits = []
    iom = IOManager()
    try:
        iom.add_event(a.fileno(), Event.READ, lambda: hits.append("read"))
        iom.add_event(a.fileno(), Event.WRITE, lambda: hits.append("write"))
        assert iom.pending_event_count == 2
        assert iom.cancel_all(a.fileno()) is True
        assert iom.cancel_all(a.fileno()) is False
        assert iom.pending_event_count == 0
    finally:
        iom.close()
        a.close()
        b.close()
    assert sorted(hits) == ["read", "write"]


def test_write_event_fires_on_writable_socket():
    a, b = socket.socketpair()
    hits = []
    iom = IOManager()
    try:
        iom.add_event(a.fileno(), Event.WRITE, lambda: hits.append("write"))
    finally:
        iom.close()
        a.close()
        b.close()
    assert hits == ["write"]


def test_timer_callback_runs_before_stop_returns():
    hits = []
    iom = IOManager()
    try:
        iom.add_timer(10, lambda: hits.append("timer"))
        assert iom.has_timer() is True
    finally:
        iom.close()
    assert hits == ["timer"]
    assert iom.has_timer() is False


def test_current_io_manager_inside_and_after(pipe):
    r, w = pipe
    seen = []
    iom = IOManager()
    try:
        iom.add_event(r, Event.READ, lambda: seen.append(current_io_manager()))
        os.write(w, b"x")
    finally:
        iom.close()
    assert seen == [iom]
    assert current_io_manager() is None


def test_fiber_waits_for_readable_descriptor(pipe):
    r, w = pipe
    got = []
    managers = []

    def task():
        manager = current_io_manager()
        managers.append(manager)
        manager.add_event(r, Event.READ)
        current_fiber().yield_()
        got.append(os.read(r, 16))

    iom = IOManager()
    try:
        iom.schedule(task)
        os.write(w, b"ping")
    finally:
        iom.close()
    assert managers == [iom]
    assert got == [b"ping"]
    assert iom.pending_event_count == 0
    assert iom.stopping() is True


def test_worker_threads_handle_events(pipe):
    r, w = pipe
    done = threading.Event()
    iom = IOManager(threads=2, use_caller=False, name="workers")
    try:
        assert current_io_manager() is None
        iom.add_event(r, Event.READ, done.set)
        os.write(w, b"go")
        assert done.wait(5) is True
    finally:
        iom.close()
    assert iom.stopping() is True