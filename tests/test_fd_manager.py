import os
import socket

import pytest

from monsoonkv.fd_manager import FdCtx, FdManager, TimeoutKind, fd_manager


@pytest.fixture
def sock_pair():
    a, b = socket.socketpair()
    yield a, b
    a.close()
    b.close()


def test_socket_context_is_made_nonblocking(sock_pair):
    a, _ = sock_pair
    a.setblocking(True)
    ctx = FdCtx(a.fileno())
    assert ctx.is_init is True
    assert ctx.is_socket is True
    assert ctx.sys_nonblock is True
    assert ctx.user_nonblock is False
    assert ctx.is_closed is False
    assert os.get_blocking(a.fileno()) is False


def test_regular_file_is_not_socket(tmp_path):
    path = tmp_path / "data.txt"
    path.write_text("x")
    with open(path) as handle:
        ctx = FdCtx(handle.fileno())
        assert ctx.is_init is True
        assert ctx.is_socket is False
        assert ctx.sys_nonblock is False
        assert os.get_blocking(handle.fileno()) is True


def test_closed_descriptor_is_not_initialised():
    r, w = os.pipe()
    os.close(r)
    os.close(w)
    ctx = FdCtx(r)
    assert ctx.is_init is False
    assert ctx.is_socket is False


def test_timeouts_default_to_none_and_are_independent(sock_pair):
    ctx = FdCtx(sock_pair[0].fileno())
    assert ctx.get_timeout(TimeoutKind.RECV) is None
    assert ctx.get_timeout(TimeoutKind.SEND) is None
    ctx.set_timeout(TimeoutKind.RECV, 500)
    assert ctx.get_timeout(TimeoutKind.RECV) == 500
    assert ctx.get_timeout(TimeoutKind.SEND) is None
    ctx.set_timeout(TimeoutKind.SEND, 250)
    assert ctx.get_timeout(TimeoutKind.SEND) == 250
    assert ctx.get_timeout(TimeoutKind.RECV) == 500


def test_timeout_kinds_match_socket_options(sock_pair):
    recv_kind = TimeoutKind(socket.SO_RCVTIMEO)
    send_kind = TimeoutKind(socket.SO_SNDTIMEO)
    assert recv_kind is TimeoutKind.RECV
    assert send_kind is TimeoutKind.SEND
    ctx = FdCtx(sock_pair[0].fileno())
    ctx.set_timeout(recv_kind, 100)
    ctx.set_timeout(send_kind, 200)
    assert ctx.get_timeout(TimeoutKind.RECV) == 100
    assert ctx.get_timeout(TimeoutKind.SEND) == 200


def test_user_nonblock_is_settable(sock_pair):
    ctx = FdCtx(sock_pair[0].fileno())
    ctx.user_nonblock = True
    assert ctx.user_nonblock is True


def test_get_minus_one_returns_none():
    manager = FdManager()
    assert manager.get(-1, True) is None


def test_get_without_auto_create_returns_none(sock_pair):
    manager = FdManager()
    assert manager.get(sock_pair[0].fileno()) is None


def test_auto_create_returns_same_context(sock_pair):
    manager = FdManager()
    fd = sock_pair[0].fileno()
    ctx = manager.get(fd, True)
    assert ctx.fd == fd
    assert manager.get(fd) is ctx
    assert manager.get(fd, True) is ctx


def test_delete_forgets_context(sock_pair):
    manager = FdManager()
    fd = sock_pair[0].fileno()
    manager.get(fd, True)
    manager.delete(fd)
    assert manager.get(fd) is None


def test_table_grows_for_large_descriptor():
    manager = FdManager()
    ctx = manager.get(100, True)
    assert ctx.fd == 100
    assert manager.get(100) is ctx
    assert manager.get(101) is None


def test_delete_out_of_range_is_ignored():
    manager = FdManager()
    manager.delete(10_000)
    assert manager.get(10_000) is None


def test_fd_manager_is_singleton(sock_pair):
    fd = sock_pair[0].fileno()
    first = fd_manager()
    ctx = first.get(fd, True)
    try:
        assert ctx.fd == fd
        assert fd_manager().get(fd) is ctx
    finally:
        first.delete(fd)
    assert fd_manager().get(fd) is None