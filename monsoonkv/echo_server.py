"""A TCP echo server whose accepts and reads are driven by an IOManager."""

from __future__ import annotations

import argparse
import functools
import socket
from typing import List, Optional

from .iomanager import Event, IOManager, current_io_manager

DEFAULT_PORT = 8080
_BACKLOG = 1024
_BUFFER_SIZE = 1024


def _open_listener(port: int) -> socket.socket:
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind(("", port))
        listener.listen(_BACKLOG)
        listener.setblocking(False)
    except OSError:
        listener.close()
        raise
    return listener


def _echo(conn: socket.socket, iom: IOManager) -> None:
    while True:
        try:
            data = conn.recv(_BUFFER_SIZE)
        except BlockingIOError:
            try:
                iom.add_event(conn.fileno(), Event.READ, functools.partial(_echo, conn, iom))
            except (OSError, ValueError):
                conn.close()
            return
        except OSError:
            conn.close()
            return
        if not data:
            conn.close()
            return
        print(f"client say: {data.decode(errors='replace')}", flush=True)
        try:
            conn.sendall(data)
        except OSError:
            conn.close()
            return


def _on_accept(listener: socket.socket, iom: IOManager) -> None:
    if listener.fileno() == -1:
        return
    conn: Optional[socket.socket]
    try:
        conn, _ = listener.accept()
    except OSError:
        if listener.fileno() == -1:
            return
        conn = None
        print("accept error", flush=True)

    if listener.fileno() != -1:
        try:
            iom.add_event(listener.fileno(), Event.READ, functools.partial(_on_accept, listener, iom))
        except (OSError, ValueError):
            pass  # the listener was closed meanwhile

    if conn is None:
        return
    print(f"fd = {conn.fileno()},accept success", flush=True)
    conn.setblocking(False)
    try:
        iom.add_event(conn.fileno(), Event.READ, functools.partial(_echo, conn, iom))
    except (OSError, ValueError):
        conn.close()


def serve(port: int = DEFAULT_PORT, iomanager: Optional[IOManager] = None) -> socket.socket:
    """Listen on ``port`` and echo every client through ``iomanager``; return the listener.

    To stop serving, close the listener and cancel the events on its descriptor.
    """
    if iomanager is None:
        iomanager = current_io_manager()
        if iomanager is None:
            raise RuntimeError("no IOManager given and none runs the calling thread")
    listener = _open_listener(port)
    print(f"listen success on port: {listener.getsockname()[1]}", flush=True)
    iomanager.add_event(listener.fileno(), Event.READ, functools.partial(_on_accept, listener, iomanager))
    return listener


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Echo every line a TCP client sends.")
    parser.add_argument("-p", "--port", type=int, default=DEFAULT_PORT)
    args = parser.parse_args(argv)

    try:
        listener = _open_listener(args.port)
    except OSError as exc:
        print(f"cannot listen on port {args.port}: {exc}")
        return 1
    print(f"listen success on port: {args.port}", flush=True)

    iom = IOManager()
    iom.add_event(listener.fileno(), Event.READ, functools.partial(_on_accept, listener, iom))
    try:
        iom.close()
    finally:
        listener.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())