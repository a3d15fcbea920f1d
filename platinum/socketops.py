"""Thin, exception-raising helpers around the basic socket calls."""

from __future__ import annotations

import enum
import socket
from collections.abc import Iterator
from contextlib import contextmanager

from platinum.address import Address, IPAddress


class SocketType(enum.IntEnum):
    """Address families the server creates sockets for."""

    INET = socket.AF_INET
    UNIX = socket.AF_UNIX


class SocketError(OSError):
    """A socket operation failed."""


@contextmanager
def _failing_as(action: str) -> Iterator[None]:
    try:
        yield
    except SocketError:
        raise
    except OSError as exc:
        raise SocketError(exc.errno, f"{action} failed: {exc.strerror or exc}") from exc


def _ip_of(name) -> IPAddress:
    if isinstance(name, tuple):
        return IPAddress.from_sockaddr(name)
    return IPAddress()


def create_socket(kind) -> socket.socket:
    """Create a non-blocking stream socket of the given family."""
    family = SocketType(kind)
    with _failing_as("socket creation"):
        sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setblocking(False)
    return sock


def bind_or_die(sock: socket.socket, address: Address) -> bool:
    with _failing_as("bind"):
        sock.bind(address.sockaddr())
    return True


def listen_or_die(sock: socket.socket, backlog: int = socket.SOMAXCONN) -> bool:
    with _failing_as("listen"):
        sock.listen(backlog)
    return True


def connect(sock: socket.socket, address: Address) -> bool:
    with _failing_as("connect"):
        sock.connect(address.sockaddr())
    return True


def accept(sock: socket.socket) -> tuple[socket.socket, IPAddress] | None:
    """Accept one connection; None when none is pending on a non-blocking socket."""
    try:
        conn, peer = sock.accept()
    except BlockingIOError:
        return None
    except OSError as exc:
        raise SocketError(exc.errno, f"accept failed: {exc.strerror or exc}") from exc
    conn.setblocking(False)
    return conn, _ip_of(peer)


def shutdown_write(sock: socket.socket) -> bool:
    with _failing_as("shutdown"):
        sock.shutdown(socket.SHUT_WR)
    return True


def get_sock_name(sock: socket.socket) -> IPAddress:
    with _failing_as("getsockname"):
        name = sock.getsockname()
    return _ip_of(name)


def get_peer_name(sock: socket.socket) -> IPAddress:
    with _failing_as("getpeername"):
        name = sock.getpeername()
    return _ip_of(name)