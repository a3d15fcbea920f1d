"""An owning wrapper around a stream socket."""

from __future__ import annotations

import errno
import socket

from platinum import socketops
from platinum.address import Address, IPAddress
from platinum.socketops import SocketError, SocketType


class Socket:
    """Owns a socket and closes it when done; usable as a context manager."""

    def __init__(self, source: SocketType | int | socket.socket = SocketType.INET) -> None:
        if isinstance(source, socket.socket):
            self.socket = source
        else:
            self.socket = socketops.create_socket(source)

    def fileno(self) -> int:
        return self.socket.fileno()

    def bind(self, address: Address) -> None:
        socketops.bind_or_die(self.socket, address)

    def listen(self) -> None:
        socketops.listen_or_die(self.socket, socket.SOMAXCONN)

    def connect(self, address: Address) -> None:
        socketops.connect(self.socket, address)

    def accept(self) -> tuple[socket.socket, IPAddress] | None:
        """Accept one connection; None when none is pending."""
        return socketops.accept(self.socket)

    def _set_flag(self, level: int, option: int | None, on: bool, name: str) -> bool:
        if option is None:
            if on:
                raise SocketError(errno.ENOPROTOOPT, f"{name} is not supported")
            return True
        try:
            self.socket.setsockopt(level, option, 1 if on else 0)
        except OSError as exc:
            if on:
                raise SocketError(exc.errno, f"setting {name} failed: {exc.strerror or exc}") from exc
        return True

    def set_reuse_port(self, on: bool) -> bool:
        return self._set_flag(
            socket.SOL_SOCKET, getattr(socket, "SO_REUSEPORT", None), on, "SO_REUSEPORT"
        )

    def set_tcp_no_delay(self, on: bool) -> bool:
        return self._set_flag(socket.IPPROTO_TCP, socket.TCP_NODELAY, on, "TCP_NODELAY")

    def set_keep_alive(self, on: bool) -> bool:
        return self._set_flag(socket.SOL_SOCKET, socket.SO_KEEPALIVE, on, "SO_KEEPALIVE")

    def close(self) -> None:
        self.socket.close()

    def __enter__(self) -> Socket:
        return self

    def __exit__(self, *args) -> None:
        self.close()