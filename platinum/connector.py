"""Outgoing connections, used to reach the FastCGI peer."""

from __future__ import annotations

import errno
import logging
import socket
from collections.abc import Callable
from typing import Any

from platinum.address import Address, IPAddress, UnixAddress
from platinum.connection import Connection, EventLoop, ParserType
from platinum.socketops import SocketError, SocketType, create_socket

log = logging.getLogger(__name__)

MessageCallback = Callable[[Connection, bytes, Any], int]

_IN_PROGRESS = {0, errno.EINPROGRESS, errno.EAGAIN, errno.EWOULDBLOCK}


class Connector:
    """Opens a non-blocking connection to a TCP or Unix-domain peer."""

    def __init__(
        self,
        loop: EventLoop,
        address: Address,
        parser_type: ParserType | str = ParserType.FCGI,
        parser: Any = None,
    ) -> None:
        if isinstance(address, UnixAddress):
            kind = SocketType.UNIX
        elif isinstance(address, IPAddress):
            kind = SocketType.INET
        else:
            raise TypeError(f"unsupported address {address!r}")
        self.loop = loop
        self.address = address
        self.socket = create_socket(kind)
        self.fd = self.socket.fileno()
        self.forward_fd = -1
        self.connection = Connection(loop, self.socket, parser_type, parser)
        self.message_callback: MessageCallback | None = None
        self.write_callback: Callable[[], Any] | None = None

    def start(self) -> None:
        """Begin connecting and hand the connection to the thread's server."""
        error = self.socket.connect_ex(self.address.sockaddr())
        if error not in _IN_PROGRESS:
            log.error("connect to %s failed: %s", self.address, errno.errorcode.get(error, error))

        from platinum.tcp_server import current_server

        server = current_server()
        if server is not None:
            server.new_connection(self)
            return
        connection = self.connection
        connection.message_callback = self.message_callback
        connection.write_callback = self.write_callback
        connection.forward_fd = self.forward_fd
        connection.connection_established()

    def send_data(self, data: bytes) -> None:
        self.connection.send_data(data)

    def send_file(self, pathname: str, total: int) -> None:
        self.connection.send_file(pathname, total)

    def shutdown(self) -> None:
        self.connection.shutdown()

    def set_message_callback(self, callback: MessageCallback) -> None:
        self.message_callback = callback

    def set_write_callback(self, callback: Callable[[], Any]) -> None:
        """Run ``callback`` on writability, after checking the connect result."""

        def on_writable() -> None:
            self._handle_event()
            callback()

        self.write_callback = on_writable

    def _handle_event(self) -> None:
        try:
            error = self.socket.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        except OSError as exc:
            raise SocketError(exc.errno, f"getsockopt failed: {exc.strerror or exc}") from exc
        if error and error not in (errno.EAGAIN, errno.EINPROGRESS):
            log.error("connect to %s failed: %s", self.address, errno.errorcode.get(error, error))