"""A per-thread TCP server that owns the connections of its event loop."""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Callable
from typing import Any

from platinum.acceptor import Acceptor
from platinum.address import Address, IPAddress
from platinum.connection import Connection, EventLoop, ParserType
from platinum.connector import Connector

log = logging.getLogger(__name__)

MessageCallback = Callable[[Connection, bytes, Any], int]

_local = threading.local()


def current_server() -> TcpServer | None:
    """Return the server created in the calling thread, if any."""
    return getattr(_local, "server", None)


class TcpServer:
    """Accepts clients and tracks every connection by descriptor; one per thread."""

    def __init__(self, loop: EventLoop, address: IPAddress) -> None:
        if current_server() is not None:
            raise RuntimeError("only one server per thread")
        self.loop = loop
        self.acceptor = Acceptor(loop, address)
        self.connections: dict[int, Connection] = {}
        self.connection_callback: Callable[[], Any] | None = None
        self.message_callback: MessageCallback | None = None
        self.starting = False
        _local.server = self
        log.info("TcpServer has been created")

    def listen(self) -> None:
        """Start accepting clients without running the loop."""
        self.starting = True
        self.acceptor.set_connection_callback(self._on_connection)
        self.acceptor.listen()

    def start(self) -> None:
        """Start accepting clients and run the event loop."""
        self.listen()
        self.loop.loop()

    def set_connection_callback(self, callback: Callable[[], Any]) -> None:
        self.connection_callback = callback

    def set_message_callback(self, callback: MessageCallback) -> None:
        self.message_callback = callback

    def _on_connection(self, sock: socket.socket, peer: IPAddress) -> None:
        fd = sock.fileno()
        log.info("%s:%d::%d", peer.ip, peer.port, fd)
        connection = Connection(self.loop, sock, ParserType.HTTP)
        connection.message_callback = self.message_callback
        connection.connection_callback = self.connection_callback
        connection.close_callback = self.erase_connection
        connection.connection_established()
        self.connections[fd] = connection

    def new_connection(self, connector: Connector) -> None:
        """Adopt the connection of an outgoing connector."""
        connection = connector.connection
        connection.message_callback = connector.message_callback
        connection.write_callback = connector.write_callback
        connection.close_callback = self.erase_connection
        connection.forward_fd = connector.forward_fd
        connection.connection_established()
        self.connections[connector.fd] = connection

    def new_connector(self, address: Address, parser_type: ParserType | str) -> Connector:
        return Connector(self.loop, address, parser_type)

    def forward_connection(self, fd: int) -> Connection | None:
        """Return the connection with descriptor ``fd``, if it is still open."""
        return self.connections.get(fd)

    def force_close(self, fd: int) -> None:
        """Drop and close the connection ``fd``; KeyError if there is none."""
        connection = self.connections.pop(fd)
        connection.connection_destroyed()
        log.info("TcpServer.force_close(%d)", fd)

    def erase_connection(self, fd: int) -> None:
        """Forget the connection ``fd``; KeyError if there is none."""
        del self.connections[fd]

    def close(self) -> None:
        """Close every connection and the listening socket."""
        for connection in list(self.connections.values()):
            connection.connection_destroyed()
        self.connections.clear()
        self.loop.unregister(self.acceptor.socket.socket)
        self.acceptor.socket.close()
        if current_server() is self:
            _local.server = None

    def __enter__(self) -> TcpServer:
        return self

    def __exit__(self, *args) -> None:
        self.close()