"""Accepting new connections on a listening TCP socket."""

from __future__ import annotations

import logging
import selectors
import socket
from collections.abc import Callable
from typing import Any

from platinum.address import IPAddress
from platinum.connection import EventLoop
from platinum.sock import Socket
from platinum.socketops import SocketType

log = logging.getLogger(__name__)

NewConnectionCallback = Callable[[socket.socket, IPAddress], Any]


class Acceptor:
    """Owns the listening socket and reports each accepted connection."""

    def __init__(self, loop: EventLoop, address: IPAddress) -> None:
        self.loop = loop
        self.address = address
        self.socket = Socket(SocketType.INET)
        self.socket.set_reuse_port(True)
        self.socket.set_tcp_no_delay(True)
        self.socket.set_keep_alive(True)
        self._callback: NewConnectionCallback | None = None
        self._listening = False

    @property
    def listening(self) -> bool:
        return self._listening

    def listen(self) -> None:
        """Bind, listen and start watching for incoming connections."""
        self._listening = True
        self.socket.bind(self.address)
        self.socket.listen()
        self.loop.register(self.socket.socket, selectors.EVENT_READ, self._on_readable)

    def _on_readable(self, mask: int) -> None:
        self.handle_event()

    def handle_event(self) -> None:
        """Accept every pending connection and pass each to the callback."""
        while True:
            accepted = self.socket.accept()
            if accepted is None:
                log.debug("no more pending connections")
                return
            conn, peer = accepted
            if self._callback is not None:
                self._callback(conn, peer)
            else:
                conn.close()

    def set_connection_callback(self, callback: NewConnectionCallback) -> None:
        """Set the new-connection callback; ignored once listening has started."""
        if not self._listening:
            self._callback = callback