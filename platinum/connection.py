"""Non-blocking stream connections driven by a selector-based event loop."""

from __future__ import annotations

import enum
import logging
import selectors
import socket
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from platinum.socketops import SocketError, shutdown_write

log = logging.getLogger(__name__)

READ_SIZE = 64 * 1024
FILE_CHUNK = 64 * 1024

EVENT_READ = selectors.EVENT_READ
EVENT_WRITE = selectors.EVENT_WRITE


class ParserType(enum.Enum):
    """The protocol a connection's incoming bytes are parsed as."""

    HTTP = "http"
    FCGI = "fcgi"


class EventLoop:
    """Dispatches readiness events on registered sockets to their callbacks."""

    def __init__(self, poll_interval: float = 0.1) -> None:
        self._selector = selectors.DefaultSelector()
        self.poll_interval = poll_interval
        self._running = False

    def register(self, sock, events: int, callback: Callable[[int], Any]) -> None:
        """Watch ``sock`` for ``events``; ``callback`` receives the ready mask."""
        self._selector.register(sock, events, callback)

    def modify(self, sock, events: int, callback: Callable[[int], Any]) -> None:
        self._selector.modify(sock, events, callback)

    def unregister(self, sock) -> bool:
        """Stop watching ``sock``; False if it was not registered."""
        try:
            self._selector.unregister(sock)
        except (KeyError, ValueError):
            return False
        return True

    def run_once(self, timeout: float | None = None) -> int:
        """Wait up to ``timeout`` seconds and dispatch ready events; return their number."""
        registered = self._selector.get_map()
        if not registered:
            if timeout:
                time.sleep(timeout)
            return 0
        handled = 0
        for key, mask in self._selector.select(timeout):
            current = self._selector.get_map().get(key.fd)
            # A callback earlier in this batch may have dropped or replaced the socket.
            if current is None or current.fileobj is not key.fileobj:
                continue
            current.data(mask & current.events)
            handled += 1
        return handled

    def loop(self) -> None:
        """Dispatch events until stop() is called."""
        self._running = True
        while self._running:
            self.run_once(self.poll_interval)

    def stop(self) -> None:
        self._running = False


class _DataTask:
    def __init__(self, data: bytes) -> None:
        self._view = memoryview(data)

    def write(self, sock: socket.socket) -> bool:
        while self._view:
            sent = sock.send(self._view)
            self._view = self._view[sent:]
        return True

    def discard(self) -> None:
        self._view = memoryview(b"")


class _FileTask:
    def __init__(self, pathname: str, total: int) -> None:
        self._file = open(pathname, "rb")
        self._offset = 0
        self._remaining = total
        if total <= 0:
            self.discard()

    def write(self, sock: socket.socket) -> bool:
        while self._remaining > 0:
            self._file.seek(self._offset)
            data = self._file.read(min(FILE_CHUNK, self._remaining))
            if not data:
                break
            sent = sock.send(data)
            self._offset += sent
            self._remaining -= sent
        self.discard()
        return True

    def discard(self) -> None:
        self._remaining = 0
        self._file.close()


class Connection:
    """A connected, non-blocking socket with a read buffer and a write queue."""

    def __init__(
        self,
        loop: EventLoop,
        sock: socket.socket,
        parser_type: ParserType | str = ParserType.HTTP,
        parser: Any = None,
    ) -> None:
        self.loop = loop
        self.socket = sock
        sock.setblocking(False)
        self.parser_type = ParserType(parser_type)
        self.parser = parser
        self.connection_callback: Callable[[], Any] | None = None
        self.message_callback: Callable[[Connection, bytes, Any], int] | None = None
        self.write_callback: Callable[[], Any] | None = None
        self.close_callback: Callable[[int], Any] | None = None
        self.forward_fd = -1
        self._fd = sock.fileno()
        self._read_buffer = bytearray()
        self._write_queue: deque[_DataTask | _FileTask] = deque()
        self._events = EVENT_READ
        self._registered = False
        self._closed = False
        self._close_pending = False
        self._dispatch = self._on_event

    @property
    def closed(self) -> bool:
        return self._closed

    def fileno(self) -> int:
        """The descriptor the connection was created with (stable after close)."""
        return self._fd

    def connection_established(self) -> None:
        """Start watching the socket for reading and writing."""
        self._events = EVENT_READ | EVENT_WRITE
        self.loop.register(self.socket, self._events, self._dispatch)
        self._registered = True

    def connection_destroyed(self) -> None:
        """Stop watching the socket, drop pending writes and close it."""
        if self._closed:
            return
        self._closed = True
        if self._registered:
            self.loop.unregister(self.socket)
            self._registered = False
        while self._write_queue:
            self._write_queue.popleft().discard()
        self.socket.close()

    def shutdown(self) -> None:
        """Half-close the connection: no more data will be sent."""
        if not self._closed:
            shutdown_write(self.socket)

    def force_close(self) -> None:
        """Close the connection once everything queued has been written."""
        if self._closed:
            return
        if self._write_queue:
            self._close_pending = True
            self._want_write(True)
        else:
            self.handle_close()

    def send_data(self, data: bytes) -> None:
        """Write ``data``, queuing whatever the socket cannot take right now."""
        self._check_open()
        self._write_queue.append(_DataTask(bytes(data)))
        self._drain()

    def send_file(self, pathname: str, total: int) -> None:
        """Write the first ``total`` bytes of the file at ``pathname``."""
        self._check_open()
        self._write_queue.append(_FileTask(pathname, total))
        self._drain()

    def handle_read(self) -> None:
        """Read all available bytes and hand the buffer to the message callback."""
        if self._closed:
            return
        eof = False
        while True:
            try:
                chunk = self.socket.recv(READ_SIZE)
            except BlockingIOError:
                break
            except ConnectionError as exc:
                log.error("read on fd %d failed: %s", self._fd, exc)
                eof = True
                break
            except OSError as exc:
                raise SocketError(exc.errno, f"read failed: {exc.strerror or exc}") from exc
            if not chunk:
                eof = True
                break
            self._read_buffer += chunk
        if self._read_buffer and self.message_callback is not None:
            consumed = self.message_callback(self, bytes(self._read_buffer), self.parser)
            if consumed and consumed > 0:
                del self._read_buffer[:consumed]
        if eof:
            self.handle_close()

    def handle_write(self) -> None:
        """Run the write callback, then flush the write queue."""
        if self._closed:
            return
        if self.write_callback is not None:
            self.write_callback()
        if self._closed:
            return
        if self._flush():
            self._want_write(False)
            if self._close_pending:
                self.handle_close()

    def handle_close(self) -> None:
        """Report the close to the owner and release the socket."""
        if self._closed:
            return
        if self.close_callback is not None:
            self.close_callback(self._fd)
        self.connection_destroyed()

    def _on_event(self, mask: int) -> None:
        if mask & EVENT_READ:
            self.handle_read()
        if mask & EVENT_WRITE and not self._closed:
            self.handle_write()

    def _check_open(self) -> None:
        if self._closed:
            raise SocketError(9, "connection is closed")

    def _drain(self) -> None:
        if not self._flush():
            self._want_write(True)

    def _flush(self) -> bool:
        while self._write_queue:
            try:
                self._write_queue[0].write(self.socket)
            except BlockingIOError:
                return False
            except OSError as exc:
                raise SocketError(exc.errno, f"write failed: {exc.strerror or exc}") from exc
            self._write_queue.popleft()
        return True

    def _want_write(self, on: bool) -> None:
        events = EVENT_READ | (EVENT_WRITE if on else 0)
        if events == self._events:
            return
        self._events = events
        if self._registered:
            self.loop.modify(self.socket, events, self._dispatch)