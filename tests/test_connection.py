import os
import selectors
import socket
import time

import pytest

from platinum.connection import Connection, EventLoop, ParserType
from platinum.socketops import SocketError


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    b.settimeout(2)
    yield a, b
    a.close()
    b.close()


def pump(loop, until, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not until():
        if time.monotonic() > deadline:
            raise AssertionError("timed out")
        loop.run_once(0.05)


def drain(loop, peer, size, timeout=10.0):
    peer.setblocking(False)
    received = bytearray()
    deadline = time.monotonic() + timeout
    while len(received) < size and time.monotonic() < deadline:
        loop.run_once(0.01)
        try:
            chunk = peer.recv(65536)
        except BlockingIOError:
            continue
        if not chunk:
            break
        received += chunk
    return bytes(received)


def test_event_loop_dispatches_ready_mask(pair):
    a, b = pair
    loop = EventLoop()
    seen = []
    loop.register(a, selectors.EVENT_READ, seen.append)
    b.send(b"x")
    assert loop.run_once(1) == 1
    assert seen == [selectors.EVENT_READ]


def test_event_loop_unregister_reports_membership(pair):
    a, _ = pair
    loop = EventLoop()
    assert loop.unregister(a) is False
    loop.register(a, selectors.EVENT_READ, lambda mask: None)
    assert loop.unregister(a) is True


def test_event_loop_stop_ends_loop(pair):
    a, _ = pair
    loop = EventLoop()
    calls = []

    def on_writable(mask):
        calls.append(mask)
        loop.stop()

    loop.register(a, selectors.EVENT_WRITE, on_writable)
    loop.loop()
    assert calls == [selectors.EVENT_WRITE]


def test_run_once_without_sockets_handles_nothing():
    assert EventLoop().run_once(0) == 0


def test_message_callback_receives_data_and_parser(pair):
    a, b = pair
    loop = EventLoop()
    parser = object()
    conn = Connection(loop, a, ParserType.HTTP, parser)
    records = []

    def on_message(connection, data, p):
        records.append((connection, data, p))
        return len(data)

    conn.message_callback = on_message
    conn.connection_established()
    request = b"GET / HTTP/1.1\r\n\r\n"
    b.sendall(request)
    pump(loop, lambda: records)
    assert records[0] == (conn, request, parser)


def test_unconsumed_bytes_are_kept(pair):
    a, b = pair
    loop = EventLoop()
    conn = Connection(loop, a)
    calls = []

    def on_message(connection, data, parser):
        calls.append(data)
        return 0 if len(calls) == 1 else len(data)

    conn.message_callback = on_message
    conn.connection_established()
    b.sendall(b"ab")
    pump(loop, lambda: len(calls) == 1)
    b.sendall(b"cd")
    pump(loop, lambda: len(calls) == 2)
    assert calls == [b"ab", b"abcd"]


def test_send_data_round_trip(pair):
    a, b = pair
    conn = Connection(EventLoop(), a)
    conn.send_data(b"hello")
    assert conn.fileno() == a.fileno()
    assert b.recv(16) == b"hello"


def test_large_send_is_queued_and_flushed(pair):
    a, b = pair
    loop = EventLoop()
    conn = Connection(loop, a)
    conn.connection_established()
    data = os.urandom(4 * 1024 * 1024)
    conn.send_data(data)
    assert drain(loop, b, len(data)) == data


def test_send_file_whole(pair, tmp_path):
    a, b = pair
    loop = EventLoop()
    content = os.urandom(200 * 1024)
    path = tmp_path / "page.bin"
    path.write_bytes(content)
    conn = Connection(loop, a)
    conn.connection_established()
    conn.send_file(str(path), len(content))
    assert drain(loop, b, len(content)) == content


def test_send_file_respects_total(pair, tmp_path):
    a, b = pair
    loop = EventLoop()
    path = tmp_path / "page.txt"
    path.write_bytes(b"0123456789abcdef")
    conn = Connection(loop, a)
    conn.send_file(str(path), 10)
    conn.send_data(b"|")
    assert drain(loop, b, 11) == b"0123456789|"


def test_send_file_missing_raises(pair, tmp_path):
    a, _ = pair
    conn = Connection(EventLoop(), a)
    with pytest.raises(FileNotFoundError):
        conn.send_file(str(tmp_path / "absent.html"), 10)


def test_peer_close_triggers_close_callback(pair):
    a, b = pair
    loop = EventLoop()
    conn = Connection(loop, a)
    fd = conn.fileno()
    closed = []
    conn.close_callback = closed.append
    conn.connection_established()
    b.close()
    pump(loop, lambda: closed)
    assert closed == [fd]
    assert conn.closed


def test_force_close_waits_for_pending_writes(pair):
    a, b = pair
    loop = EventLoop()
    conn = Connection(loop, a)
    closed = []
    conn.close_callback = closed.append
    conn.connection_established()
    data = os.urandom(4 * 1024 * 1024)
    conn.send_data(data)
    conn.force_close()
    assert closed == []
    assert drain(loop, b, len(data) + 1) == data
    assert conn.closed
    assert closed == [conn.fileno()]


def test_force_close_without_pending_closes_now(pair):
    a, _ = pair
    conn = Connection(EventLoop(), a)
    closed = []
    conn.close_callback = closed.append
    conn.force_close()
    assert closed == [conn.fileno()]
    assert conn.closed


def test_shutdown_sends_eof(pair):
    a, b = pair
    conn = Connection(EventLoop(), a)
    conn.shutdown()
    assert conn.fileno() == a.fileno()
    assert b.recv(1) == b""


def test_write_callback_runs_when_writable(pair):
    a, _ = pair
    loop = EventLoop()
    conn = Connection(loop, a)
    calls = []
    conn.write_callback = lambda: calls.append(True)
    conn.connection_established()
    loop.run_once(1)
    assert calls == [True]


def test_connection_destroyed_unregisters_and_closes(pair):
    a, b = pair
    loop = EventLoop()
    conn = Connection(loop, a)
    fd = conn.fileno()
    conn.connection_established()
    conn.connection_destroyed()
    b.sendall(b"late")
    assert conn.closed
    assert loop.run_once(0) == 0
    assert conn.fileno() == fd


def test_send_after_close_raises(pair):
    a, _ = pair
    conn = Connection(EventLoop(), a)
    conn.connection_destroyed()
    with pytest.raises(SocketError):
        conn.send_data(b"x")


def test_parser_type_is_validated(pair):
    a, _ = pair
    assert Connection(EventLoop(), a, "fcgi").parser_type is ParserType.FCGI
    with pytest.raises(ValueError):
        Connection(EventLoop(), a, "bogus")