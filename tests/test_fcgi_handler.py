import socket
import struct

import pytest

from platinum.address import IPAddress
from platinum.config import Config
from platinum.connection import Connection, EventLoop
from platinum.fcgi_handler import (
    FCGIHandler,
    build_params,
    build_response,
    chunk,
    fcgi_on_message,
)
from platinum.handler import Request
from platinum.tcp_server import TcpServer


def rec(kind, content=b""):
    return struct.pack(">BBHHBx", 1, kind, 1, len(content), 0) + content


def make_config(unix_path):
    return Config(
        port=0, thread_num=1, log_enable=False, index="index.html",
        www_root="/tmp", default_root="/tmp", fcgi_root="/srv",
        fcgi_listen_sock="unix", fcgi_inet_ip="", fcgi_inet_port=0,
        fcgi_unix_addr=str(unix_path),
        method_list=frozenset({"GET", "POST"}), static_resource=frozenset(),
        dynamic_resource=frozenset({"php"}), forbidden_resource=frozenset(),
    )


@pytest.fixture
def server():
    srv = TcpServer(EventLoop(), IPAddress(0, "127.0.0.1"))
    yield srv
    srv.close()


def test_chunk():
    assert chunk(b"abc") == b"3\r\nabc\r\n"
    assert chunk(b"") == b"0\r\n\r\n"


def test_build_params_get():
    params = build_params(Request(method="GET"), "a=1", "/srv/x.php")
    assert params["QUERY_STRING"] == "a=1"
    assert params["SCRIPT_FILENAME"] == "/srv/x.php"
    assert "CONTENT_TYPE" not in params


def test_build_params_post():
    params = build_params(Request(method="POST", body=b"a=1&b=2"), "", "/srv/x.php")
    assert params["CONTENT_TYPE"] == "application/x-www-form-urlencoded"
    assert params["CONTENT_LENGTH"] == str(len(b"a=1&b=2"))
    assert "QUERY_STRING" not in params


def test_build_response_defaults_to_ok():
    resp = build_response({"Content-Type": "text/html"})
    assert resp.status_code == 200
    assert resp.headers["Transfer-Encoding"] == "chunked"
    assert resp.headers["Content-Type"] == "text/html"


def test_build_response_uses_status():
    assert build_response({"Status": "404 Not Found"}).status_code == 404


def test_on_message_relays_to_client(server):
    a, b = socket.socketpair()
    c, d = socket.socketpair()
    client = Connection(server.loop, a)
    server.connections[client.fileno()] = client
    peer = Connection(server.loop, c)
    peer.forward_fd = client.fileno()
    payload = rec(6, b"Content-Type: text/html\r\n\r\nhi") + rec(6) + rec(3, b"\0" * 8)
    used = fcgi_on_message(peer, payload, None)
    assert used == len(payload)
    b.settimeout(2)
    got = b.recv(4096)
    assert got.startswith(b"HTTP/1.1 200")
    assert got.endswith(b"2\r\nhi\r\n0\r\n\r\n")
    for s in (b, d):
        s.close()
    client.connection_destroyed()
    peer.connection_destroyed()


def test_on_message_keeps_partial_record(server):
    c, d = socket.socketpair()
    peer = Connection(server.loop, c)
    payload = rec(6, b"abc")
    assert fcgi_on_message(peer, payload[:5], None) == 0
    peer.connection_destroyed()
    d.close()


def test_serve_sends_request_records(server, tmp_path):
    path = tmp_path / "f.sock"
    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    listener.bind(str(path))
    listener.listen(4)
    a, b = socket.socketpair()
    client = Connection(server.loop, a)
    handler = FCGIHandler(client, Request(method="GET", url="/x.php?a=1"), "a=1",
                          "x.php", "", config=make_config(path))
    handler.serve()
    for _ in range(10):
        server.loop.run_once(0.05)
    listener.settimeout(2)
    conn, _ = listener.accept()
    conn.settimeout(2)
    data = conn.recv(65536)
    assert data[:2] == b"\x01\x01"
    assert b"SCRIPT_FILENAME" in data and b"/srv/x.php" in data
    for s in (conn, listener, b):
        s.close()
    client.connection_destroyed()