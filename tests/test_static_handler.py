import re
import time

import pytest

from platinum.config import Config
from platinum.handler import Request
from platinum.static_handler import StaticHandler, http_date, mime_type


class FakeConnection:
    def __init__(self):
        self.sent = []
        self.files = []
        self.closed = False

    def send_data(self, data):
        self.sent.append(bytes(data))

    def send_file(self, pathname, total):
        self.files.append((pathname, total))

    def force_close(self):
        self.closed = True


@pytest.fixture
def site(tmp_path):
    www = tmp_path / "www"
    default = tmp_path / "default"
    (www / "docs").mkdir(parents=True)
    (www / "private").mkdir()
    default.mkdir()
    (www / "docs" / "page.html").write_bytes(b"<p>hello</p>")
    (www / "docs" / "style.css").write_bytes(b"body{}")
    (www / "docs" / "big.txt").write_bytes(b"a" * (6 * 1024))
    (www / "private" / "page.html").write_bytes(b"hidden")
    for code in ("403", "404", "501"):
        (default / f"{code}.html").write_bytes(f"error {code}".encode())
    config = Config(
        port=8080,
        thread_num=1,
        log_enable=False,
        index="index.html",
        www_root=str(www),
        default_root=str(default),
        fcgi_root=str(tmp_path / "fcgi"),
        fcgi_listen_sock="unix",
        fcgi_inet_ip="",
        fcgi_inet_port=0,
        fcgi_unix_addr=str(tmp_path / "fcgi.sock"),
        method_list=frozenset({"GET", "HEAD"}),
        static_resource=frozenset({"html", "css"}),
        dynamic_resource=frozenset({"php"}),
        forbidden_resource=frozenset({"private"}),
    )
    return config, www, default


def _head(conn):
    text = conn.sent[0].decode("utf-8")
    assert text.endswith("\r\n\r\n")
    lines = text[:-4].split("\r\n")
    return lines[0], dict(line.split(": ", 1) for line in lines[1:])


def _serve(config, method="GET", file="page.html", path="/docs", headers=None):
    conn = FakeConnection()
    request = Request(method=method, url=f"{path}/{file}", headers=headers or {})
    handler = StaticHandler(conn, request, "", file, path, config=config)
    handler.serve()
    return conn, handler


@pytest.mark.parametrize(
    "suffix,expected",
    [
        (".html", "text/html"),
        (".css", "text/css"),
        (".jpg", "image/jpeg"),
        (".png", "image/png"),
        (".dwf", "Model/vnd.dwf"),
        (".IVF", "video/x-ivf"),
        (".HTML", "text/plain"),
        (".nothing", "text/plain"),
        ("", "text/plain"),
    ],
)
def test_mime_type(suffix, expected):
    assert mime_type(suffix) == expected


def test_http_date_shape():
    value = http_date()
    assert len(value) == 29
    assert value[-4:] == " GMT"
    assert value[:3] in {"Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"}
    assert bool(
        re.fullmatch(
            r"(Mon|Tue|Wed|Thu|Fri|Sat|Sun), \d\d [A-Z][a-z]{2} \d{4} \d\d:\d\d:\d\d GMT",
            value,
        )
    ) is True


def test_http_date_fixed_local_time():
    when = time.mktime((2019, 2, 9, 12, 34, 56, 0, 0, -1))
    assert http_date(when) == "Sat, 09 Feb 2019 12:34:56 GMT"


def test_serves_small_file(site):
    config, _, _ = site
    conn, handler = _serve(config)
    status_line, headers = _head(conn)
    assert status_line.startswith("HTTP/1.1 200")
    assert headers["Content-Type"] == "text/html"
    assert headers["Server"] == "platinum/2.0"
    assert headers["Content-Length"] == str(len(b"<p>hello</p>"))
    assert b"".join(conn.sent[1:]) == b"<p>hello</p>"
    assert handler.file_size == len(b"<p>hello</p>")
    assert conn.closed is True


def test_content_type_from_suffix(site):
    config, _, _ = site
    conn, _ = _serve(config, file="style.css")
    assert _head(conn)[1]["Content-Type"] == "text/css"


def test_keep_alive_leaves_connection_open(site):
    config, _, _ = site
    conn, _ = _serve(config, headers={"Connection": "Keep-Alive"})
    assert conn.closed is False
    assert _head(conn)[1]["Connection"] == "Keep-Alive"


def test_head_sends_only_the_head(site):
    config, _, _ = site
    conn, _ = _serve(config, method="HEAD")
    assert len(conn.sent) == 1
    assert _head(conn)[1]["Content-Length"] == str(len(b"<p>hello</p>"))


def test_missing_file_serves_404_page(site):
    config, _, default = site
    conn, handler = _serve(config, file="absent.html")
    assert _head(conn)[0].startswith("HTTP/1.1 404")
    assert handler.file == f"{default}/404.html"
    assert b"".join(conn.sent[1:]) == b"error 404"


def test_forbidden_directory_serves_403_page(site):
    config, _, _ = site
    conn, handler = _serve(config, path="/private")
    assert _head(conn)[0].startswith("HTTP/1.1 403")
    assert b"".join(conn.sent[1:]) == b"error 403"
    assert handler.forbidden() is True


def test_unknown_method_serves_501_page(site):
    config, _, _ = site
    conn, handler = _serve(config, method="DELETE")
    assert _head(conn)[0].startswith("HTTP/1.1 501")
    assert b"".join(conn.sent[1:]) == b"error 501"
    assert handler.is_valid() is False


def test_large_file_goes_through_send_file(site):
    config, www, _ = site
    conn, _ = _serve(config, file="big.txt")
    assert len(conn.sent) == 1
    assert conn.files == [(f"{www}/docs/big.txt", 6 * 1024)]


def test_large_file_head_sends_no_body(site):
    config, _, _ = site
    conn, _ = _serve(config, method="HEAD", file="big.txt")
    assert conn.files == []
    assert _head(conn)[1]["Content-Length"] == str(6 * 1024)


def test_predicates(site):
    config, _, _ = site
    request = Request(method="GET", url="/docs/page.html")
    handler = StaticHandler(FakeConnection(), request, "", "page.html", "/docs", config=config)
    assert handler.is_valid() is True
    assert handler.is_exist() is True
    assert handler.forbidden() is False
    missing = StaticHandler(FakeConnection(), request, "", "nope.html", "/docs", config=config)
    assert missing.is_exist() is False


def test_missing_error_page_raises(site, tmp_path):
    config, _, default = site
    (default / "404.html").unlink()
    with pytest.raises(FileNotFoundError):
        _serve(config, file="absent.html")