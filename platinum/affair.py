"""Dispatching one HTTP request to the static or the FastCGI handler."""

from __future__ import annotations

import logging
from typing import Any

from platinum.config import Config, get_config
from platinum.connection import Connection
from platinum.fcgi_handler import FCGIHandler
from platinum.handler import Handler, Request
from platinum.static_handler import StaticHandler

log = logging.getLogger(__name__)


def _end_of_path(url: str) -> int:
    pos = url.find("?")
    return pos if pos >= 0 else len(url)


def split_url(url: str, index: str) -> tuple[str, str]:
    """Split the path part of ``url`` into directory and file (``index`` if empty)."""
    end = _end_of_path(url)
    slash = url.rfind("/", 0, end)
    file = url[slash + 1:end]
    path = url[:slash] if slash >= 0 else ""
    return path, file or index


def url_suffix(url: str) -> str:
    """Return what follows the last dot in the path part of ``url``."""
    end = _end_of_path(url)
    dot = url.rfind(".", 0, end)
    return url[dot + 1:end]


def url_query_string(url: str) -> str:
    """Return what follows the first '?', or ""."""
    _, sep, query = url.partition("?")
    return query if sep else ""


class Affair:
    """One request on a connection, bound to the handler that serves it."""

    def __init__(self, connection: Any, request: Request, config: Config | None = None) -> None:
        self.connection = connection
        self.request = request
        self.config = config if config is not None else get_config()
        self.path, self.file = split_url(request.url, self.config.index)
        self.suffix = url_suffix(request.url)
        self.query_string = url_query_string(request.url)
        kind = FCGIHandler if request.method == "POST" or self.query_string else StaticHandler
        self.handler: Handler = kind(
            connection, request, self.query_string, self.file, self.path, config=self.config
        )

    def serve(self) -> None:
        self.handler.serve()

    def is_dynamic_resource(self) -> bool:
        return self.suffix in self.config.dynamic_resource


def _parse_request(data: bytes) -> tuple[Request, int] | None:
    """Parse one request from the start of ``data``; None if it is incomplete."""
    end = data.find(b"\r\n\r\n")
    if end < 0:
        return None
    lines = data[:end].decode("latin-1").split("\r\n")
    parts = lines[0].split()
    if len(parts) != 3 or not parts[2].startswith("HTTP/"):
        raise ValueError(f"malformed request line {lines[0]!r}")
    method, url, version_text = parts
    major, _, minor = version_text[5:].partition(".")
    if not (major.isdigit() and minor.isdigit()):
        raise ValueError(f"malformed HTTP version {version_text!r}")
    headers: dict[str, str] = {}
    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if not sep:
            raise ValueError(f"malformed header line {line!r}")
        headers[name.strip()] = value.strip()
    length_text = next((v for k, v in headers.items() if k.lower() == "content-length"), "0")
    if not length_text.isdigit():
        raise ValueError(f"bad Content-Length {length_text!r}")
    body_start = end + 4
    body_end = body_start + int(length_text)
    if len(data) < body_end:
        return None
    request = Request(method, url, (int(major), int(minor)), headers, bytes(data[body_start:body_end]))
    return request, body_end


def on_message(connection: Connection, data: bytes, parser: Any) -> int:
    """Serve every complete request in ``data``; return the bytes consumed."""
    consumed = 0
    while consumed < len(data) and not getattr(connection, "closed", False):
        try:
            parsed = _parse_request(data[consumed:])
        except ValueError as exc:
            log.error("bad request: %s", exc)
            connection.force_close()
            return len(data)
        if parsed is None:
            break
        request, used = parsed
        consumed += used
        Affair(connection, request).serve()
    return consumed