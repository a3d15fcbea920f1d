"""Forwarding dynamic requests to a FastCGI peer and relaying its answer."""

from __future__ import annotations

import logging
import struct
from typing import Any

from platinum.address import IPAddress, UnixAddress
from platinum.config import Config, get_config
from platinum.connection import Connection, ParserType
from platinum.handler import Handler, Request, Response, ResponseBuilder
from platinum.static_handler import SERVER_NAME, http_date
from platinum.tcp_server import current_server

log = logging.getLogger(__name__)

FCGI_VERSION = 1
FCGI_BEGIN_REQUEST = 1
FCGI_END_REQUEST = 3
FCGI_PARAMS = 4
FCGI_STDIN = 5
FCGI_STDOUT = 6
FCGI_STDERR = 7
FCGI_RESPONDER = 1
_MAX_CONTENT = 0xFFFF
_HEADER = struct.Struct(">BBHHBx")


def _record(kind: int, request_id: int, content: bytes = b"") -> bytes:
    return _HEADER.pack(FCGI_VERSION, kind, request_id, len(content), 0) + content


def _stream(kind: int, request_id: int, content: bytes) -> bytes:
    parts = [
        _record(kind, request_id, content[start:start + _MAX_CONTENT])
        for start in range(0, len(content), _MAX_CONTENT)
    ]
    parts.append(_record(kind, request_id))
    return b"".join(parts)


def _length(n: int) -> bytes:
    return bytes([n]) if n < 128 else struct.pack(">I", n | 0x80000000)


def _encode_pairs(params: dict[str, str]) -> bytes:
    out = bytearray()
    for name, value in params.items():
        key, val = name.encode(), value.encode()
        out += _length(len(key)) + _length(len(val)) + key + val
    return bytes(out)


def build_request_records(request_id: int, params: dict[str, str], body: bytes) -> bytes:
    """Serialise a complete responder request: begin, params and stdin streams."""
    begin = _record(FCGI_BEGIN_REQUEST, request_id, struct.pack(">HB5x", FCGI_RESPONDER, 0))
    return begin + _stream(FCGI_PARAMS, request_id, _encode_pairs(params)) + _stream(
        FCGI_STDIN, request_id, body
    )


class _ResponseParser:
    """Incremental parser for the records a FastCGI responder sends back."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._head = bytearray()
        self._headers_done = False
        self.key_value: dict[str, str] = {}
        self.data = b""
        self.end = False
        self.complete = False

    def feed(self, data: bytes) -> int:
        """Consume whole records from ``data``; return the bytes used."""
        self.key_value = {}
        self.end = False
        out = bytearray()
        consumed = 0
        while len(data) - consumed >= _HEADER.size:
            _, kind, _, length, padding = _HEADER.unpack_from(data, consumed)
            total = _HEADER.size + length + padding
            if len(data) - consumed < total:
                break
            content = data[consumed + _HEADER.size:consumed + _HEADER.size + length]
            consumed += total
            if kind == FCGI_STDOUT:
                if not content:
                    self.end = True
                else:
                    out += self._stdout(content)
            elif kind == FCGI_STDERR and content:
                log.error("FastCGI peer: %s", content.decode("utf-8", "replace"))
            elif kind == FCGI_END_REQUEST:
                self.complete = True
        self.data = bytes(out)
        return consumed

    def _stdout(self, content: bytes) -> bytes:
        if self._headers_done:
            return content
        self._head += content
        idx = self._head.find(b"\r\n\r\n")
        if idx < 0:
            return b""
        head, rest = bytes(self._head[:idx]), bytes(self._head[idx + 4:])
        self._head.clear()
        self._headers_done = True
        for line in head.decode("latin-1").split("\r\n"):
            name, sep, value = line.partition(":")
            if sep:
                self.key_value[name.strip()] = value.strip()
        return rest


def build_params(request: Request, query_string: str, script_name: str) -> dict[str, str]:
    """Return the FastCGI parameters describing ``request``."""
    params = {
        "REQUEST_METHOD": request.method,
        "SCRIPT_FILENAME": script_name,
        "CONTENT_LENGTH": str(len(request.body)),
    }
    if request.method == "POST":
        params["CONTENT_TYPE"] = "application/x-www-form-urlencoded"
    else:
        params["QUERY_STRING"] = query_string
    return params


def build_response(headers: dict[str, str]) -> Response:
    """Build the chunked HTTP response head for headers sent by the peer."""
    builder = ResponseBuilder()
    builder.set_version(1, 1)
    builder.set_header("Date", http_date())
    builder.set_header("Connection", "keep-alive")
    builder.set_header("Server", SERVER_NAME)
    builder.set_header("Transfer-Encoding", "chunked")
    for name, value in headers.items():
        builder.set_header(name, value)
    status = headers.get("Status")
    code = 200
    if status is not None:
        first = status.split(maxsplit=1)[0] if status.split() else ""
        if first.isdigit():
            code = int(first)
    builder.set_status_code(code)
    return builder.get_response()


def chunk(data: bytes) -> bytes:
    """Frame ``data`` as one chunk of a chunked body."""
    return str(len(data)).encode() + b"\r\n" + bytes(data) + b"\r\n"


def fcgi_on_message(connection: Connection, data: bytes, parser: Any) -> int:
    """Relay what the FastCGI peer sent to the client connection it serves."""
    if parser is None:
        parser = connection.parser
        if parser is None:
            parser = connection.parser = _ResponseParser()
    consumed = parser.feed(data)
    server = current_server()
    forward = server.forward_connection(connection.forward_fd) if server else None
    if forward is not None and not forward.closed:
        if parser.key_value:
            forward.send_data(build_response(parser.key_value).build())
        if parser.data:
            forward.send_data(chunk(parser.data))
        if parser.end:
            forward.send_data(chunk(b""))
    if parser.complete:
        parser.reset()
        connection.shutdown()
    return consumed


class FCGIHandler(Handler):
    """Passes a request to the configured FastCGI peer."""

    def __init__(
        self,
        connection: Any,
        request: Request,
        query_string: str = "",
        file: str = "",
        path: str = "",
        config: Config | None = None,
    ) -> None:
        super().__init__(connection, request, query_string, file, path)
        self.config = config if config is not None else get_config()

    def serve(self) -> None:
        script_name = f"{self.config.fcgi_root}/{self.file}"
        params = build_params(self.request, self.query_string, script_name)
        request_id = (self.connection.fileno() & 0xFFFF) or 1
        records = build_request_records(request_id, params, bytes(self.request.body))

        server = current_server()
        if server is None:
            raise RuntimeError("no server in this thread")
        if self.config.is_inet_addr():
            address = IPAddress(self.config.fcgi_inet_port, self.config.fcgi_inet_ip)
        else:
            address = UnixAddress(self.config.fcgi_unix_addr)
        connector = server.new_connector(address, ParserType.FCGI)
        connector.connection.parser = _ResponseParser()
        connector.forward_fd = self.connection.fileno()

        sent = False

        def send_request() -> None:
            nonlocal sent
            if not sent:
                sent = True
                connector.send_data(records)

        connector.set_write_callback(send_request)
        connector.set_message_callback(fcgi_on_message)
        connector.start()