"""HTTP request and response values and the base class for request handlers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from http import HTTPStatus
from typing import Any


@dataclass
class Request:
    """A parsed HTTP request."""

    method: str = "GET"
    url: str = "/"
    version: tuple[int, int] = (1, 1)
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> str:
        """Return the value of header ``name`` (case-insensitive), or "" if absent."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return ""


def _reason(code: int) -> str:
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return ""


@dataclass
class Response:
    """An HTTP response head: status line and headers."""

    status_code: int = 200
    version: tuple[int, int] = (1, 1)
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def reason(self) -> str:
        return _reason(self.status_code)

    def build(self) -> bytes:
        """Serialise the status line and headers, ending with the blank line."""
        major, minor = self.version
        status_line = f"HTTP/{major}.{minor} {self.status_code} {self.reason}".rstrip()
        lines = [status_line]
        lines.extend(f"{name}: {value}" for name, value in self.headers.items())
        return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


def _check_header_text(text: str, what: str) -> str:
    text = str(text)
    if "\r" in text or "\n" in text:
        raise ValueError(f"header {what} must not contain line breaks")
    return text


class ResponseBuilder:
    """Accumulates the parts of a response head."""

    def __init__(self) -> None:
        self._response = Response()

    def set_status_code(self, code: int) -> None:
        if isinstance(code, bool) or not isinstance(code, int) or not 100 <= code <= 999:
            raise ValueError(f"invalid status code {code!r}")
        self._response.status_code = code

    def set_version(self, major: int, minor: int) -> None:
        if major < 0 or minor < 0:
            raise ValueError("HTTP version numbers must not be negative")
        self._response.version = (major, minor)

    def set_header(self, name: str, value: Any) -> None:
        name = _check_header_text(name, "name")
        if not name or ":" in name:
            raise ValueError(f"invalid header name {name!r}")
        self._response.headers[name] = _check_header_text(value, "value")

    def get_response(self) -> Response:
        """Return a snapshot of the response built so far."""
        return replace(self._response, headers=dict(self._response.headers))


class Handler(ABC):
    """Serves one request on a client connection."""

    def __init__(
        self,
        connection: Any,
        request: Request,
        query_string: str = "",
        file: str = "",
        path: str = "",
    ) -> None:
        self.connection = connection
        self.request = request
        self.query_string = query_string
        self.file = file
        self.path = path

    def _set_new_file(self, file: str) -> None:
        self.file = file

    @abstractmethod
    def serve(self) -> None:
        """Produce the response for the request on the connection."""