"""Socket addresses for TCP/IPv4 and Unix-domain endpoints."""

from __future__ import annotations

import os
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar

# sun_path holds 108 bytes including the terminating NUL.
UNIX_PATH_MAX = 107


class Address(ABC):
    """An endpoint that a socket can bind or connect to."""

    family: ClassVar[int]

    @abstractmethod
    def sockaddr(self):
        """Return the address in the form the socket module expects."""


@dataclass
class IPAddress(Address):
    """An IPv4 address and port; the default address is INADDR_ANY."""

    port: int = 0
    ip: str = "0.0.0.0"

    family: ClassVar[int] = socket.AF_INET

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"port {self.port} is out of range")
        try:
            socket.inet_pton(socket.AF_INET, self.ip)
        except (OSError, TypeError) as exc:
            raise ValueError(f"invalid IPv4 address {self.ip!r}") from exc

    @classmethod
    def from_sockaddr(cls, sockaddr) -> IPAddress:
        """Build from a ``(host, port)`` tuple as returned by the socket module."""
        host, port = sockaddr[0], sockaddr[1]
        return cls(port=port, ip=host)

    def sockaddr(self) -> tuple[str, int]:
        self._validate()
        return self.ip, self.port

    def __str__(self) -> str:
        return f"{self.ip}:{self.port}"


@dataclass
class UnixAddress(Address):
    """A Unix-domain socket path."""

    path: str = ""

    family: ClassVar[int] = socket.AF_UNIX

    def sockaddr(self) -> str:
        """Return the path, cut to the bytes that fit in sun_path."""
        raw = os.fsencode(self.path)[:UNIX_PATH_MAX]
        return os.fsdecode(raw)

    def __str__(self) -> str:
        return self.path