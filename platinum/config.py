"""Server configuration loaded from a YAML document."""

from __future__ import annotations

import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_PATH = Path("/etc/platinum.yaml")

_SERVER_KEYS = ("port", "thread", "method")
_FCGI_KEYS = ("listen", "addr", "fcgi-root")
_RESOURCE_KEYS = ("static", "dynamic", "forbidden", "www-root", "default-root", "index")

_STRTOL = re.compile(r"\s*([+-]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)")


class ConfigError(ValueError):
    """Raised when the configuration is missing, malformed or inconsistent."""


def _strtol(text: str) -> int:
    """Parse a leading integer the way strtol does with base 0; 0 if none."""
    match = _STRTOL.match(text)
    if match is None:
        return 0
    sign, digits = match.groups()
    if digits[:2].lower() == "0x":
        value = int(digits, 16)
    elif digits.startswith("0"):
        value = int(digits, 8)
    else:
        value = int(digits, 10)
    return -value if sign == "-" else value


def _section(root: Mapping, key: str, keys: tuple[str, ...]) -> Mapping:
    node = root.get(key)
    if not isinstance(node, Mapping) or len(node) != len(keys):
        raise ConfigError(f"section {key!r} must be a mapping with exactly {len(keys)} entries")
    missing = [name for name in keys if name not in node]
    if missing:
        raise ConfigError(f"section {key!r} lacks {', '.join(missing)}")
    return node


def _string(value: Any, where: str) -> str:
    if value is None or isinstance(value, (Mapping, list)):
        raise ConfigError(f"{where} must be a scalar")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _string_set(value: Any, where: str) -> frozenset[str]:
    if not isinstance(value, list):
        raise ConfigError(f"{where} must be a sequence")
    return frozenset(_string(item, where) for item in value)


def _int(value: Any, where: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{where} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ConfigError(f"{where} must be an integer")


def _port(value: Any, where: str) -> int:
    port = _int(value, where)
    if not 0 <= port <= 0xFFFF:
        raise ConfigError(f"{where} must be between 0 and 65535")
    return port


def _bool(value: Any, where: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{where} must be a boolean")
    return value


@dataclass(frozen=True)
class Config:
    """Settings for the server, the FastCGI peer and the served resources."""

    port: int
    thread_num: int
    log_enable: bool
    index: str
    www_root: str
    default_root: str
    fcgi_root: str
    fcgi_listen_sock: str
    fcgi_inet_ip: str
    fcgi_inet_port: int
    fcgi_unix_addr: str
    method_list: frozenset[str]
    static_resource: frozenset[str]
    dynamic_resource: frozenset[str]
    forbidden_resource: frozenset[str]

    @classmethod
    def from_mapping(cls, data: Any) -> Config:
        """Build a configuration from an already parsed YAML document."""
        if not isinstance(data, Mapping):
            raise ConfigError("configuration must be a mapping")
        if not data.get("server"):
            raise ConfigError("configuration lacks a 'server' section")

        fcgi = _section(data, "fcgi", _FCGI_KEYS)
        server = _section(data, "server", _SERVER_KEYS)
        resource = _section(data, "resource", _RESOURCE_KEYS)

        if "log_enable" not in data:
            raise ConfigError("configuration lacks 'log_enable'")

        listen = _string(fcgi["listen"], "fcgi.listen")
        addr = _string(fcgi["addr"], "fcgi.addr")
        inet_ip, inet_port, unix_addr = "", 0, ""
        if listen == "unix":
            unix_addr = addr
        elif listen == "inet":
            colon = addr.find(":")
            if colon < 0:
                inet_ip, port_text = addr, addr
            else:
                inet_ip, port_text = addr[:colon], addr[colon + 1:]
            inet_port = _strtol(port_text) & 0xFFFF
        else:
            raise ConfigError("You must set unix/inet listen socket")

        return cls(
            port=_port(server["port"], "server.port"),
            thread_num=_int(server["thread"], "server.thread"),
            log_enable=_bool(data["log_enable"], "log_enable"),
            index=_string(resource["index"], "resource.index"),
            www_root=_string(resource["www-root"], "resource.www-root"),
            default_root=_string(resource["default-root"], "resource.default-root"),
            fcgi_root=_string(fcgi["fcgi-root"], "fcgi.fcgi-root"),
            fcgi_listen_sock=listen,
            fcgi_inet_ip=inet_ip,
            fcgi_inet_port=inet_port,
            fcgi_unix_addr=unix_addr,
            method_list=_string_set(server["method"], "server.method"),
            static_resource=_string_set(resource["static"], "resource.static"),
            dynamic_resource=_string_set(resource["dynamic"], "resource.dynamic"),
            forbidden_resource=_string_set(resource["forbidden"], "resource.forbidden"),
        )

    def is_inet_addr(self) -> bool:
        """True when the FastCGI peer listens on a TCP address."""
        return self.fcgi_listen_sock == "inet"

    def is_unix_addr(self) -> bool:
        """True when the FastCGI peer listens on a Unix socket."""
        return self.fcgi_listen_sock == "unix"


def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> Config:
    """Read and validate the YAML configuration file at ``path``."""
    try:
        with open(path, encoding="utf-8") as stream:
            document = yaml.safe_load(stream)
    except OSError as exc:
        raise ConfigError(f"cannot read configuration {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    return Config.from_mapping(document)


_lock = threading.Lock()
_instance: Config | None = None


def get_config() -> Config:
    """Return the process-wide configuration, loading it on first use."""
    global _instance
    with _lock:
        if _instance is None:
            _instance = load_config(DEFAULT_CONFIG_PATH)
        return _instance


def set_config(config: Config | None) -> None:
    """Install ``config`` as the process-wide configuration (None clears it)."""
    global _instance
    with _lock:
        _instance = config