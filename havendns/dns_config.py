"""Listener and upstream nameserver settings."""

from __future__ import annotations

import enum
import ipaddress
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

SocketAddr = tuple[str, int]


def parse_socket_addr(text: str) -> SocketAddr:
    """Parse ``a.b.c.d:port`` or ``[v6]:port`` into a (host, port) pair."""
    if not isinstance(text, str):
        raise ValueError("socket address must be a string")
    host, sep, port_text = text.rpartition(":")
    try:
        if host.startswith("[") and host.endswith("]"):
            ip: ipaddress.IPv4Address | ipaddress.IPv6Address = ipaddress.IPv6Address(host[1:-1])
        else:
            ip = ipaddress.IPv4Address(host)
    except ValueError as exc:
        raise ValueError(f"invalid socket address: {text!r}") from exc
    if not sep or not (port_text.isascii() and port_text.isdigit()):
        raise ValueError(f"invalid port in socket address: {text!r}")
    if int(port_text) > 0xFFFF:
        raise ValueError(f"port out of range in socket address: {text!r}")
    return str(ip), int(port_text)


def _format_socket_addr(addr: SocketAddr) -> str:
    host, port = addr
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


class NameServerKind(enum.Enum):
    """How an upstream nameserver is reached."""

    UDP = "udp"
    DOH = "doh"


@dataclass(frozen=True)
class NameServer:
    """An upstream: a socket address for UDP, a URL for DNS over HTTPS."""

    kind: NameServerKind
    value: SocketAddr | str

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> NameServer:
        """Build from a ``{type = ..., value = ...}`` table."""
        if not isinstance(data, Mapping) or "type" not in data or "value" not in data:
            raise ValueError("nameserver needs 'type' and 'value'")
        try:
            kind = NameServerKind(data["type"])
        except ValueError as exc:
            raise ValueError(f"unknown nameserver type: {data['type']!r}") from exc
        value = data["value"]
        if kind is NameServerKind.UDP:
            return NameServer(kind, parse_socket_addr(value))
        if not isinstance(value, str):
            raise ValueError("DoH nameserver value must be a URL string")
        return NameServer(kind, value)

    def to_dict(self) -> dict[str, str]:
        """Return the ``{type, value}`` table form."""
        value = self.value if isinstance(self.value, str) else _format_socket_addr(self.value)
        return {"type": self.kind.value, "value": value}


@dataclass(frozen=True)
class UpstreamConfig:
    """The address to listen on and the upstreams to forward to."""

    listen: SocketAddr
    upstream_nameservers: list[NameServer] = field(default_factory=list)

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> UpstreamConfig:
        """Build from a parsed configuration table."""
        if not isinstance(data, Mapping) or "listen" not in data or "upstream_nameservers" not in data:
            raise ValueError("dns config needs 'listen' and 'upstream_nameservers'")
        servers = data["upstream_nameservers"]
        if not isinstance(servers, list):
            raise ValueError("'upstream_nameservers' must be a list")
        return UpstreamConfig(
            parse_socket_addr(data["listen"]), [NameServer.from_dict(item) for item in servers]
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the config as a plain table."""
        return {
            "listen": _format_socket_addr(self.listen),
            "upstream_nameservers": [server.to_dict() for server in self.upstream_nameservers],
        }