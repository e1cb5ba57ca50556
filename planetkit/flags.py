"""Parsers and formatters for command line flag values."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Mapping, Union

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

ETCD_PEER_PORT = 2380
ETCD_CLIENT_PORT = 2379

_TRUE_VALUES = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_VALUES = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def _split_host_port(text: str) -> tuple[str, str]:
    """Split ``host:port`` or ``[host]:port`` into its parts."""
    if text.startswith("["):
        end = text.find("]")
        if end < 0:
            raise ValueError(f"address {text}: missing ']' in address")
        host, rest = text[1:end], text[end + 1:]
        if not rest:
            raise ValueError(f"address {text}: missing port in address")
        if not rest.startswith(":"):
            raise ValueError(f"address {text}: unexpected text after host")
        port = rest[1:]
        if ":" in port:
            raise ValueError(f"address {text}: too many colons in address")
    else:
        colon = text.rfind(":")
        if colon < 0:
            raise ValueError(f"address {text}: missing port in address")
        host, port = text[:colon], text[colon + 1:]
        if ":" in host:
            raise ValueError(f"address {text}: too many colons in address")
        if "[" in host or "]" in host:
            raise ValueError(f"address {text}: unexpected bracket in address")
    if "[" in port or "]" in port:
        raise ValueError(f"address {text}: unexpected bracket in address")
    return host, port


def _parse_int(text: str) -> int:
    """Parse an integer whose base is implied by its prefix (0x, 0o, 0b, 0)."""
    sign = 1
    digits = text
    if digits[:1] in ("+", "-"):
        sign = -1 if digits[0] == "-" else 1
        digits = digits[1:]
    if not digits or digits != digits.strip():
        raise ValueError(f"invalid integer {text!r}")
    if len(digits) > 1 and digits[0] == "0" and digits[1].isdigit():
        value = int(digits[1:], 8)
    else:
        value = int(digits, 0)
    return sign * value


@dataclass(frozen=True)
class HostPort:
    """A ``host:port`` pair."""

    host: str
    port: int

    @classmethod
    def parse(cls, text: str) -> "HostPort":
        """Parse ``host:port``; raises ValueError on malformed input."""
        host, port = _split_host_port(text)
        return cls(host, _parse_int(port))

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def parse_key_val(value: str) -> dict[str, str]:
    """Parse a comma-separated list of ``key:value`` pairs."""
    result: dict[str, str] = {}
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, val = item.partition(":")
        if not sep:
            raise ValueError(f"expected key:value pair, got {item!r}")
        result[key] = val
    return result


def to_addr_list(store: Mapping[str, str]) -> list[str]:
    """Extract the address part of each ``domain=addr`` pair."""
    return list(store.values())


def to_etcd_peer_list(store: Mapping[str, str]) -> str:
    """Format each ``domain=addr`` pair as an etcd peer URL."""
    return ",".join(
        f"{domain}=https://{addr}:{ETCD_PEER_PORT}" for domain, addr in store.items()
    )


def to_etcd_gateway_list(store: Mapping[str, str]) -> str:
    """Format the addresses as endpoints for the etcd gateway."""
    return ",".join(f"{addr}:{ETCD_CLIENT_PORT}" for addr in store.values())


def to_key_value_list(store: Mapping[str, str]) -> str:
    """Combine key/value pairs into a comma-separated ``key:value`` list."""
    return ",".join(f"{key}:{value}" for key, value in store.items())


def parse_cidr(value: str) -> IPNetwork:
    """Parse a network CIDR, masking off host bits."""
    if "/" not in value:
        raise ValueError(f"invalid CIDR address: {value}")
    try:
        return ipaddress.ip_network(value, strict=False)
    except ValueError as err:
        raise ValueError(f"invalid CIDR address: {value}") from err


def parse_list(value: str) -> list[str]:
    """Split a comma-separated value into its non-empty, trimmed items."""
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_bool_flag(value: str) -> bool:
    """Parse a boolean flag value; an empty value means true."""
    if value == "":
        return True
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean value {value!r}")