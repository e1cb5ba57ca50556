"""Reading and writing resolver configuration in resolv.conf format."""

from __future__ import annotations

import io
import re
from dataclasses import dataclass, field
from typing import IO, Iterable, Union

DEFAULT_NAMESERVERS = ("127.0.0.1", "::1")
MAX_NAMESERVERS = 3

_NDOTS_PREFIX = "ndots:"
_TIMEOUT_PREFIX = "timeout:"
_ATTEMPTS_PREFIX = "attempts:"
_ROTATE = "rotate"
_LOOKUP = "lookup"
_NAMESERVER = "nameserver"
_DOMAIN = "domain"
_SEARCH = "search"
_OPTIONS = "options"

_INTEGER = re.compile(r"[+-]?\d+")


@dataclass
class DNSConfig:
    """Resolver configuration as described by resolv.conf(5)."""

    servers: list[str] = field(default_factory=list)
    domain: str = ""
    search: list[str] = field(default_factory=list)
    ndots: int = 1
    timeout: int = 5
    attempts: int = 2
    rotate: bool = False
    unknown_opt: bool = False
    lookup: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        lines = []
        if self.domain:
            lines.append(f"{_DOMAIN} {self.domain}")
        if self.search:
            lines.append(f"{_SEARCH} {' '.join(self.search)}")
        lines.extend(f"{_NAMESERVER} {server}" for server in self.servers)
        options = (
            f"{_OPTIONS} {_NDOTS_PREFIX}{self.ndots} "
            f"{_TIMEOUT_PREFIX}{self.timeout} {_ATTEMPTS_PREFIX}{self.attempts}"
        )
        if self.rotate:
            options += f" {_ROTATE}"
        lines.append(options)
        if self.lookup:
            lines.append(f"{_LOOKUP} {' '.join(self.lookup)}")
        return "".join(line + "\n" for line in lines)


def _option_value(text: str) -> int:
    """Parse an option's numeric value; invalid or small values become 1."""
    value = int(text) if _INTEGER.fullmatch(text) else 0
    return max(value, 1)


def _lines(stream: Union[str, IO[str], Iterable[str]]) -> Iterable[str]:
    if isinstance(stream, str):
        stream = io.StringIO(stream)
    for raw in stream:
        line = raw[:-1] if raw.endswith("\n") else raw
        if line.endswith("\r"):
            line = line[:-1]
        yield line


def read_dns_config(
    stream: Union[str, IO[str], Iterable[str]],
    no_default_nameservers: bool = False,
) -> DNSConfig:
    """Parse resolv.conf content.

    Unless ``no_default_nameservers`` is set, a configuration without any
    nameserver falls back to the local resolvers, as libc does.
    """
    conf = DNSConfig()
    for line in _lines(stream):
        if line[:1] in (";", "#"):
            continue
        fields = line.split()
        if not fields:
            continue
        keyword, args = fields[0], fields[1:]
        if keyword == _NAMESERVER:
            if args and len(conf.servers) < MAX_NAMESERVERS:
                conf.servers.append(args[0])
        elif keyword == _DOMAIN:
            if args:
                conf.domain = args[0]
        elif keyword == _SEARCH:
            conf.search = list(args)
        elif keyword == _OPTIONS:
            for option in args:
                if option.startswith(_NDOTS_PREFIX):
                    conf.ndots = _option_value(option[len(_NDOTS_PREFIX):])
                elif option.startswith(_TIMEOUT_PREFIX):
                    conf.timeout = _option_value(option[len(_TIMEOUT_PREFIX):])
                elif option.startswith(_ATTEMPTS_PREFIX):
                    conf.attempts = _option_value(option[len(_ATTEMPTS_PREFIX):])
                elif option == _ROTATE:
                    conf.rotate = True
                else:
                    conf.unknown_opt = True
        elif keyword == _LOOKUP:
            conf.lookup = list(args)
        else:
            conf.unknown_opt = True

    if not no_default_nameservers and not conf.servers:
        conf.servers.extend(DEFAULT_NAMESERVERS)
    return conf