"""Resolve "host:port" strings to IPv4 addresses."""

from __future__ import annotations

import concurrent.futures
import ipaddress
import re
import socket
from typing import Any, Optional, Tuple

_PORT_RE = re.compile(r"[+-]?[0-9]+")


class ResolveError(Exception):
    """An address could not be resolved."""


class BlockedError(ResolveError):
    """The resolved IP is in the blocklist."""


class NotIPv4AddressError(ResolveError):
    """The resolved address is not IPv4."""


class InvalidPortError(ResolveError):
    """The port number in the address is out of range."""


def _split_host_port(hostport: str) -> Tuple[str, str]:
    if hostport.startswith("["):
        end = hostport.find("]")
        if end == -1:
            raise ResolveError(f"address {hostport}: missing ']' in address")
        host = hostport[1:end]
        rest = hostport[end + 1 :]
        if not rest.startswith(":"):
            raise ResolveError(f"address {hostport}: missing port in address")
        port = rest[1:]
        if ":" in port:
            raise ResolveError(f"address {hostport}: too many colons in address")
        return host, port
    host, sep, port = hostport.rpartition(":")
    if not sep:
        raise ResolveError(f"address {hostport}: missing port in address")
    if ":" in host:
        raise ResolveError(f"address {hostport}: too many colons in address")
    return host, port


def _to4(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> Optional[ipaddress.IPv4Address]:
    if isinstance(ip, ipaddress.IPv4Address):
        return ip
    return ip.ipv4_mapped


def resolve(
    hostport: str, timeout: float = 10.0, blocklist: Any = None
) -> Tuple[ipaddress.IPv4Address, int]:
    """Resolve ``hostport`` to an IPv4 address and port.

    ``blocklist``, if given, must have a ``blocked(ip)`` method.
    """
    host, port_str = _split_host_port(hostport)
    if not _PORT_RE.fullmatch(port_str):
        raise ResolveError(f"invalid port syntax: {port_str!r}")
    port = int(port_str)
    if port <= 0 or port > 65535:
        raise InvalidPortError("invalid port number")
    try:
        ip: ipaddress.IPv4Address | ipaddress.IPv6Address = ipaddress.ip_address(host)
    except ValueError:
        ip = resolve_ipv4(host, timeout)
    ip4 = _to4(ip)
    if ip4 is None:
        raise NotIPv4AddressError("not ipv4 address")
    if blocklist is not None and blocklist.blocked(ip4):
        raise BlockedError("ip is blocked")
    return ip4, port


def resolve_ipv4(host: str, timeout: float = 10.0) -> ipaddress.IPv4Address:
    """Look up ``host`` and return its first IPv4 address."""
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(
            socket.getaddrinfo, host, None, socket.AF_UNSPEC, socket.SOCK_STREAM
        )
        try:
            infos = future.result(timeout=timeout)
        except concurrent.futures.TimeoutError as exc:
            raise ResolveError(f"lookup {host}: timed out") from exc
        except (OSError, UnicodeError) as exc:
            raise ResolveError(f"lookup {host}: {exc}") from exc
    finally:
        executor.shutdown(wait=False)
    for *_, sockaddr in infos:
        try:
            ip = ipaddress.ip_address(str(sockaddr[0]).split("%", 1)[0])
        except ValueError:
            continue
        ip4 = _to4(ip)
        if ip4 is not None:
            return ip4
    raise NotIPv4AddressError("not ipv4 address")