"""Canonical peer priority (BEP 40)."""

from __future__ import annotations

import ipaddress
from typing import Tuple, Union

Priority = int
IPLike = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]
Address = Tuple[IPLike, int]

_CASTAGNOLI_REFLECTED = 0x82F63B78


def _make_table() -> tuple[int, ...]:
    table = []
    for i in range(256):
        crc = i
        for _ in range(8):
            crc = (crc >> 1) ^ _CASTAGNOLI_REFLECTED if crc & 1 else crc >> 1
        table.append(crc)
    return tuple(table)


_TABLE = _make_table()


def crc32c(data: bytes) -> int:
    """CRC-32 checksum with the Castagnoli polynomial."""
    crc = 0xFFFFFFFF
    for byte in data:
        crc = _TABLE[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc ^ 0xFFFFFFFF


def _parse_ip(value: IPLike) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
    ip = ipaddress.ip_address(str(value))
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _same_subnet(prefix: int, a: bytes, b: bytes) -> bool:
    shift = 32 - prefix
    return int.from_bytes(a, "big") >> shift == int.from_bytes(b, "big") >> shift


def _ipv4_mask(a: bytes, b: bytes) -> bytes:
    if not _same_subnet(16, a, b):
        return bytes((0xFF, 0xFF, 0x55, 0x55))
    if not _same_subnet(24, a, b):
        return bytes((0xFF, 0xFF, 0xFF, 0x55))
    return bytes((0xFF, 0xFF, 0xFF, 0xFF))


def _masked(ip: bytes, mask: bytes) -> bytes:
    return bytes(x & m for x, m in zip(ip, mask))


def calculate(a: Address, b: Address) -> Priority:
    """Return the priority of address ``a`` relative to client address ``b``."""
    ip_a, ip_b = _parse_ip(a[0]), _parse_ip(b[0])
    if ip_a == ip_b:
        part_a = (a[1] & 0xFFFF).to_bytes(2, "big")
        part_b = (b[1] & 0xFFFF).to_bytes(2, "big")
    else:
        if ip_a.version != 4 or ip_b.version != 4:
            raise ValueError("peer priority is only defined for IPv4 addresses")
        mask = _ipv4_mask(ip_a.packed, ip_b.packed)
        part_a = _masked(ip_a.packed, mask)
        part_b = _masked(ip_b.packed, mask)
    first, second = sorted((part_a, part_b))
    return crc32c(first + second)