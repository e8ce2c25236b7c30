"""Peer lists for the peer exchange (PEX) extension."""

from __future__ import annotations

import ipaddress
from typing import Any, Dict, Iterable, List, Tuple

# BEP 11: apart from the first message, at most 50 added and 50 dropped entries.
MAX_PEERS = 50

# Number of addresses kept by RecentlySeen.
MAX_LENGTH = 25

CompactPeer = bytes


def compact_peer(addr: Tuple[Any, int]) -> CompactPeer:
    """Return the 6-byte compact form (IPv4 address, big-endian port) of ``addr``."""
    host, port = addr
    ip = ipaddress.ip_address(str(host))
    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is None:
            raise ValueError(f"not an IPv4 address: {host}")
        ip = ip.ipv4_mapped
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"invalid port number: {port}")
    return ip.packed + port.to_bytes(2, "big")


class PEXList:
    """Added and dropped peer addresses waiting to be sent to a peer."""

    def __init__(self, recently_seen: Iterable[CompactPeer] = ()) -> None:
        self._added: Dict[CompactPeer, None] = {}
        self._dropped: Dict[CompactPeer, None] = dict.fromkeys(recently_seen)
        self._flushed = False

    def add(self, addr: Tuple[Any, int]) -> None:
        peer = compact_peer(addr)
        self._added[peer] = None
        self._dropped.pop(peer, None)

    def drop(self, addr: Tuple[Any, int]) -> None:
        peer = compact_peer(addr)
        self._dropped[peer] = None
        self._added.pop(peer, None)

    def flush(self) -> Tuple[bytes, bytes]:
        """Remove and return the added and dropped peers in compact form.

        The first flush returns everything; later ones at most MAX_PEERS each.
        """
        added = self._take(self._added, self._flushed)
        dropped = self._take(self._dropped, self._flushed)
        self._flushed = True
        return added, dropped

    @staticmethod
    def _take(peers: Dict[CompactPeer, None], limit: bool) -> bytes:
        count = min(len(peers), MAX_PEERS) if limit else len(peers)
        taken = list(peers)[:count]
        for peer in taken:
            del peers[peer]
        return b"".join(taken)


class RecentlySeen:
    """Keeps the last MAX_LENGTH distinct peer addresses."""

    def __init__(self) -> None:
        self._peers: List[CompactPeer] = []
        self._offset = 0

    def add(self, addr: Tuple[Any, int]) -> None:
        peer = compact_peer(addr)
        if peer in self._peers:
            return
        if len(self._peers) >= MAX_LENGTH:
            self._peers[self._offset] = peer
        else:
            self._peers.append(peer)
        self._offset = (self._offset + 1) % MAX_LENGTH

    def peers(self) -> List[CompactPeer]:
        return list(self._peers)

    def __len__(self) -> int:
        return len(self._peers)