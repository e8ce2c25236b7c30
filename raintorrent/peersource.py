"""Where a peer address was learned from."""

from __future__ import annotations

import enum


class Source(enum.IntEnum):
    """Indicates how a peer was found."""

    TRACKER = 0
    DHT = 1
    PEX = 2
    MANUAL = 3
    INCOMING = 4

    def __str__(self) -> str:
        return self.name.lower()