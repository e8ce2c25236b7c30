"""Helpers for turning untrusted peer-supplied strings into displayable text."""

from __future__ import annotations

REPLACEMENT_CHARACTER = "\ufffd"


def asciify(s: str | bytes) -> str:
    """Replace every byte outside the printable ASCII range with '_'."""
    raw = s.encode("utf-8") if isinstance(s, str) else bytes(s)
    return "".join(chr(b) if 32 <= b < 127 else "_" for b in raw)


def printable(s: str | bytes) -> str:
    """Replace non-printable characters with the Unicode replacement character."""
    if isinstance(s, (bytes, bytearray)):
        s = bytes(s).decode("utf-8", "replace")
    return "".join(c if c.isprintable() else REPLACEMENT_CHARACTER for c in s)


def client_id(peer_id: str | bytes) -> str | bytes:
    """Return the client prefix of a peer ID.

    Recognises the BEP 20 form ("-XX0000-") and the "-RN<version>-" form;
    any other ID is returned unchanged.
    """
    if len(peer_id) < 8:
        raise ValueError("peer id is too short")
    is_bytes = isinstance(peer_id, (bytes, bytearray))
    dash = b"-" if is_bytes else "-"
    rain_prefix = b"-RN" if is_bytes else "-RN"

    if peer_id[7:8] == dash:
        return peer_id[:8]

    if peer_id.startswith(rain_prefix):
        end = peer_id.find(dash, 1)
        if end != -1:
            return peer_id[: end + 1]

    return peer_id