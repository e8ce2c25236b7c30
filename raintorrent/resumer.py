"""Saving and loading the resume information of torrents in an SQLite database."""

from __future__ import annotations

import base64
import binascii
import json
import re
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from fractions import Fraction
from typing import Any, Iterator, List, Optional, Union

# Incremented whenever stored resume data is interpreted differently than before.
LATEST_VERSION = 3

_KEY_INFO_HASH = "info_hash"
_KEY_PORT = "port"
_KEY_NAME = "name"
_KEY_TRACKERS = "trackers"
_KEY_URL_LIST = "url_list"
_KEY_FIXED_PEERS = "fixed_peers"
_KEY_INFO = "info"
_KEY_BITFIELD = "bitfield"
_KEY_ADDED_AT = "added_at"
_KEY_BYTES_DOWNLOADED = "bytes_downloaded"
_KEY_BYTES_UPLOADED = "bytes_uploaded"
_KEY_BYTES_WASTED = "bytes_wasted"
_KEY_SEEDED_FOR = "seeded_for"
_KEY_STARTED = "started"
_KEY_STOP_AFTER_DOWNLOAD = "stop_after_download"
_KEY_STOP_AFTER_METADATA = "stop_after_metadata"
_KEY_COMPLETE_CMD_RUN = "complete_cmd_run"
_KEY_VERSION = "version"

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_NS_PER_US = 1_000
_NS_PER_MS = 1_000_000
_NS_PER_S = 1_000_000_000
_NS_PER_MIN = 60 * _NS_PER_S

_DURATION_UNITS = {
    "ns": 1,
    "us": _NS_PER_US,
    "\u00b5s": _NS_PER_US,
    "\u03bcs": _NS_PER_US,
    "ms": _NS_PER_MS,
    "s": _NS_PER_S,
    "m": _NS_PER_MIN,
    "h": 60 * _NS_PER_MIN,
}
_DURATION_PART = re.compile(r"(\d*)(?:\.(\d*))?(ns|us|\u00b5s|\u03bcs|ms|s|m|h)")
_MAX_NS = 2**63 - 1

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})\Z"
)
_INTEGER = re.compile(r"[+-]?\d+\Z")
_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


class ResumerError(Exception):
    """Resume data is missing or cannot be interpreted."""


@dataclass
class Stats:
    """Transfer statistics of a torrent."""

    bytes_downloaded: int = 0
    bytes_uploaded: int = 0
    bytes_wasted: int = 0
    seeded_for: timedelta = field(default_factory=timedelta)


def _duration_ns(td: timedelta) -> int:
    return ((td.days * 86400 + td.seconds) * 1_000_000 + td.microseconds) * _NS_PER_US


def _with_fraction(value: int, unit: int) -> str:
    whole, rem = divmod(value, unit)
    if not rem:
        return str(whole)
    digits = str(rem).rjust(len(str(unit)) - 1, "0").rstrip("0")
    return f"{whole}.{digits}"


def format_duration(td: timedelta) -> str:
    """Format a duration like "1h2m3.5s", "1.5ms" or "0s"."""
    ns = _duration_ns(td)
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    u = abs(ns)
    if u < _NS_PER_S:
        if u < _NS_PER_US:
            text = f"{u}ns"
        elif u < _NS_PER_MS:
            text = _with_fraction(u, _NS_PER_US) + "\u00b5s"
        else:
            text = _with_fraction(u, _NS_PER_MS) + "ms"
        return sign + text
    seconds = _with_fraction(u % _NS_PER_MIN, _NS_PER_S) + "s"
    minutes_total = u // _NS_PER_MIN
    hours, minutes = divmod(minutes_total, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}"
    if minutes_total:
        return f"{sign}{minutes}m{seconds}"
    return sign + seconds


def parse_duration(s: str) -> timedelta:
    """Parse a duration such as "1h30m", "-1.5s" or "300ms".

    Precision below a microsecond is truncated. Raises ValueError on bad input.
    """
    text = s
    negative = False
    if text[:1] in ("+", "-"):
        negative = text[0] == "-"
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError(f'invalid duration "{s}"')
    total = Fraction(0)
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            raise ValueError(f'invalid duration "{s}"')
        whole, frac, unit = match.groups()
        if not whole and not frac:
            raise ValueError(f'invalid duration "{s}"')
        value = Fraction(int(whole or "0"))
        if frac:
            value += Fraction(int(frac), 10 ** len(frac))
        total += value * _DURATION_UNITS[unit]
        pos = match.end()
    ns = int(total)
    if ns > _MAX_NS + (1 if negative else 0):
        raise ValueError(f'invalid duration "{s}"')
    micro = ns // _NS_PER_US
    return timedelta(microseconds=-micro if negative else micro)


def _format_time(dt: datetime, fractional: bool) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    offset = dt.utcoffset() or timedelta(0)
    text = (
        f"{dt.year:04d}-{dt.month:02d}-{dt.day:02d}"
        f"T{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d}"
    )
    if fractional and dt.microsecond:
        text += "." + f"{dt.microsecond:06d}".rstrip("0")
    minutes = int(offset.total_seconds()) // 60
    if minutes == 0:
        return text + "Z"
    sign = "-" if minutes < 0 else "+"
    hh, mm = divmod(abs(minutes), 60)
    return f"{text}{sign}{hh:02d}:{mm:02d}"


def _parse_time(s: str) -> datetime:
    match = _RFC3339.match(s)
    if match is None:
        raise ValueError(f"cannot parse {s!r} as RFC3339 time")
    year, month, day, hour, minute, second, frac, zone = match.groups()
    micro = int((frac or "")[:6].ljust(6, "0"))
    if zone in ("Z", "z"):
        tz = timezone.utc
    else:
        hh, mm = int(zone[1:3]), int(zone[4:6])
        delta = timedelta(hours=hh, minutes=mm)
        tz = timezone(-delta if zone[0] == "-" else delta)
    return datetime(
        int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tzinfo=tz
    )


def _parse_int(value: str, what: str) -> int:
    if not _INTEGER.match(value):
        raise ResumerError(f"invalid {what}: {value!r}")
    return int(value)


def _parse_bool(value: str, what: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ResumerError(f"invalid {what}: {value!r}")


def _format_bool(value: bool) -> bytes:
    return b"true" if value else b"false"


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ResumerError(f"invalid {what}: {exc}") from exc


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


@dataclass
class Spec:
    """Everything needed to resume an existing torrent."""

    info_hash: bytes = b""
    port: int = 0
    name: str = ""
    trackers: List[List[str]] = field(default_factory=list)
    url_list: List[str] = field(default_factory=list)
    fixed_peers: List[str] = field(default_factory=list)
    info: bytes = b""
    bitfield: bytes = b""
    added_at: datetime = _ZERO_TIME
    bytes_downloaded: int = 0
    bytes_uploaded: int = 0
    bytes_wasted: int = 0
    seeded_for: timedelta = field(default_factory=timedelta)
    started: bool = False
    stop_after_download: bool = False
    stop_after_metadata: bool = False
    complete_cmd_run: bool = False
    version: int = 0

    def to_json(self) -> str:
        """Serialize to JSON; binary fields are base64 and SeededFor is in nanoseconds."""
        doc = {
            "Port": self.port,
            "Name": self.name,
            "Trackers": self.trackers,
            "URLList": self.url_list,
            "FixedPeers": self.fixed_peers,
            "AddedAt": _format_time(self.added_at, fractional=True),
            "BytesDownloaded": self.bytes_downloaded,
            "BytesUploaded": self.bytes_uploaded,
            "BytesWasted": self.bytes_wasted,
            "Started": self.started,
            "StopAfterDownload": self.stop_after_download,
            "StopAfterMetadata": self.stop_after_metadata,
            "CompleteCmdRun": self.complete_cmd_run,
            "Version": self.version,
            "InfoHash": base64.b64encode(self.info_hash).decode("ascii"),
            "Info": base64.b64encode(self.info).decode("ascii"),
            "Bitfield": base64.b64encode(self.bitfield).decode("ascii"),
            "SeededFor": _duration_ns(self.seeded_for),
        }
        return json.dumps(doc, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "Spec":
        """Build a Spec from the output of to_json."""
        try:
            doc = json.loads(data)
        except ValueError as exc:
            raise ResumerError(f"invalid spec json: {exc}") from exc
        if not isinstance(doc, dict):
            raise ResumerError("spec json is not an object")
        try:
            added_at = doc.get("AddedAt")
            return cls(
                info_hash=_b64decode(doc.get("InfoHash") or "", "info hash"),
                info=_b64decode(doc.get("Info") or "", "info"),
                bitfield=_b64decode(doc.get("Bitfield") or "", "bitfield"),
                seeded_for=timedelta(microseconds=int(doc.get("SeededFor") or 0) // _NS_PER_US),
                port=int(doc.get("Port") or 0),
                name=doc.get("Name") or "",
                trackers=doc.get("Trackers") or [],
                url_list=doc.get("URLList") or [],
                fixed_peers=doc.get("FixedPeers") or [],
                added_at=_parse_time(added_at) if added_at else _ZERO_TIME,
                bytes_downloaded=int(doc.get("BytesDownloaded") or 0),
                bytes_uploaded=int(doc.get("BytesUploaded") or 0),
                bytes_wasted=int(doc.get("BytesWasted") or 0),
                started=bool(doc.get("Started")),
                stop_after_download=bool(doc.get("StopAfterDownload")),
                stop_after_metadata=bool(doc.get("StopAfterMetadata")),
                complete_cmd_run=bool(doc.get("CompleteCmdRun")),
                version=int(doc.get("Version") or 0),
            )
        except (TypeError, ValueError) as exc:
            raise ResumerError(f"invalid spec json: {exc}") from exc


_SCHEMA = """
CREATE TABLE IF NOT EXISTS torrents (
    bucket TEXT NOT NULL,
    torrent_id TEXT NOT NULL,
    PRIMARY KEY (bucket, torrent_id)
);
CREATE TABLE IF NOT EXISTS torrent_values (
    bucket TEXT NOT NULL,
    torrent_id TEXT NOT NULL,
    key TEXT NOT NULL,
    value BLOB NOT NULL,
    PRIMARY KEY (bucket, torrent_id, key)
);
"""


class Resumer:
    """Stores resume information of torrents under a named bucket of a database."""

    def __init__(self, path: Any, bucket: Union[str, bytes]) -> None:
        self._bucket = bucket.decode("utf-8") if isinstance(bucket, bytes) else str(bucket)
        self._lock = threading.Lock()
        self._db = sqlite3.connect(str(path), check_same_thread=False)
        with self._lock:
            self._db.executescript(_SCHEMA)

    def close(self) -> None:
        """Close the database."""
        with self._lock:
            self._db.close()

    def __enter__(self) -> "Resumer":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        with self._lock, self._db:
            yield self._db.cursor()

    def _exists(self, cur: sqlite3.Cursor, torrent_id: str) -> bool:
        row = cur.execute(
            "SELECT 1 FROM torrents WHERE bucket = ? AND torrent_id = ?",
            (self._bucket, torrent_id),
        ).fetchone()
        return row is not None

    def _put(self, cur: sqlite3.Cursor, torrent_id: str, key: str, value: bytes) -> None:
        cur.execute(
            "INSERT OR REPLACE INTO torrent_values (bucket, torrent_id, key, value) "
            "VALUES (?, ?, ?, ?)",
            (self._bucket, torrent_id, key, bytes(value)),
        )

    def _get(self, cur: sqlite3.Cursor, torrent_id: str, key: str) -> Optional[bytes]:
        row = cur.execute(
            "SELECT value FROM torrent_values WHERE bucket = ? AND torrent_id = ? AND key = ?",
            (self._bucket, torrent_id, key),
        ).fetchone()
        return None if row is None else bytes(row[0])

    def write(self, torrent_id: str, spec: Spec) -> None:
        """Store the whole spec of a torrent."""
        dumps = lambda v: json.dumps(v, separators=(",", ":")).encode("utf-8")  # noqa: E731
        version = spec.version or LATEST_VERSION
        values = {
            _KEY_INFO_HASH: spec.info_hash,
            _KEY_PORT: str(spec.port).encode(),
            _KEY_NAME: spec.name.encode("utf-8"),
            _KEY_TRACKERS: dumps(spec.trackers),
            _KEY_URL_LIST: dumps(spec.url_list),
            _KEY_FIXED_PEERS: dumps(spec.fixed_peers),
            _KEY_INFO: spec.info,
            _KEY_BITFIELD: spec.bitfield,
            _KEY_ADDED_AT: _format_time(spec.added_at, fractional=False).encode(),
            _KEY_BYTES_DOWNLOADED: str(spec.bytes_downloaded).encode(),
            _KEY_BYTES_UPLOADED: str(spec.bytes_uploaded).encode(),
            _KEY_BYTES_WASTED: str(spec.bytes_wasted).encode(),
            _KEY_SEEDED_FOR: format_duration(spec.seeded_for).encode("utf-8"),
            _KEY_STARTED: _format_bool(spec.started),
            _KEY_STOP_AFTER_DOWNLOAD: _format_bool(spec.stop_after_download),
            _KEY_STOP_AFTER_METADATA: _format_bool(spec.stop_after_metadata),
            _KEY_COMPLETE_CMD_RUN: _format_bool(spec.complete_cmd_run),
            _KEY_VERSION: str(version).encode(),
        }
        with self._transaction() as cur:
            cur.execute(
                "INSERT OR IGNORE INTO torrents (bucket, torrent_id) VALUES (?, ?)",
                (self._bucket, torrent_id),
            )
            for key, value in values.items():
                self._put(cur, torrent_id, key, value)

    def _update(self, torrent_id: str, **values: bytes) -> None:
        with self._transaction() as cur:
            if not self._exists(cur, torrent_id):
                return
            for key, value in values.items():
                self._put(cur, torrent_id, key, value)

    def write_info(self, torrent_id: str, value: bytes) -> None:
        """Store only the info dictionary of a torrent."""
        self._update(torrent_id, **{_KEY_INFO: value})

    def write_bitfield(self, torrent_id: str, value: bytes) -> None:
        """Store only the bitfield of a torrent."""
        self._update(torrent_id, **{_KEY_BITFIELD: value})

    def write_started(self, torrent_id: str, value: bool) -> None:
        """Store whether the torrent is started."""
        self._update(torrent_id, **{_KEY_STARTED: _format_bool(value)})

    def handle_stop_after_download(self, torrent_id: str) -> None:
        """Clear the started and stop-after-download flags."""
        self._update(
            torrent_id,
            **{_KEY_STARTED: _format_bool(False), _KEY_STOP_AFTER_DOWNLOAD: _format_bool(False)},
        )

    def handle_stop_after_metadata(self, torrent_id: str) -> None:
        """Clear the started and stop-after-metadata flags."""
        self._update(
            torrent_id,
            **{_KEY_STARTED: _format_bool(False), _KEY_STOP_AFTER_METADATA: _format_bool(False)},
        )

    def write_complete_cmd_run(self, torrent_id: str) -> None:
        """Record that the completion command has been run."""
        self._update(torrent_id, **{_KEY_COMPLETE_CMD_RUN: _format_bool(True)})

    def read(self, torrent_id: str) -> Spec:
        """Load the spec of a torrent.

        Trackers stored in the old flat-list form are converted and saved back.
        """
        with self._transaction() as cur:
            if not self._exists(cur, torrent_id):
                raise ResumerError(f'bucket not found: "{torrent_id}"')

            def text(key: str) -> Optional[str]:
                raw = self._get(cur, torrent_id, key)
                return None if raw is None else raw.decode("utf-8", "replace")

            info_hash = self._get(cur, torrent_id, _KEY_INFO_HASH)
            if info_hash is None:
                raise ResumerError(f'key not found: "{_KEY_INFO_HASH}"')
            spec = Spec(info_hash=info_hash)
            spec.port = _parse_int(text(_KEY_PORT) or "", "port")

            name = text(_KEY_NAME)
            if name is not None:
                spec.name = name

            raw_trackers = self._get(cur, torrent_id, _KEY_TRACKERS)
            if raw_trackers is not None:
                spec.trackers = self._read_trackers(cur, torrent_id, raw_trackers)

            for key, attr in ((_KEY_URL_LIST, "url_list"), (_KEY_FIXED_PEERS, "fixed_peers")):
                raw = self._get(cur, torrent_id, key)
                if raw is None:
                    continue
                try:
                    parsed = json.loads(raw)
                except ValueError as exc:
                    raise ResumerError(f"invalid {key}: {exc}") from exc
                if parsed is not None and not _is_str_list(parsed):
                    raise ResumerError(f"invalid {key}: {raw!r}")
                setattr(spec, attr, parsed or [])

            for key, attr in ((_KEY_INFO, "info"), (_KEY_BITFIELD, "bitfield")):
                raw = self._get(cur, torrent_id, key)
                if raw is not None:
                    setattr(spec, attr, raw)

            added_at = text(_KEY_ADDED_AT)
            if added_at is not None:
                try:
                    spec.added_at = _parse_time(added_at)
                except ValueError as exc:
                    raise ResumerError(str(exc)) from exc

            for key, attr in (
                (_KEY_BYTES_DOWNLOADED, "bytes_downloaded"),
                (_KEY_BYTES_UPLOADED, "bytes_uploaded"),
                (_KEY_BYTES_WASTED, "bytes_wasted"),
            ):
                value = text(key)
                if value is not None:
                    setattr(spec, attr, _parse_int(value, key))

            seeded_for = text(_KEY_SEEDED_FOR)
            if seeded_for is not None:
                try:
                    spec.seeded_for = parse_duration(seeded_for)
                except ValueError as exc:
                    raise ResumerError(str(exc)) from exc

            for key, attr in (
                (_KEY_STARTED, "started"),
                (_KEY_STOP_AFTER_DOWNLOAD, "stop_after_download"),
                (_KEY_STOP_AFTER_METADATA, "stop_after_metadata"),
                (_KEY_COMPLETE_CMD_RUN, "complete_cmd_run"),
            ):
                value = text(key)
                if value is not None:
                    setattr(spec, attr, _parse_bool(value, key))

            version = text(_KEY_VERSION)
            # Records written before versioning was introduced are version 1.
            spec.version = 1 if version is None else _parse_int(version, _KEY_VERSION)
            return spec

    def _read_trackers(
        self, cur: sqlite3.Cursor, torrent_id: str, raw: bytes
    ) -> List[List[str]]:
        try:
            parsed = json.loads(raw)
        except ValueError as exc:
            raise ResumerError(f"invalid trackers: {exc}") from exc
        if parsed is None:
            return []
        if isinstance(parsed, list) and all(_is_str_list(tier) for tier in parsed):
            return parsed
        if _is_str_list(parsed):
            migrated = [[url] for url in parsed]
            self._put(
                cur,
                torrent_id,
                _KEY_TRACKERS,
                json.dumps(migrated, separators=(",", ":")).encode("utf-8"),
            )
            return migrated
        raise ResumerError(f"invalid trackers: {raw!r}")