# raintorrent

Components for building a BitTorrent client in pure Python. The package
uses only the standard library.

## Modules

- `raintorrent.peerprotocol`: peer wire messages (`HaveMessage`,
  `RequestMessage`, `PieceMessage`, `BitfieldMessage`, `PortMessage`,
  `ChokeMessage`, `RejectMessage`, `CancelMessage`, …), each with an
  `encode()` method for its payload; the extension protocol
  (`ExtensionMessage`, `ExtensionHandshakeMessage`,
  `ExtensionMetadataMessage`, `ExtensionPEXMessage`,
  `new_extension_handshake`); a bencode codec (`bencode`, `bdecode`,
  raising `BencodeError`); and the `MessageID` enum.
- `raintorrent.peerreader`: `read_message(stream)` reads one
  length-prefixed message from a binary stream; `PeerReader` reads messages
  from a socket in a loop and puts them on a queue. Oversized blocks raise
  `BlockSizeError`.
- `raintorrent.peerwriter`: `encode_message(msg)` frames a message;
  `PeerWriter` queues messages and writes them to a socket with keep-alives,
  limits queued piece uploads, rejects duplicate requests and reports
  `BlockUploaded` events. Its `Piece` reads block data only when sent.
- `raintorrent.piece`: `new_pieces` maps torrent files (`FileEntry`) onto
  `Piece` objects made of `FileSection`s; `Piece.calculate_blocks` splits a
  piece into request `Block`s, leaving out padding; `Piece.verify_hash`
  checks SHA-1.
- `raintorrent.piecedownloader`: `PieceDownloader` tracks remaining,
  pending and downloaded blocks of one piece from one peer, raising
  `BlockInvalidError`, `BlockDuplicateError` or `BlockNotRequestedError`.
- `raintorrent.piecepicker`: `PiecePicker` does rarest-first selection with
  allowed-fast pieces, endgame mode, re-requests of stalled downloads and
  webseed range assignment (`pick_webseed`, `WebseedDownloadSpec`, `Range`).
- `raintorrent.piecewriter`: `PieceWriter.run` hash-checks a downloaded
  piece and writes it to its file sections.
- `raintorrent.piececache`: `Cache`, a size-bounded LRU cache whose items
  expire after a TTL, with a limit on parallel loader calls.
- `raintorrent.pexlist`: `PEXList` (added/dropped peers for PEX messages,
  at most 50 each after the first flush), `RecentlySeen` (last 25
  addresses) and `compact_peer`.
- `raintorrent.peerpriority`: BEP 40 canonical peer priority (`calculate`)
  and `crc32c`.
- `raintorrent.resourcemanager`: `ResourceManager` shares a limited amount
  of a resource; requests that cannot be served at once are queued and
  granted later through a callback.
- `raintorrent.storage`: the `Storage` interface, `FileStorage` (files on
  disk under a destination directory, returned as `OSFile`) and
  `PaddingFile` (reads as zeros, refuses writes).
- `raintorrent.resumer`: `Resumer` keeps resume data of torrents (`Spec`)
  in an SQLite database file; `Spec.to_json` / `Spec.from_json`;
  `format_duration` / `parse_duration` for durations such as `"1h2m3.5s"`.
- Small helpers: `stringutil` (`asciify`, `printable`, `client_id`),
  `sliceset` (`SliceSet`, an identity-based set), `semaphore` (`Semaphore`
  that reports active and waiting holders, usable with `with`),
  `suspendchan` (`SuspendChan`, a queue whose receivers can be suspended),
  `resolver` (`resolve`, `resolve_ipv4` for `"host:port"` strings) and
  `peersource` (the `Source` enum).

## Examples

Peer priority between two addresses:

```python
from raintorrent.peerpriority import calculate

print(hex(calculate(("123.213.32.10", 0), ("98.76.54.32", 0))))  # 0xec2d7224
```

Caching piece reads:

```python
from raintorrent.piececache import Cache

cache = Cache(max_size=10 * 1024 * 1024, ttl=60.0, parallel_reads=4)
data = cache.get("piece-0", lambda: b"piece bytes")
```

Encoding a protocol message:

```python
from raintorrent.peerprotocol import RequestMessage
from raintorrent.peerwriter import encode_message

frame = encode_message(RequestMessage(index=1, begin=0, length=16384))
```

Saving and loading resume data:

```python
from raintorrent.resumer import Resumer, Spec

with Resumer("resume.db", "torrents") as resumer:
    resumer.write("abc", Spec(info_hash=bytes(20), port=6881, name="example"))
    spec = resumer.read("abc")
```

## What the package does not do

These are components, not a complete client. There is no torrent session,
no parsing of `.torrent` files or magnet links, no tracker or DHT client,
no peer handshake or encryption, no bitfield type of its own, and no
command-line program. `PiecePicker` and `PieceDownloader` work with peer
and webseed objects supplied by the caller, with the attributes and methods
described in their docstrings.

## Running the tests

```
pip install -e .[test]
pytest
```