"""Choosing which piece to download next, and from which peer or webseed source."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from raintorrent.piece import Piece
from raintorrent.sliceset import SliceSet

# Things considered when selecting a piece:
#   piece is done or being written, the peer has the piece, the peer is choking us,
#   the piece is allowed-fast, the piece is requested from other peers, the piece is
#   reserved by a webseed source, endgame mode, and stalled (snubbed/choked) peers.


@dataclass(frozen=True)
class Range:
    """Piece index range; ``begin`` is inclusive, ``end`` exclusive."""

    begin: int = 0
    end: int = 0

    def __len__(self) -> int:
        return self.end - self.begin


@dataclass(frozen=True)
class WebseedDownloadSpec:
    """A range of pieces assigned to a webseed source."""

    source: Any
    begin: int
    end: int


class _PieceState:
    """A piece together with the peers and sources involved with it."""

    __slots__ = ("piece", "having", "requested", "snubbed", "choked", "requested_webseed")

    def __init__(self, piece: Piece) -> None:
        self.piece = piece
        self.having: SliceSet[Any] = SliceSet()
        self.requested: SliceSet[Any] = SliceSet()
        self.snubbed: SliceSet[Any] = SliceSet()
        self.choked: SliceSet[Any] = SliceSet()
        # Downloading from a webseed source or reserved for it.
        self.requested_webseed: Any = None

    @property
    def unavailable(self) -> bool:
        return self.piece.done or self.piece.writing

    def stalled_downloads(self) -> int:
        """Downloads whose peers are snubbed or choked."""
        return len(self.snubbed) + len(self.choked)

    def running_downloads(self) -> int:
        """Downloads that are actively progressing."""
        return len(self.requested) - self.stalled_downloads()

    def available_for_webseed(self, duplicate: bool) -> bool:
        if self.unavailable or self.requested_webseed is not None:
            return False
        if not duplicate:
            return self.requested_webseed is not None
        return True


class PiecePicker:
    """Tracks piece availability among peers and picks pieces to download.

    Peers are expected to provide ``bitfield`` (a set of piece indexes),
    ``received_allowed_fast`` (a SliceSet of pieces), and the booleans
    ``snubbed``, ``downloading`` and ``peer_choking``. Webseed sources provide
    ``downloading()``, ``remaining()`` and a ``downloader`` with ``begin``,
    ``end``, ``read_current()``, ``update_end(end)`` and ``close()``.
    """

    def __init__(
        self,
        pieces: Sequence[Piece],
        max_duplicate_download: int,
        webseed_sources: Optional[Sequence[Any]] = None,
    ) -> None:
        self._pieces: List[_PieceState] = [_PieceState(p) for p in pieces]
        self._by_availability: List[_PieceState] = list(self._pieces)
        self._by_stalled: List[_PieceState] = list(self._pieces)
        self._max_duplicate_download = max_duplicate_download
        self._webseed_sources: List[Any] = list(webseed_sources or [])
        self._available = 0
        self._endgame = False

    def endgame(self) -> bool:
        """True once every piece has been requested at least once."""
        return self._endgame

    def available(self) -> int:
        """Number of pieces that at least one peer has."""
        return self._available

    def close_webseed_downloader(self, src: Any) -> None:
        """Close the download from a webseed source and free its pieces."""
        meter = getattr(src, "download_speed", None)
        if meter is not None and hasattr(meter, "stop"):
            meter.stop()
        src.download_speed = None
        downloader = src.downloader
        if downloader is None:
            return
        for i in range(downloader.begin, downloader.end):
            if self._pieces[i].requested_webseed is not src:
                raise RuntimeError(f"invalid source in piece: {i}")
            self._pieces[i].requested_webseed = None
        downloader.close()
        src.downloader = None

    def webseed_stop_at(self, src: Any, i: int) -> bool:
        """Make the webseed downloader stop at piece ``i``; return True if it was closed."""
        downloader = src.downloader
        for j in range(i, downloader.end):
            if self._pieces[j].requested_webseed is not src:
                raise RuntimeError(f"invalid source in piece #{j}")
            self._pieces[j].requested_webseed = None
        downloader.update_end(i)
        if downloader.read_current() >= i:
            self.close_webseed_downloader(src)
            return True
        return False

    def requested_peers(self, i: int) -> List[Any]:
        """Peers the piece at index ``i`` is requested from."""
        return list(self._pieces[i].requested.items)

    def requested_webseed_source(self, i: int) -> Any:
        """Webseed source the piece at index ``i`` is assigned to, or None."""
        return self._pieces[i].requested_webseed

    def handle_have(self, pe: Any, i: int) -> None:
        """Record that the peer has piece ``i``."""
        bitfield = getattr(pe, "bitfield", None)
        if bitfield is not None:
            bitfield.add(i)
        state = self._pieces[i]
        if state.having.add(pe) and len(state.having) == 1:
            self._available += 1

    def handle_allowed_fast(self, pe: Any, i: int) -> None:
        """Record that piece ``i`` is allowed-fast for the peer."""
        pe.received_allowed_fast.add(self._pieces[i].piece)

    def handle_snubbed(self, pe: Any, i: int) -> None:
        """Mark the peer as snubbed for piece ``i``."""
        if self._pieces[i].choked.has(pe):
            raise RuntimeError("peer snubbed while choked")
        self._pieces[i].snubbed.add(pe)

    def handle_choke(self, pe: Any, i: int) -> None:
        self._pieces[i].snubbed.remove(pe)
        self._pieces[i].choked.add(pe)

    def handle_unchoke(self, pe: Any, i: int) -> None:
        self._pieces[i].choked.remove(pe)

    def handle_cancel_download(self, pe: Any, i: int) -> None:
        self._pieces[i].requested.remove(pe)
        self._pieces[i].snubbed.remove(pe)

    def handle_disconnect(self, pe: Any) -> None:
        """Forget the peer everywhere."""
        for i, state in enumerate(self._pieces):
            self.handle_cancel_download(pe, i)
            if state.having.remove(pe) and len(state.having) == 0:
                self._available -= 1

    def pick_for(self, pe: Any) -> Tuple[Optional[Piece], bool]:
        """Select the next piece to download from the peer.

        Returns the piece (or None) and whether it is allowed-fast.
        """
        state, allowed_fast = self._find_piece(pe)
        if state is None:
            return None, False
        pe.snubbed = False
        state.requested.add(pe)
        return state.piece, allowed_fast

    def _find_piece(self, pe: Any) -> Tuple[Optional[_PieceState], bool]:
        # A peer downloads only one piece at a time.
        if pe.downloading:
            return None, False
        if self._downloading_webseed():
            if pe.peer_choking:
                return None, False
            state = self._pick_last_piece_of_smallest_gap(pe)
            if state is None:
                state = self._peer_steals_from_webseed(pe)
            if state is None:
                return None, False
            return state, pe.received_allowed_fast.has(state.piece)
        state = self._pick_allowed_fast(pe)
        if state is not None:
            return state, True
        if pe.peer_choking:
            return None, False
        if self._endgame:
            return self._pick_endgame(pe), False
        state = self._pick_rarest(pe)
        if state is not None:
            return state, False
        if self._endgame:
            return self._pick_endgame(pe), False
        return self._pick_stalled(pe), False

    def _pick_allowed_fast(self, pe: Any) -> Optional[_PieceState]:
        for piece in pe.received_allowed_fast:
            state = self._pieces[piece.index]
            if state.unavailable:
                continue
            if len(state.requested) == 0 and state.having.has(pe):
                return state
        return None

    def _pick_rarest(self, pe: Any) -> Optional[_PieceState]:
        self._by_availability.sort(key=lambda s: len(s.having))
        has_unrequested = False
        for state in self._by_availability:
            if state.unavailable:
                continue
            if len(state.requested) == 0:
                if state.having.has(pe):
                    return state
                has_unrequested = True
        if not has_unrequested:
            self._endgame = True
        return None

    def _pick_endgame(self, pe: Any) -> Optional[_PieceState]:
        self._by_availability.sort(key=lambda s: s.running_downloads())
        for state in self._by_availability:
            if state.unavailable:
                continue
            if len(state.requested) < self._max_duplicate_download and state.having.has(pe):
                return state
        return None

    def _pick_stalled(self, pe: Any) -> Optional[_PieceState]:
        self._by_stalled.sort(key=lambda s: s.stalled_downloads())
        for state in self._by_stalled:
            if state.unavailable or state.running_downloads() > 0:
                continue
            if len(state.requested) < self._max_duplicate_download and state.having.has(pe):
                return state
        return None

    def pick_webseed(self, src: Any) -> Optional[WebseedDownloadSpec]:
        """Reserve the next range of pieces for a webseed source."""
        gap = self._find_piece_range_for_webseed()
        if gap.begin == gap.end:
            return None
        for i in range(gap.begin, gap.end):
            if self._pieces[i].requested_webseed is not None:
                raise RuntimeError("already downloading from webseed url")
            self._pieces[i].requested_webseed = src
        return WebseedDownloadSpec(source=src, begin=gap.begin, end=gap.end)

    def _downloading_webseed(self) -> bool:
        return any(src.downloading() for src in self._webseed_sources)

    def _downloading_sources(self) -> List[Any]:
        return [src for src in self._webseed_sources if src.downloading()]

    def _find_piece_range_for_webseed(self) -> Range:
        gaps = self._find_gaps()
        if not gaps:
            return self._webseed_steals_from_another_webseed()
        return max(gaps, key=len)

    def _webseed_steals_from_another_webseed(self) -> Range:
        downloading = self._downloading_sources()
        if not downloading:
            return Range()
        src = max(downloading, key=lambda s: s.remaining())
        end = src.downloader.end
        begin = (src.downloader.read_current() + end + 1) // 2
        self.webseed_stop_at(src, begin)
        return Range(begin, end)

    def _peer_steals_from_webseed(self, pe: Any) -> Optional[_PieceState]:
        for src in self._downloading_sources():
            if src.remaining() == 0:
                continue
            downloader = src.downloader
            for i in range(downloader.end - 1, downloader.read_current(), -1):
                state = self._pieces[i]
                if state.unavailable or not state.having.has(pe) or len(state.requested) > 0:
                    continue
                self.webseed_stop_at(src, i)
                return state
        return None

    def _find_gaps(self) -> List[Range]:
        return self._find_gaps_for(False) or self._find_gaps_for(True)

    def _find_gaps_for(self, duplicate: bool) -> List[Range]:
        gaps: List[Range] = []
        begin: Optional[int] = None
        for state in self._pieces:
            if state.available_for_webseed(duplicate):
                if begin is None:
                    begin = state.piece.index
            elif begin is not None:
                gaps.append(Range(begin, state.piece.index))
                begin = None
        if begin is not None:
            gaps.append(Range(begin, len(self._pieces)))
        return gaps

    def pick_last_piece_of_smallest_gap(self, pe: Any) -> Optional[Piece]:
        """Return the last piece the peer has in the smallest webseed gap."""
        state = self._pick_last_piece_of_smallest_gap(pe)
        return state.piece if state is not None else None

    def _pick_last_piece_of_smallest_gap(self, pe: Any) -> Optional[_PieceState]:
        gaps = sorted(self._find_gaps(), key=len)
        for gap in gaps:
            for i in range(gap.end - 1, gap.begin - 1, -1):
                state = self._pieces[i]
                if not state.having.has(pe):
                    continue
                if pe.peer_choking and not pe.received_allowed_fast.has(state.piece):
                    continue
                return state
        return None