"""Adapters between the host player and the subtitle manager."""

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol


class PositionSource(Protocol):
    """Read-only view of the host player's clock."""

    def current_position_ms(self) -> int | None:
        """Return the playback position, or None when unavailable."""
        ...

    def duration_ms(self) -> int:
        """Return the media duration, or 0 when unknown."""
        ...


@dataclass(frozen=True)
class TextTrackInfo:
    """A text track as enumerated by the host player."""

    index: int
    group: int
    language: str | None = None
    label: str | None = None
    mime_type: str | None = None


class TextTrackSource(Protocol):
    """Enumeration of the text tracks the host has demuxed."""

    def text_tracks(self) -> Sequence[TextTrackInfo]: ...


class ReportedPosition:
    """Position source fed by periodic reports from the host.

    Between reports the position is extrapolated from a monotonic clock
    while the host says it is playing.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._position_ms: int | None = None
        self._duration_ms = 0
        self._playing = False
        self._reported_at = 0.0

    def report(
        self, position_ms: int, *, playing: bool = True, duration_ms: int = 0
    ) -> None:
        if position_ms < 0:
            raise ValueError(f"Position must be non-negative, got {position_ms}")
        self._position_ms = position_ms
        self._playing = playing
        self._duration_ms = max(duration_ms, 0)
        self._reported_at = self._clock()

    def current_position_ms(self) -> int | None:
        if self._position_ms is None:
            return None
        if not self._playing:
            return self._position_ms
        elapsed = int((self._clock() - self._reported_at) * 1000)
        position = self._position_ms + max(elapsed, 0)
        if self._duration_ms:
            position = min(position, self._duration_ms)
        return position

    def duration_ms(self) -> int:
        return self._duration_ms

    @property
    def playing(self) -> bool:
        return self._playing


class ReportedTextTracks:
    """Text track source holding the last list the host reported."""

    def __init__(self, tracks: Sequence[TextTrackInfo] = ()) -> None:
        self._tracks = tuple(tracks)

    def report(self, tracks: Sequence[TextTrackInfo]) -> None:
        self._tracks = tuple(tracks)

    def text_tracks(self) -> Sequence[TextTrackInfo]:
        return self._tracks


@dataclass
class MediaSession:
    """Per-media-item state owned by the host.

    Attributes:
        title: Title used for the automatic remote search
        tmdb_id: TMDB id, used by the fallback source instead of the title
        year: Release year narrowing a title search on the fallback source
        has_auto_searched: Set once an automatic search or embedded
            activation has happened for this media item
    """

    title: str | None = None
    tmdb_id: str | None = None
    year: int | None = None
    has_auto_searched: bool = False
