"""Subtitle domain models."""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum


class SubtitleFormat(StrEnum):
    """Text subtitle formats understood by the parsers."""

    SRT = "srt"
    VTT = "vtt"
    ASS = "ass"
    TTML = "ttml"

    @classmethod
    def from_extension(cls, name: str) -> "SubtitleFormat | None":
        """Guess the format from a file name or URL, ignoring any query string."""
        lower = name.split("?", 1)[0].strip().lower()
        for suffixes, fmt in _EXTENSIONS:
            if lower.endswith(suffixes):
                return fmt
        return None

    @classmethod
    def from_mime_type(cls, mime_type: str) -> "SubtitleFormat":
        """Map a host player sample MIME type to a format.

        Unknown MIME types map to SRT, matching how the host treats
        unlabelled text tracks.
        """
        mime = mime_type.lower()
        if "subrip" in mime or "srt" in mime:
            return cls.SRT
        if "webvtt" in mime or "vtt" in mime:
            return cls.VTT
        if "ass" in mime or "ssa" in mime:
            return cls.ASS
        if "ttml" in mime or "xml" in mime:
            return cls.TTML
        return cls.SRT


_EXTENSIONS: tuple[tuple[tuple[str, ...], SubtitleFormat], ...] = (
    ((".srt",), SubtitleFormat.SRT),
    ((".vtt",), SubtitleFormat.VTT),
    ((".ass", ".ssa"), SubtitleFormat.ASS),
    ((".ttml", ".dfxp", ".xml"), SubtitleFormat.TTML),
)


@dataclass(frozen=True)
class SubtitleItem:
    """Single timed cue."""

    start_ms: int
    end_ms: int
    text: str

    def __post_init__(self) -> None:
        """Validate cue timing."""
        if self.start_ms < 0:
            raise ValueError(f"Start time must be non-negative, got {self.start_ms}")
        if self.start_ms > self.end_ms:
            raise ValueError(
                f"Start time {self.start_ms}ms must not be after "
                f"end time {self.end_ms}ms"
            )

    def contains(self, position_ms: int) -> bool:
        """Return True when position falls inside the closed cue interval."""
        return self.start_ms <= position_ms <= self.end_ms


@dataclass(frozen=True)
class SubtitleTrack:
    """A selectable standalone subtitle track.

    Remote search results carry an opaque ``assrt://<id>`` reference in
    ``url``; the real download URL is time-limited and resolved right
    before each download.
    """

    name: str
    url: str
    language: str
    format: SubtitleFormat


@dataclass(frozen=True)
class EmbeddedSubtitleTrack:
    """A text track already demuxed and exposed by the host player."""

    track_index: int
    group_index: int
    language: str
    label: str
    format: SubtitleFormat
    mime_type: str


def sort_items(items: Iterable[SubtitleItem]) -> list[SubtitleItem]:
    """Return cues stably sorted by start time."""
    return sorted(items, key=lambda item: item.start_ms)
