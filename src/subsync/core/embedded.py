"""Selection among text tracks already embedded in the media container."""

from collections.abc import Sequence
from pathlib import PurePosixPath
from urllib.parse import urlparse

import structlog

from subsync.core.language import language_priority
from subsync.core.playback import TextTrackSource
from subsync.core.subtitle import EmbeddedSubtitleTrack, SubtitleFormat

logger = structlog.get_logger()

DEFAULT_LANGUAGE = "und"
DEFAULT_MIME_TYPE = "application/x-subrip"
EMBEDDED_CONTAINERS = (".mkv", ".mp4", ".m4v", ".webm")


def select_best_track(
    tracks: Sequence[EmbeddedSubtitleTrack],
) -> EmbeddedSubtitleTrack | None:
    """Pick the preferred embedded track.

    Tracks are ranked by language priority of their label, falling back to
    the language code; ties go to the lowest track index.

    Args:
        tracks: Embedded text tracks reported by the host

    Returns:
        The best track, or None when there are no tracks
    """
    if not tracks:
        return None
    return min(
        tracks,
        key=lambda t: (language_priority(t.label, t.language), t.track_index),
    )


def collect_embedded_tracks(source: TextTrackSource) -> list[EmbeddedSubtitleTrack]:
    """Convert the host's text track enumeration into embedded tracks.

    A source that fails to enumerate yields an empty list.
    """
    try:
        infos = list(source.text_tracks())
    except Exception as e:
        logger.warning("embedded_track_enumeration_failed", error=str(e))
        return []

    tracks = []
    for info in infos:
        language = info.language or DEFAULT_LANGUAGE
        mime_type = info.mime_type or DEFAULT_MIME_TYPE
        tracks.append(
            EmbeddedSubtitleTrack(
                track_index=info.index,
                group_index=info.group,
                language=language,
                label=info.label or language,
                format=SubtitleFormat.from_mime_type(mime_type),
                mime_type=mime_type,
            )
        )
    return tracks


def may_have_embedded_subtitles(uri: str) -> bool:
    """Return True when the container type commonly carries text tracks."""
    path = urlparse(uri).path or uri
    return PurePosixPath(path).suffix.lower() in EMBEDDED_CONTAINERS
