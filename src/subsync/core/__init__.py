"""Core subtitle logic.

The remote sources and the manager depend on the format parsers and are
imported from ``subsync.core.remote``, ``subsync.core.assrt``,
``subsync.core.opensubtitles`` and ``subsync.core.manager`` directly.
"""

from subsync.core.embedded import (
    collect_embedded_tracks,
    may_have_embedded_subtitles,
    select_best_track,
)
from subsync.core.language import LanguagePriority, language_priority
from subsync.core.playback import (
    MediaSession,
    PositionSource,
    ReportedPosition,
    ReportedTextTracks,
    TextTrackInfo,
    TextTrackSource,
)
from subsync.core.subtitle import (
    EmbeddedSubtitleTrack,
    SubtitleFormat,
    SubtitleItem,
    SubtitleTrack,
    sort_items,
)

__all__ = [
    "EmbeddedSubtitleTrack",
    "LanguagePriority",
    "MediaSession",
    "PositionSource",
    "ReportedPosition",
    "ReportedTextTracks",
    "SubtitleFormat",
    "SubtitleItem",
    "SubtitleTrack",
    "TextTrackInfo",
    "TextTrackSource",
    "collect_embedded_tracks",
    "language_priority",
    "may_have_embedded_subtitles",
    "select_best_track",
    "sort_items",
]
