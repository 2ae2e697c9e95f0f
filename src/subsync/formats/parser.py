"""Parser dispatch by subtitle format."""

from collections.abc import Callable

from subsync.core.subtitle import SubtitleFormat, SubtitleItem
from subsync.formats.ass import parse_ass
from subsync.formats.srt import parse_srt
from subsync.formats.ttml import parse_ttml
from subsync.formats.vtt import parse_vtt

_PARSERS: dict[SubtitleFormat, Callable[[str], list[SubtitleItem]]] = {
    SubtitleFormat.SRT: parse_srt,
    SubtitleFormat.VTT: parse_vtt,
    SubtitleFormat.ASS: parse_ass,
    SubtitleFormat.TTML: parse_ttml,
}


def parse_subtitle(content: str, fmt: SubtitleFormat) -> list[SubtitleItem]:
    """Parse content with the parser registered for ``fmt``.

    Args:
        content: Decoded subtitle text
        fmt: Format of the content

    Returns:
        Parsed cues, sorted ascending by start time
    """
    return _PARSERS[fmt](content)
