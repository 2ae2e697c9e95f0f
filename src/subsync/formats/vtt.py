"""WebVTT format parser."""

import re

import structlog

from subsync.core.subtitle import SubtitleItem, sort_items
from subsync.formats._timecode import clock_to_ms, normalize_newlines

logger = structlog.get_logger()

_TAG = re.compile(r"<[^>]*>")


def parse_vtt_time(value: str) -> int:
    """Parse ``HH:MM:SS.mmm`` or ``MM:SS.mmm`` into milliseconds (0 if invalid)."""
    millis = clock_to_ms(value, allow_short=True)
    return millis if millis is not None else 0


def parse_vtt(content: str) -> list[SubtitleItem]:
    """Parse WebVTT content into cues sorted by start time.

    Everything before the first timing line (the ``WEBVTT`` header, NOTE and
    STYLE blocks) is ignored. Cue settings after the end timestamp and
    inline tags such as ``<v Speaker>`` or ``<i>`` are dropped.

    Args:
        content: WebVTT format string content

    Returns:
        Parsed cues, sorted ascending by start time
    """
    items: list[SubtitleItem] = []
    lines = normalize_newlines(content).split("\n")
    i = 0

    while i < len(lines) and "-->" not in lines[i]:
        i += 1

    while i < len(lines):
        line = lines[i]
        i += 1
        if "-->" not in line:
            continue

        times = line.split("-->")
        if len(times) != 2:
            logger.debug("vtt_cue_skipped", line=i, reason="bad_timing")
            continue

        end_field = times[1].split()
        start_ms = parse_vtt_time(times[0])
        end_ms = parse_vtt_time(end_field[0] if end_field else "")

        text_lines: list[str] = []
        while i < len(lines) and lines[i].strip():
            clean = _TAG.sub("", lines[i]).strip()
            if clean:
                text_lines.append(clean)
            i += 1

        if not text_lines:
            continue
        if end_ms < start_ms:
            logger.debug("vtt_cue_skipped", line=i, reason="negative_span")
            continue
        items.append(SubtitleItem(start_ms, end_ms, "\n".join(text_lines)))

    return sort_items(items)
