"""SRT (SubRip) format parser."""

import re

import structlog

from subsync.core.subtitle import SubtitleItem, sort_items
from subsync.formats._timecode import clock_to_ms, normalize_newlines

logger = structlog.get_logger()

_BLOCK_SEPARATOR = re.compile(r"\n[ \t]*\n")


def parse_srt_time(value: str) -> int:
    """Parse an SRT timestamp ``HH:MM:SS,mmm`` into milliseconds.

    Unparseable timestamps resolve to 0.
    """
    millis = clock_to_ms(value)
    return millis if millis is not None else 0


def parse_srt(content: str) -> list[SubtitleItem]:
    """Parse SRT content into cues sorted by start time.

    Each block is an index line, a ``start --> end`` timing line and one or
    more text lines. Blocks that do not fit this shape are skipped.

    Args:
        content: SRT format string content

    Returns:
        Parsed cues, sorted ascending by start time
    """
    items: list[SubtitleItem] = []
    blocks = _BLOCK_SEPARATOR.split(normalize_newlines(content))

    for block_num, block in enumerate(blocks, start=1):
        lines = [line.strip() for line in block.split("\n") if line.strip()]
        if len(lines) < 3:
            if lines:
                logger.debug("srt_block_skipped", block=block_num, reason="too_short")
            continue

        times = lines[1].split("-->")
        if len(times) != 2:
            logger.debug("srt_block_skipped", block=block_num, reason="no_timing")
            continue

        # Anything after the end timestamp (e.g. SRT coordinates) is ignored
        end_field = times[1].split()
        start_ms = parse_srt_time(times[0])
        end_ms = parse_srt_time(end_field[0] if end_field else "")
        if end_ms < start_ms:
            logger.debug("srt_block_skipped", block=block_num, reason="negative_span")
            continue

        items.append(SubtitleItem(start_ms, end_ms, "\n".join(lines[2:])))

    return sort_items(items)
