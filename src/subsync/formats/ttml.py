"""TTML (Timed Text Markup Language) format parser.

Cues are read from ``<p>`` elements with a lightweight pattern match
rather than a full XML parse, so documents with undeclared namespaces or
minor well-formedness problems still yield their cues.
"""

import html
import re

import structlog

from subsync.core.subtitle import SubtitleItem, sort_items
from subsync.formats._timecode import clock_to_ms, normalize_newlines, seconds_to_ms

logger = structlog.get_logger()

_PARAGRAPH = re.compile(
    r"<(?:[\w-]+:)?p\b([^>]*?)(?<!/)>(.*?)</(?:[\w-]+:)?p\s*>",
    re.DOTALL | re.IGNORECASE,
)
_TIME_ATTRIBUTE = re.compile(
    r"(?<![\w:-])(begin|end|dur)\s*=\s*([\"'])(.*?)\2", re.IGNORECASE
)
_LINE_BREAK = re.compile(r"<(?:[\w-]+:)?br\s*/?>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")


def parse_ttml_time(value: str) -> int:
    """Parse a TTML time expression into milliseconds (0 if invalid).

    Accepted forms: ``HH:MM:SS.mmm``, ``MM:SS.mmm``, ``<seconds>s`` and
    ``<milliseconds>ms``.
    """
    text = value.strip()
    millis: int | None
    if text.endswith("ms"):
        whole = seconds_to_ms(text[:-2])
        millis = whole // 1000 if whole is not None else None
    elif text.endswith("s"):
        millis = seconds_to_ms(text[:-1])
    else:
        millis = clock_to_ms(text, allow_short=True)
    return millis if millis is not None else 0


def clean_ttml_text(text: str) -> str:
    """Convert a ``<p>`` body to plain text.

    ``<br/>`` becomes a newline, remaining tags are removed and XML
    entities are decoded.
    """
    cleaned = _LINE_BREAK.sub("\n", text)
    cleaned = _TAG.sub("", cleaned)
    cleaned = html.unescape(cleaned)
    lines = [line.strip() for line in cleaned.split("\n")]
    return "\n".join(line for line in lines if line)


def parse_ttml(content: str) -> list[SubtitleItem]:
    """Parse TTML content into cues sorted by start time.

    ``begin`` and ``end`` may appear in either order on the ``<p>`` element.
    When ``end`` is missing, ``dur`` is added to ``begin`` instead.

    Args:
        content: TTML/DFXP document content

    Returns:
        Parsed cues, sorted ascending by start time
    """
    items: list[SubtitleItem] = []

    for match in _PARAGRAPH.finditer(normalize_newlines(content)):
        attrs = {
            name.lower(): value
            for name, _, value in _TIME_ATTRIBUTE.findall(match.group(1))
        }
        if "begin" not in attrs or ("end" not in attrs and "dur" not in attrs):
            logger.debug("ttml_cue_skipped", offset=match.start(), reason="no_timing")
            continue

        start_ms = parse_ttml_time(attrs["begin"])
        if "end" in attrs:
            end_ms = parse_ttml_time(attrs["end"])
        else:
            end_ms = start_ms + parse_ttml_time(attrs["dur"])

        text = clean_ttml_text(match.group(2))
        if not text:
            continue
        if end_ms < start_ms:
            logger.debug(
                "ttml_cue_skipped", offset=match.start(), reason="negative_span"
            )
            continue
        items.append(SubtitleItem(start_ms, end_ms, text))

    return sort_items(items)
