"""ASS/SSA (SubStation Alpha) format parser."""

import re

import structlog

from subsync.core.subtitle import SubtitleItem, sort_items
from subsync.formats._timecode import clock_to_ms, normalize_newlines

logger = structlog.get_logger()

# Column order used when a Dialogue line appears before any Format line
_DEFAULT_EVENT_FORMAT = (
    "Layer",
    "Start",
    "End",
    "Style",
    "Name",
    "MarginL",
    "MarginR",
    "MarginV",
    "Effect",
    "Text",
)

_OVERRIDE_BLOCK = re.compile(r"\{[^}]*\}")
# Vector drawing runs between {\p1} and {\p0} (or the end of the line)
_DRAWING = re.compile(
    r"\{[^}]*\\p[1-9][^}]*\}.*?(?:\{[^}]*\\p0[^}]*\}|$)", re.DOTALL
)
_BACKSLASH_TAG = re.compile(
    r"\\(?:pbo|pos|p|an|alpha|a|move|org|fade|fad|t|iclip|clip|be|blur|bord|shad|"
    r"xbord|ybord|xshad|yshad|[1-4]a|[1-4]c|c|fn|fsc[xy]|fsp|fs|fr[xyz]?|"
    r"fa[xy]|fe|[ibus]|k[fo]?|K|q|r)"
    r"(?:\([^)]*\)|&H[0-9A-Fa-f]+&?|-?[0-9.]+)?"
)


def parse_ass_time(value: str) -> int:
    """Parse an ASS timestamp ``H:MM:SS.cc`` into milliseconds (0 if invalid).

    The fraction is centiseconds, so ``0:01:02.50`` is 62500ms.
    """
    millis = clock_to_ms(value)
    return millis if millis is not None else 0


def clean_ass_text(text: str) -> str:
    """Turn an ASS Text field into plain display text.

    Hard line breaks (``\\N``) and soft breaks (``\\n``) become newlines,
    ``\\h`` becomes a space, override blocks ``{...}`` and any stray
    backslash tags are removed, and blank lines are dropped.
    """
    cleaned = text.replace("\\N", "\n").replace("\\n", "\n").replace("\\h", " ")
    cleaned = _DRAWING.sub("", cleaned)
    cleaned = _OVERRIDE_BLOCK.sub("", cleaned)
    cleaned = _BACKSLASH_TAG.sub("", cleaned)
    lines = [line.strip() for line in cleaned.split("\n")]
    return "\n".join(line for line in lines if line)


def _split_columns(value: str) -> list[str]:
    return [column.strip() for column in value.split(",")]


def parse_ass(content: str) -> list[SubtitleItem]:
    """Parse ASS/SSA content into cues sorted by start time.

    Only the ``[Events]`` section is read. Its ``Format:`` line fixes the
    column order, and each ``Dialogue:`` line is split into exactly that many
    columns so commas inside the trailing Text column are preserved.

    Args:
        content: ASS or SSA script content

    Returns:
        Parsed cues, sorted ascending by start time
    """
    items: list[SubtitleItem] = []
    in_events = False
    columns: list[str] | None = None

    for line_num, raw_line in enumerate(normalize_newlines(content).split("\n"), 1):
        line = raw_line.strip()
        if line.startswith("[") and line.endswith("]"):
            in_events = line.lower() == "[events]"
            continue
        if not in_events:
            continue

        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip().lower()

        if key == "format":
            columns = _split_columns(value)
            continue
        if key != "dialogue":
            continue

        fields = columns or list(_DEFAULT_EVENT_FORMAT)
        lookup = {name.lower(): idx for idx, name in enumerate(fields)}
        start_idx = lookup.get("start")
        end_idx = lookup.get("end")
        text_idx = lookup.get("text")
        if start_idx is None or end_idx is None or text_idx is None:
            logger.debug("ass_dialogue_skipped", line=line_num, reason="bad_format")
            continue

        parts = value.lstrip().split(",", len(fields) - 1)
        if len(parts) < len(fields):
            logger.debug("ass_dialogue_skipped", line=line_num, reason="too_few_fields")
            continue

        start_ms = parse_ass_time(parts[start_idx])
        end_ms = parse_ass_time(parts[end_idx])
        # Text is normally the last column; keep everything after it as well
        text = clean_ass_text(",".join(parts[text_idx:]))
        if not text:
            continue
        if end_ms < start_ms:
            logger.debug("ass_dialogue_skipped", line=line_num, reason="negative_span")
            continue
        items.append(SubtitleItem(start_ms, end_ms, text))

    return sort_items(items)
