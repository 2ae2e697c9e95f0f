"""Subtitle format detection from declared metadata and content signatures.

Detection order:

1. The declared file name extension.
2. The remote subtype hint, when it names exactly one format.
3. Content signatures, checked in this order:
   ``WEBVTT`` header -> VTT; ``[Script Info]``/styles section or
   ``Dialogue:`` with ``Format:`` -> ASS; ``<tt``/``<?xml`` -> TTML.
4. SRT as the last resort.
"""

import re

import structlog

from subsync.core.subtitle import SubtitleFormat

logger = structlog.get_logger()

_SUBTYPE_KEYWORDS: tuple[tuple[str, SubtitleFormat], ...] = (
    ("srt", SubtitleFormat.SRT),
    ("subrip", SubtitleFormat.SRT),
    ("vtt", SubtitleFormat.VTT),
    ("webvtt", SubtitleFormat.VTT),
    ("ass", SubtitleFormat.ASS),
    ("ssa", SubtitleFormat.ASS),
    ("ttml", SubtitleFormat.TTML),
    ("dfxp", SubtitleFormat.TTML),
    ("xml", SubtitleFormat.TTML),
)

SUPPORTED_EXTENSIONS = (".srt", ".vtt", ".ass", ".ssa", ".ttml", ".dfxp", ".xml")

_ASS_SECTION = re.compile(r"^\s*\[(?:Script Info|V4\+? Styles)\]", re.I | re.M)


def formats_in_subtype(subtype: str | None) -> set[SubtitleFormat]:
    """Return every format named by a free-text subtype hint such as "SRT/ASS"."""
    if not subtype:
        return set()
    tokens = re.split(r"[^a-z0-9]+", subtype.lower())
    return {fmt for word, fmt in _SUBTYPE_KEYWORDS if word in tokens}


def has_supported_extension(name: str) -> bool:
    """Return True when a file name carries a parseable subtitle extension."""
    return SubtitleFormat.from_extension(name) is not None


def format_from_declared(
    filename: str | None = None, subtype: str | None = None
) -> SubtitleFormat | None:
    """Return the declared format, or None when the declaration is ambiguous."""
    if filename:
        by_name = SubtitleFormat.from_extension(filename)
        if by_name is not None:
            return by_name
    named = formats_in_subtype(subtype)
    if len(named) == 1:
        return named.pop()
    return None


def sniff_format(content: str) -> SubtitleFormat:
    """Detect the format from the content itself, defaulting to SRT."""
    text = content.lstrip("\ufeff").strip()
    if text.startswith("WEBVTT"):
        return SubtitleFormat.VTT
    if _ASS_SECTION.search(text) or ("Dialogue:" in text and "Format:" in text):
        return SubtitleFormat.ASS
    if "<tt" in text or "<?xml" in text:
        return SubtitleFormat.TTML
    return SubtitleFormat.SRT


def detect_format(
    content: str, filename: str | None = None, subtype: str | None = None
) -> SubtitleFormat:
    """Resolve the format of downloaded content.

    Args:
        content: Decoded subtitle text
        filename: File name reported by the source, if any
        subtype: Free-text format hint reported by the source, if any

    Returns:
        The declared format when unambiguous, otherwise the sniffed one
    """
    declared = format_from_declared(filename, subtype)
    if declared is not None:
        return declared
    sniffed = sniff_format(content)
    logger.debug(
        "subtitle_format_sniffed",
        format=str(sniffed),
        filename=filename,
        subtype=subtype,
    )
    return sniffed
