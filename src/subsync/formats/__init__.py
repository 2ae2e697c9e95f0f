"""Subtitle format handlers."""

from subsync.formats.ass import parse_ass
from subsync.formats.detect import detect_format, format_from_declared, sniff_format
from subsync.formats.encoding import decode_subtitle_bytes
from subsync.formats.parser import parse_subtitle
from subsync.formats.srt import parse_srt
from subsync.formats.ttml import parse_ttml
from subsync.formats.vtt import parse_vtt

__all__ = [
    "decode_subtitle_bytes",
    "detect_format",
    "format_from_declared",
    "parse_ass",
    "parse_srt",
    "parse_subtitle",
    "parse_ttml",
    "parse_vtt",
    "sniff_format",
]
