"""Timestamp helpers shared by the text parsers."""

import re

_DIGITS = re.compile(r"[0-9]+")


def seconds_to_ms(value: str) -> int | None:
    """Convert "SS", "SS.f", "SS.ff" or "SS.fff" to milliseconds.

    Fractions are read as decimal fractions of a second, so "2.5" and
    "2.50" are both 2500ms. Digits beyond millisecond precision are dropped.
    """
    whole, _, frac = value.strip().partition(".")
    if not _DIGITS.fullmatch(whole):
        return None
    if frac and not _DIGITS.fullmatch(frac):
        return None
    millis = int((frac + "000")[:3]) if frac else 0
    return int(whole) * 1000 + millis


def clock_to_ms(value: str, *, allow_short: bool = False) -> int | None:
    """Convert "H:MM:SS.fff" (or "MM:SS.fff" when allow_short) to milliseconds.

    A comma is accepted as the fraction separator.

    Returns:
        Milliseconds, or None when the value is not a clock time
    """
    parts = value.strip().replace(",", ".").split(":")
    if len(parts) == 2 and allow_short:
        parts.insert(0, "0")
    if len(parts) != 3:
        return None

    hours, minutes, seconds = parts
    if not _DIGITS.fullmatch(hours) or not _DIGITS.fullmatch(minutes):
        return None
    seconds_ms = seconds_to_ms(seconds)
    if seconds_ms is None:
        return None
    return int(hours) * 3_600_000 + int(minutes) * 60_000 + seconds_ms


def normalize_newlines(content: str) -> str:
    """Strip a leading BOM and convert CRLF/CR line endings to LF."""
    return content.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
