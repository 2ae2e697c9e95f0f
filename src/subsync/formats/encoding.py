"""Decoding of downloaded subtitle bytes."""

import codecs
import contextlib
from collections.abc import Sequence

import structlog
from charset_normalizer import CharsetMatch, from_bytes

logger = structlog.get_logger()

DEFAULT_FALLBACK_ENCODINGS = ("gbk", "big5", "utf-16")

_SIGNATURES = ("-->", "[Script Info]", "Dialogue:", "WEBVTT", "<tt", "<?xml")


def _looks_like_subtitle(text: str) -> bool:
    return "\ufffd" not in text and any(sig in text for sig in _SIGNATURES)


def _codec_name(encoding: str) -> str | None:
    try:
        return codecs.lookup(encoding).name
    except LookupError:
        return None


def _preferred_match(data: bytes, preferred: list[str]) -> CharsetMatch | None:
    """Best plausible match among ``preferred``, honouring their order."""
    rank = {name: index for index, name in enumerate(preferred)}
    best: tuple[int, CharsetMatch] | None = None
    for match in from_bytes(data, cp_isolation=preferred):
        names = {_codec_name(enc) for enc in match.could_be_from_charset}
        positions = [rank[name] for name in names if name in rank]
        if not positions or not _looks_like_subtitle(str(match)):
            continue
        if best is None or min(positions) < best[0]:
            best = (min(positions), match)
    return best[1] if best else None


def decode_subtitle_bytes(
    data: bytes, fallback_encodings: Sequence[str] = DEFAULT_FALLBACK_ENCODINGS
) -> str:
    """Decode subtitle file bytes to text.

    Byte order marks win outright, then strict UTF-8. Otherwise
    charset-normalizer is asked about the configured legacy encodings and
    the earliest listed one that decodes plausibly and carries a subtitle
    signature is used. Failing that, detection runs over every encoding it
    knows. As a last resort the bytes are decoded as UTF-8 with replacement
    characters.

    Args:
        data: Raw downloaded bytes
        fallback_encodings: Legacy encodings preferred after UTF-8, in order

    Returns:
        Decoded text without a byte order mark
    """
    if data.startswith(codecs.BOM_UTF8):
        return data[len(codecs.BOM_UTF8) :].decode("utf-8", errors="replace")
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return data.decode("utf-16", errors="replace").lstrip("\ufeff")

    with contextlib.suppress(UnicodeDecodeError):
        return data.decode("utf-8")

    preferred = [
        name for name in map(_codec_name, fallback_encodings) if name is not None
    ]
    if preferred:
        match = _preferred_match(data, preferred)
        if match is not None:
            logger.info("subtitle_decoded_with_fallback", encoding=match.encoding)
            return str(match)

    match = from_bytes(data).best()
    if match is not None:
        logger.info("subtitle_encoding_detected", encoding=match.encoding)
        return str(match)

    logger.warning("subtitle_encoding_unknown", size=len(data))
    return data.decode("utf-8", errors="replace")
