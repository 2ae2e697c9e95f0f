"""Language priority ranking shared by remote and embedded track selection.

Preference order: simplified Chinese + English bilingual, simplified
Chinese, traditional Chinese + English bilingual, traditional Chinese,
English, then everything else.
"""

from collections.abc import Callable, Iterable, Mapping
from enum import IntEnum
from typing import TypeVar

T = TypeVar("T")


class LanguagePriority(IntEnum):
    """Rank of a subtitle language; lower is preferred."""

    SIMPLIFIED_BILINGUAL = 1
    SIMPLIFIED_CHINESE = 2
    TRADITIONAL_BILINGUAL = 3
    TRADITIONAL_CHINESE = 4
    ENGLISH = 5
    OTHER = 99


_CODE_PRIORITY: dict[str, LanguagePriority] = {
    "zh": LanguagePriority.SIMPLIFIED_CHINESE,
    "chi": LanguagePriority.SIMPLIFIED_CHINESE,
    "zho": LanguagePriority.SIMPLIFIED_CHINESE,
    "zh-cn": LanguagePriority.SIMPLIFIED_CHINESE,
    "zh-hans": LanguagePriority.SIMPLIFIED_CHINESE,
    "zh-sg": LanguagePriority.SIMPLIFIED_CHINESE,
    "chi_sim": LanguagePriority.SIMPLIFIED_CHINESE,
    "zh-tw": LanguagePriority.TRADITIONAL_CHINESE,
    "zh-hk": LanguagePriority.TRADITIONAL_CHINESE,
    "zh-hant": LanguagePriority.TRADITIONAL_CHINESE,
    "chi_tra": LanguagePriority.TRADITIONAL_CHINESE,
    "en": LanguagePriority.ENGLISH,
    "eng": LanguagePriority.ENGLISH,
    "en-us": LanguagePriority.ENGLISH,
    "en-gb": LanguagePriority.ENGLISH,
}

_PRIORITY_TAG: dict[LanguagePriority, str] = {
    LanguagePriority.SIMPLIFIED_BILINGUAL: "zh-CN",
    LanguagePriority.SIMPLIFIED_CHINESE: "zh-CN",
    LanguagePriority.TRADITIONAL_BILINGUAL: "zh-TW",
    LanguagePriority.TRADITIONAL_CHINESE: "zh-TW",
    LanguagePriority.ENGLISH: "en",
    LanguagePriority.OTHER: "und",
}


def language_tag(priority: LanguagePriority) -> str:
    """Language tag given to tracks of a priority class."""
    return _PRIORITY_TAG[priority]


def priority_from_label(label: str | None) -> LanguagePriority:
    """Rank a free-text track label or language description.

    Args:
        label: Track label such as "简英双语" or "English SDH"

    Returns:
        Matching priority, or OTHER when no marker is present
    """
    if not label:
        return LanguagePriority.OTHER
    text = label.lower()
    has_english = "英" in text
    if "简" in text and (has_english or "双语" in text):
        return LanguagePriority.SIMPLIFIED_BILINGUAL
    if "简" in text or "chs" in text:
        return LanguagePriority.SIMPLIFIED_CHINESE
    if "繁" in text and (has_english or "雙語" in text or "双语" in text):
        return LanguagePriority.TRADITIONAL_BILINGUAL
    if "繁" in text or "cht" in text:
        return LanguagePriority.TRADITIONAL_CHINESE
    if "eng" in text or has_english:
        return LanguagePriority.ENGLISH
    return LanguagePriority.OTHER


def priority_from_code(code: str | None) -> LanguagePriority:
    """Rank a raw language code (ISO 639 / BCP 47 style)."""
    if not code:
        return LanguagePriority.OTHER
    return _CODE_PRIORITY.get(code.strip().lower(), LanguagePriority.OTHER)


def language_priority(label: str | None, code: str | None = None) -> LanguagePriority:
    """Rank by label heuristics first, then by language code."""
    by_label = priority_from_label(label)
    if by_label is not LanguagePriority.OTHER:
        return by_label
    return priority_from_code(code)


def priority_from_flags(
    desc: str | None, flags: Mapping[str, bool | None] | None
) -> LanguagePriority:
    """Rank a remote search result from its description and language flags.

    Args:
        desc: Free-text language description, e.g. "简英"
        flags: Per-language booleans such as ``langchs`` or ``langdou``

    Returns:
        Priority derived from the description, falling back to the flags
    """
    by_desc = priority_from_label(desc)
    if by_desc is not LanguagePriority.OTHER:
        return by_desc
    if not flags:
        return LanguagePriority.OTHER

    if flags.get("langdou"):
        if flags.get("langcht") and not flags.get("langchs"):
            return LanguagePriority.TRADITIONAL_BILINGUAL
        return LanguagePriority.SIMPLIFIED_BILINGUAL
    if flags.get("langchs"):
        return LanguagePriority.SIMPLIFIED_CHINESE
    if flags.get("langcht"):
        return LanguagePriority.TRADITIONAL_CHINESE
    if flags.get("langeng"):
        return LanguagePriority.ENGLISH
    return LanguagePriority.OTHER


def rank_by_priority(
    items: Iterable[T], key: Callable[[T], LanguagePriority]
) -> list[T]:
    """Stable sort by language priority; ties keep input order."""
    return sorted(items, key=key)
