"""Pytest configuration and shared fixtures."""

from collections.abc import Generator
from pathlib import Path

import pytest

from subsync.core.subtitle import SubtitleItem
from subsync.utils.config import get_settings


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    """Clear the get_settings LRU cache before and after each test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def no_env_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Switch to a temporary directory with no .env file."""
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()


@pytest.fixture
def sample_srt_content() -> str:
    """Return sample SRT content for testing."""
    return """1
00:00:01,000 --> 00:00:04,000
Hello, this is a test.

2
00:00:05,000 --> 00:00:08,000
This is the second subtitle.

3
00:00:09,000 --> 00:00:12,000
And this is the third one.
"""


@pytest.fixture
def sample_items() -> list[SubtitleItem]:
    """Return cues matching sample_srt_content."""
    return [
        SubtitleItem(1000, 4000, "Hello, this is a test."),
        SubtitleItem(5000, 8000, "This is the second subtitle."),
        SubtitleItem(9000, 12000, "And this is the third one."),
    ]
