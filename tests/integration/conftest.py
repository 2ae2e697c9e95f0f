"""Pytest configuration and shared fixtures for integration tests."""

from collections.abc import AsyncGenerator, Generator
from unittest.mock import Mock

import pytest
import respx

from subsync.core.assrt import AssrtClient
from subsync.core.manager import SubtitleManager
from subsync.core.playback import MediaSession, ReportedPosition
from subsync.core.subtitle import SubtitleItem

ASSRT_BASE = "https://api.assrt.net"


# ---------------------------------------------------------------------------
# Client and manager fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def api() -> Generator[respx.MockRouter, None, None]:
    """Intercept every outgoing httpx request."""
    with respx.mock(assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture
def assrt_client() -> Generator[AssrtClient, None, None]:
    """ASSRT client that never sleeps between retries."""
    with AssrtClient("integration-token", base_url=ASSRT_BASE, sleep=Mock()) as client:
        yield client


@pytest.fixture
def position() -> ReportedPosition:
    return ReportedPosition()


@pytest.fixture
def cues() -> list[SubtitleItem | None]:
    return []


@pytest.fixture
async def manager(
    position: ReportedPosition,
    assrt_client: AssrtClient,
    cues: list[SubtitleItem | None],
) -> AsyncGenerator[SubtitleManager, None]:
    subtitle_manager = SubtitleManager(
        position,
        client=assrt_client,
        session=MediaSession(title="Some Movie"),
        on_cue=cues.append,
    )
    yield subtitle_manager
    await subtitle_manager.dispose()
