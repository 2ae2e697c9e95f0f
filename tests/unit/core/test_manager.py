"""Tests for the subtitle manager and cue lookup."""

import asyncio
import threading
from collections.abc import AsyncGenerator
from unittest.mock import Mock

import pytest

from subsync.core.assrt import DownloadedSubtitle, NetworkError, NoResultsError
from subsync.core.manager import (
    ManagerStatus,
    SubtitleManager,
    SubtitleState,
    find_cue,
)
from subsync.core.playback import MediaSession
from subsync.core.subtitle import (
    EmbeddedSubtitleTrack,
    SubtitleFormat,
    SubtitleItem,
    SubtitleTrack,
)

HELLO = SubtitleItem(1000, 2000, "Hello")
WORLD = SubtitleItem(2500, 3500, "World")
TRACK = SubtitleTrack("Movie.srt", "assrt://1", "zh-CN", SubtitleFormat.SRT)
OTHER_TRACK = SubtitleTrack("Other.srt", "assrt://2", "en", SubtitleFormat.SRT)
FALLBACK_TRACK = SubtitleTrack(
    "Fallback.srt", "opensubtitles://77", "zh-CN", SubtitleFormat.SRT
)


class FakePosition:
    def __init__(self, position_ms: int | None = None) -> None:
        self.position_ms = position_ms
        self.error: Exception | None = None

    def current_position_ms(self) -> int | None:
        if self.error is not None:
            raise self.error
        return self.position_ms

    def duration_ms(self) -> int:
        return 0


@pytest.fixture
def position() -> FakePosition:
    return FakePosition()


@pytest.fixture
def client() -> Mock:
    mock = Mock()
    mock.find_best.return_value = DownloadedSubtitle(track=TRACK, items=[HELLO, WORLD])
    mock.fetch_track.side_effect = lambda track: DownloadedSubtitle(
        track=track, items=[HELLO]
    )
    return mock


@pytest.fixture
def fallback() -> Mock:
    mock = Mock()
    mock.name = "opensubtitles"
    mock.handles.side_effect = lambda url: url.startswith("opensubtitles://")
    mock.find_best.return_value = DownloadedSubtitle(
        track=FALLBACK_TRACK, items=[WORLD]
    )
    mock.fetch_track.side_effect = lambda track: DownloadedSubtitle(
        track=track, items=[WORLD]
    )
    return mock


@pytest.fixture
def cues() -> list[SubtitleItem | None]:
    return []


@pytest.fixture
async def manager(
    position: FakePosition, client: Mock, cues: list[SubtitleItem | None]
) -> AsyncGenerator[SubtitleManager, None]:
    subtitle_manager = SubtitleManager(
        position,
        client=client,
        session=MediaSession(title="Some Movie"),
        on_cue=cues.append,
    )
    yield subtitle_manager
    await subtitle_manager.dispose()


@pytest.mark.unit
class TestFindCue:
    @pytest.mark.parametrize(
        ("position_ms", "delay_ms", "expected"),
        [
            (999, 0, None),
            (1000, 0, HELLO),
            (2000, 0, HELLO),
            (2200, 0, None),
            (3500, 0, WORLD),
            (2200, -500, WORLD),
            (1400, -500, HELLO),
            (4200, -500, None),
            (1500, 500, HELLO),
            (900, 500, None),
        ],
    )
    def test_lookup(
        self, position_ms: int, delay_ms: int, expected: SubtitleItem | None
    ) -> None:
        assert find_cue([HELLO, WORLD], position_ms, delay_ms) == expected

    def test_no_position(self) -> None:
        assert find_cue([HELLO], None, 0) is None

    def test_overlap_earliest_start_wins(self) -> None:
        long_cue = SubtitleItem(0, 10_000, "Long")
        assert find_cue([long_cue, HELLO], 1500, 0) == long_cue

    def test_empty_items(self) -> None:
        assert find_cue([], 1000, 0) is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestEnable:
    async def test_auto_search_once(
        self, manager: SubtitleManager, client: Mock
    ) -> None:
        manager.enable()
        assert manager.state.status == ManagerStatus.LOADING
        await manager.wait_for_load()

        assert manager.state.status == ManagerStatus.READY
        assert manager.state.selected == TRACK
        assert manager.state.items == (HELLO, WORLD)
        assert manager.session.has_auto_searched is True

        manager.disable()
        manager.clear()
        manager.enable()
        await manager.wait_for_load()

        client.find_best.assert_called_once_with("Some Movie")

    async def test_no_search_without_title(
        self, position: FakePosition, client: Mock
    ) -> None:
        manager = SubtitleManager(position, client=client, session=MediaSession())
        manager.enable()

        assert manager.state.enabled is True
        assert manager.state.status == ManagerStatus.IDLE
        client.find_best.assert_not_called()
        await manager.dispose()

    async def test_no_search_when_already_searched(
        self, position: FakePosition, client: Mock
    ) -> None:
        session = MediaSession(title="Movie", has_auto_searched=True)
        manager = SubtitleManager(position, client=client, session=session)
        manager.enable()

        client.find_best.assert_not_called()
        await manager.dispose()

    async def test_no_search_when_items_loaded(
        self, manager: SubtitleManager, client: Mock
    ) -> None:
        manager.load_items([HELLO], TRACK)
        manager.enable()

        client.find_best.assert_not_called()
        assert manager.session.has_auto_searched is False

    async def test_auto_search_failure_keeps_playing(
        self, manager: SubtitleManager, client: Mock
    ) -> None:
        client.find_best.side_effect = NetworkError("offline")

        manager.enable()
        await manager.wait_for_load()

        state = manager.state
        assert state.status == ManagerStatus.IDLE
        assert state.error == "offline"
        assert state.items == ()
        assert state.selected is None
        assert state.enabled is True

    async def test_no_client_skips_search(self, position: FakePosition) -> None:
        manager = SubtitleManager(position, session=MediaSession(title="Movie"))
        manager.enable()

        assert manager.state.status == ManagerStatus.IDLE
        assert manager.session.has_auto_searched is False
        await manager.dispose()

    async def test_failed_load_passes_through_failed_to_idle(
        self, position: FakePosition, client: Mock
    ) -> None:
        client.find_best.side_effect = NetworkError("offline")
        states: list[SubtitleState] = []
        manager = SubtitleManager(
            position,
            client=client,
            session=MediaSession(title="Movie"),
            on_status=states.append,
        )

        manager.enable()
        await manager.wait_for_load()

        assert [s.status for s in states] == [
            ManagerStatus.LOADING,
            ManagerStatus.FAILED,
            ManagerStatus.IDLE,
        ]
        assert states[1].error == "offline"
        assert states[2].error == "offline"
        await manager.dispose()

    async def test_unexpected_error_still_ends_load(
        self, manager: SubtitleManager, client: Mock
    ) -> None:
        client.find_best.side_effect = RuntimeError("parser exploded")

        manager.enable()
        await manager.wait_for_load()

        assert manager.state.status == ManagerStatus.IDLE
        assert manager.state.error == "parser exploded"
        assert manager.state.enabled is True

    async def test_status_callback_error_is_contained(
        self, position: FakePosition, client: Mock
    ) -> None:
        manager = SubtitleManager(
            position,
            client=client,
            session=MediaSession(title="Movie"),
            on_status=Mock(side_effect=RuntimeError("listener gone")),
        )

        manager.enable()
        await manager.wait_for_load()

        assert manager.state.status == ManagerStatus.READY
        await manager.dispose()

    async def test_toggle(self, manager: SubtitleManager) -> None:
        manager.session.has_auto_searched = True
        assert manager.toggle() is True
        assert manager.toggle() is False


@pytest.mark.unit
@pytest.mark.asyncio
class TestSelectTrack:
    async def test_select_loads_track(
        self, manager: SubtitleManager, client: Mock
    ) -> None:
        manager.select_track(OTHER_TRACK)
        assert manager.state.status == ManagerStatus.LOADING
        assert manager.state.selected == OTHER_TRACK

        await manager.wait_for_load()

        assert manager.state.status == ManagerStatus.READY
        assert manager.state.items == (HELLO,)
        client.fetch_track.assert_called_once_with(OTHER_TRACK)

    async def test_second_select_supersedes_first(
        self, manager: SubtitleManager, client: Mock
    ) -> None:
        manager.select_track(TRACK)
        manager.select_track(OTHER_TRACK)
        await manager.wait_for_load()

        assert manager.state.selected == OTHER_TRACK
        client.fetch_track.assert_called_once_with(OTHER_TRACK)

    async def test_stale_result_dropped(
        self, manager: SubtitleManager, client: Mock
    ) -> None:
        release = threading.Event()
        started = threading.Event()

        def fetch(track: SubtitleTrack) -> DownloadedSubtitle:
            if track is TRACK:
                started.set()
                release.wait(timeout=5)
                return DownloadedSubtitle(track=track, items=[WORLD])
            return DownloadedSubtitle(track=track, items=[HELLO])

        client.fetch_track.side_effect = fetch
        try:
            manager.select_track(TRACK)
            await asyncio.to_thread(started.wait, 5)
            manager.select_track(OTHER_TRACK)
            await manager.wait_for_load()
        finally:
            release.set()
        await asyncio.sleep(0.05)

        assert manager.state.selected == OTHER_TRACK
        assert manager.state.items == (HELLO,)

    async def test_failure_clears_selection(
        self, manager: SubtitleManager, client: Mock
    ) -> None:
        manager.load_items([HELLO], TRACK)
        client.fetch_track.side_effect = NetworkError("boom")

        manager.select_track(OTHER_TRACK)
        await manager.wait_for_load()

        assert manager.state.status == ManagerStatus.IDLE
        assert manager.state.selected is None
        assert manager.state.items == ()
        assert manager.state.error == "boom"

    async def test_without_client_fails(self, position: FakePosition) -> None:
        manager = SubtitleManager(position)
        manager.select_track(TRACK)

        assert manager.state.status == ManagerStatus.IDLE
        assert manager.state.error == "No subtitle source configured"
        await manager.dispose()


@pytest.mark.unit
@pytest.mark.asyncio
class TestCueSync:
    async def test_cue_changes_published_once(
        self,
        manager: SubtitleManager,
        position: FakePosition,
        cues: list[SubtitleItem | None],
    ) -> None:
        manager.session.has_auto_searched = True
        manager.load_items([WORLD, HELLO], TRACK)
        manager.enable()

        position.position_ms = 1200
        assert manager.sync_once() == HELLO
        position.position_ms = 1800
        assert manager.sync_once() == HELLO
        position.position_ms = 2200
        assert manager.sync_once() is None
        position.position_ms = 3000
        assert manager.sync_once() == WORLD

        assert cues == [HELLO, None, WORLD]

    async def test_disable_publishes_none_and_keeps_items(
        self,
        manager: SubtitleManager,
        position: FakePosition,
        cues: list[SubtitleItem | None],
    ) -> None:
        manager.session.has_auto_searched = True
        manager.load_items([HELLO], TRACK)
        manager.enable()
        position.position_ms = 1500
        manager.sync_once()

        manager.disable()

        assert cues == [HELLO, None]
        assert manager.current_cue is None
        assert manager.state.items == (HELLO,)
        assert manager.sync_once() is None

    async def test_position_errors_yield_none(
        self, manager: SubtitleManager, position: FakePosition
    ) -> None:
        manager.session.has_auto_searched = True
        manager.load_items([HELLO], TRACK)
        manager.enable()
        position.error = RuntimeError("player released")

        assert manager.sync_once() is None

    async def test_delay_applied(
        self, manager: SubtitleManager, position: FakePosition
    ) -> None:
        manager.session.has_auto_searched = True
        manager.load_items([HELLO, WORLD], TRACK)
        manager.enable()
        manager.set_delay(-500)

        position.position_ms = 2200
        assert manager.sync_once() == WORLD
        position.position_ms = 1400
        assert manager.sync_once() == HELLO
        position.position_ms = 4200
        assert manager.sync_once() is None

    async def test_adjust_delay_steps(self, manager: SubtitleManager) -> None:
        assert manager.adjust_delay(2) == 200
        assert manager.adjust_delay(-3) == -100
        assert manager.state.delay_ms == -100

    async def test_loop_ticks_in_background(
        self, position: FakePosition, cues: list[SubtitleItem | None]
    ) -> None:
        manager = SubtitleManager(position, on_cue=cues.append, interval_ms=10)
        manager.load_items([HELLO], TRACK)
        manager.enable()

        position.position_ms = 1500
        await asyncio.sleep(0.1)

        assert cues == [HELLO]
        await manager.dispose()

    async def test_callback_errors_do_not_stop_sync(
        self, position: FakePosition
    ) -> None:
        callback = Mock(side_effect=RuntimeError("ui gone"))
        manager = SubtitleManager(position, on_cue=callback)
        manager.load_items([HELLO], TRACK)
        manager.enable()

        position.position_ms = 1500
        assert manager.sync_once() == HELLO
        assert manager.current_cue == HELLO
        await manager.dispose()


@pytest.mark.unit
@pytest.mark.asyncio
class TestLifecycle:
    async def test_clear_keeps_enabled_and_delay(
        self, manager: SubtitleManager
    ) -> None:
        manager.session.has_auto_searched = True
        manager.enable()
        manager.set_delay(300)
        manager.load_items([HELLO], TRACK)

        manager.clear()

        state = manager.state
        assert state.status == ManagerStatus.IDLE
        assert state.items == ()
        assert state.selected is None
        assert state.enabled is True
        assert state.delay_ms == 300

    async def test_activate_embedded(
        self, manager: SubtitleManager, client: Mock
    ) -> None:
        tracks = [
            EmbeddedSubtitleTrack(0, 0, "eng", "English", SubtitleFormat.SRT, "x"),
            EmbeddedSubtitleTrack(1, 1, "chi", "简体", SubtitleFormat.SRT, "x"),
        ]

        chosen = manager.activate_embedded(tracks)

        assert chosen == tracks[1]
        assert manager.state.embedded == tracks[1]
        assert manager.state.enabled is True
        assert manager.session.has_auto_searched is True

        manager.enable()
        client.find_best.assert_not_called()

    async def test_activate_embedded_empty(self, manager: SubtitleManager) -> None:
        assert manager.activate_embedded([]) is None
        assert manager.state.enabled is False

    async def test_change_media_resets_and_searches_again(
        self, manager: SubtitleManager, client: Mock
    ) -> None:
        manager.enable()
        await manager.wait_for_load()
        manager.set_delay(200)

        manager.change_media(MediaSession(title="Next Episode"))

        assert manager.session.title == "Next Episode"
        assert manager.state.delay_ms == 0
        assert manager.state.status == ManagerStatus.LOADING
        await manager.wait_for_load()
        assert client.find_best.call_count == 2
        client.find_best.assert_called_with("Next Episode")

    async def test_change_media_while_disabled(
        self, manager: SubtitleManager, client: Mock
    ) -> None:
        manager.load_items([HELLO], TRACK)

        manager.change_media(MediaSession(title="Next"))

        assert manager.state.items == ()
        assert manager.state.status == ManagerStatus.IDLE
        client.find_best.assert_not_called()

    async def test_dispose_ignores_later_commands(
        self, manager: SubtitleManager, client: Mock
    ) -> None:
        manager.session.has_auto_searched = True
        manager.enable()

        await manager.dispose()
        manager.enable()
        manager.select_track(TRACK)

        assert manager.disposed is True
        assert manager.state.enabled is False
        client.fetch_track.assert_not_called()

    async def test_dispose_cancels_pending_load(
        self, manager: SubtitleManager, client: Mock
    ) -> None:
        manager.enable()
        await manager.dispose()
        await manager.dispose()

        client.find_best.assert_not_called()
        assert manager.state.items == ()


@pytest.mark.unit
class TestConstruction:
    def test_invalid_interval(self, position: FakePosition) -> None:
        with pytest.raises(ValueError, match="interval_ms"):
            SubtitleManager(position, interval_ms=0)


@pytest.mark.unit
@pytest.mark.asyncio
class TestFallbackSource:
    @pytest.fixture
    async def manager(
        self, position: FakePosition, client: Mock, fallback: Mock
    ) -> AsyncGenerator[SubtitleManager, None]:
        subtitle_manager = SubtitleManager(
            position,
            client=client,
            fallback=fallback,
            session=MediaSession(title="Some Movie", tmdb_id="603", year=1999),
        )
        yield subtitle_manager
        await subtitle_manager.dispose()

    async def test_primary_result_used_first(
        self, manager: SubtitleManager, fallback: Mock
    ) -> None:
        manager.enable()
        await manager.wait_for_load()

        assert manager.state.selected == TRACK
        fallback.find_best.assert_not_called()

    @pytest.mark.parametrize(
        "error", [NoResultsError("nothing"), NetworkError("offline")]
    )
    async def test_falls_back_when_primary_fails(
        self,
        manager: SubtitleManager,
        client: Mock,
        fallback: Mock,
        error: Exception,
    ) -> None:
        client.find_best.side_effect = error

        manager.enable()
        await manager.wait_for_load()

        assert manager.state.status == ManagerStatus.READY
        assert manager.state.selected == FALLBACK_TRACK
        assert manager.state.items == (WORLD,)
        fallback.find_best.assert_called_once_with(
            "Some Movie", tmdb_id="603", year=1999
        )

    async def test_both_sources_failing_reports_fallback_error(
        self, manager: SubtitleManager, client: Mock, fallback: Mock
    ) -> None:
        client.find_best.side_effect = NoResultsError("no assrt results")
        fallback.find_best.side_effect = NoResultsError("no fallback results")

        manager.enable()
        await manager.wait_for_load()

        assert manager.state.status == ManagerStatus.IDLE
        assert manager.state.error == "no fallback results"

    async def test_fallback_alone_is_searched(
        self, position: FakePosition, fallback: Mock
    ) -> None:
        manager = SubtitleManager(
            position, fallback=fallback, session=MediaSession(title="Some Movie")
        )

        manager.enable()
        await manager.wait_for_load()

        assert manager.state.selected == FALLBACK_TRACK
        fallback.find_best.assert_called_once_with(
            "Some Movie", tmdb_id=None, year=None
        )
        await manager.dispose()

    async def test_fallback_reference_routed_to_fallback(
        self, manager: SubtitleManager, client: Mock, fallback: Mock
    ) -> None:
        manager.select_track(FALLBACK_TRACK)
        await manager.wait_for_load()

        fallback.fetch_track.assert_called_once_with(FALLBACK_TRACK)
        client.fetch_track.assert_not_called()
        assert manager.state.items == (WORLD,)
