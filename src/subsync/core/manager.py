"""Subtitle state machine and cue synchronization loop."""

import asyncio
import contextlib
import dataclasses
import functools
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum

import structlog

from subsync.core.assrt import AssrtClient
from subsync.core.embedded import select_best_track
from subsync.core.opensubtitles import OpenSubtitlesClient
from subsync.core.playback import MediaSession, PositionSource
from subsync.core.remote import DownloadedSubtitle, SubtitleSourceError
from subsync.core.subtitle import (
    EmbeddedSubtitleTrack,
    SubtitleItem,
    SubtitleTrack,
    sort_items,
)

logger = structlog.get_logger()

CueCallback = Callable[[SubtitleItem | None], None]
StatusCallback = Callable[["SubtitleState"], None]


class ManagerStatus(StrEnum):
    """Load status of the active subtitle source."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class SubtitleState:
    """Immutable snapshot of the manager state."""

    status: ManagerStatus = ManagerStatus.IDLE
    enabled: bool = False
    delay_ms: int = 0
    selected: SubtitleTrack | None = None
    embedded: EmbeddedSubtitleTrack | None = None
    items: tuple[SubtitleItem, ...] = ()
    error: str | None = None


def find_cue(
    items: Sequence[SubtitleItem], position_ms: int | None, delay_ms: int
) -> SubtitleItem | None:
    """Return the cue to display at a playback position.

    A positive delay shows subtitles later, so the lookup uses
    ``position_ms - delay_ms``. With overlapping cues the one that starts
    first wins.

    Args:
        items: Cues sorted ascending by start time
        position_ms: Playback position, or None when unavailable
        delay_ms: User subtitle delay

    Returns:
        The current cue, or None
    """
    if position_ms is None:
        return None
    adjusted = position_ms - delay_ms
    for item in items:
        if item.start_ms > adjusted:
            break
        if adjusted <= item.end_ms:
            return item
    return None


class SubtitleManager:
    """Owns subtitle state for one player and keeps the current cue in sync.

    Commands are plain methods called from the event loop thread. Remote
    loads run in a worker thread; only the most recent load request may
    install its result. The sync loop runs while subtitles are enabled and
    reports cue changes through ``on_cue``; status transitions are reported
    through ``on_status``. A failed load passes through ``FAILED`` and settles
    in ``IDLE`` with the error kept on the state.

    The automatic search asks ASSRT first and, when a ``fallback`` source is
    configured, retries the title there if ASSRT could not deliver.
    """

    def __init__(
        self,
        position_source: PositionSource,
        *,
        client: AssrtClient | None = None,
        fallback: OpenSubtitlesClient | None = None,
        session: MediaSession | None = None,
        on_cue: CueCallback | None = None,
        on_status: StatusCallback | None = None,
        interval_ms: int = 100,
        delay_step_ms: int = 100,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        self._position_source = position_source
        self._client = client
        self._fallback = fallback
        self._session = session or MediaSession()
        self._on_cue = on_cue
        self._on_status = on_status
        self._interval = interval_ms / 1000
        self._delay_step_ms = delay_step_ms

        self._state = SubtitleState()
        self._current_cue: SubtitleItem | None = None
        self._generation = 0
        self._load_task: asyncio.Task[None] | None = None
        self._sync_task: asyncio.Task[None] | None = None
        self._disposed = False

    @property
    def state(self) -> SubtitleState:
        return self._state

    @property
    def current_cue(self) -> SubtitleItem | None:
        return self._current_cue

    @property
    def session(self) -> MediaSession:
        return self._session

    @property
    def disposed(self) -> bool:
        return self._disposed

    # -- commands -----------------------------------------------------------

    def enable(self) -> None:
        """Turn subtitles on, auto-searching once per media item if needed."""
        if self._ignored("enable"):
            return
        self._replace(enabled=True)
        self._start_sync()
        self._maybe_auto_search()

    def disable(self) -> None:
        """Turn subtitles off; loaded cues and the selection are kept."""
        if self._ignored("disable"):
            return
        self._replace(enabled=False)
        self._stop_sync()
        self._publish(None)

    def toggle(self) -> bool:
        """Flip the enabled flag and return the new value."""
        if self._state.enabled:
            self.disable()
        else:
            self.enable()
        return self._state.enabled

    def select_track(self, track: SubtitleTrack) -> None:
        """Load a track, superseding any load still in flight."""
        if self._ignored("select_track"):
            return
        source = self._source_for(track)
        if source is None:
            self._fail_without_client(track)
            return
        self._begin_load(lambda: source.fetch_track(track), selected=track)

    def load_items(
        self, items: Sequence[SubtitleItem], track: SubtitleTrack | None = None
    ) -> None:
        """Install already-parsed cues as the active subtitle."""
        if self._ignored("load_items"):
            return
        self._cancel_load()
        self._generation += 1
        self._replace(
            status=ManagerStatus.READY,
            selected=track,
            embedded=None,
            items=tuple(sort_items(items)),
            error=None,
        )
        self.sync_once()

    def activate_embedded(
        self, tracks: Sequence[EmbeddedSubtitleTrack]
    ) -> EmbeddedSubtitleTrack | None:
        """Prefer an embedded text track; the host renders its cues.

        Returns:
            The chosen track, or None when ``tracks`` is empty
        """
        if self._ignored("activate_embedded"):
            return None
        best = select_best_track(tracks)
        if best is None:
            return None

        self._cancel_load()
        self._generation += 1
        self._session.has_auto_searched = True
        self._replace(
            status=ManagerStatus.READY,
            enabled=True,
            selected=None,
            embedded=best,
            items=(),
            error=None,
        )
        self._publish(None)
        self._start_sync()
        logger.info(
            "embedded_track_activated",
            track_index=best.track_index,
            language=best.language,
            label=best.label,
        )
        return best

    def set_delay(self, delay_ms: int) -> None:
        if self._ignored("set_delay"):
            return
        self._replace(delay_ms=delay_ms)
        self.sync_once()

    def adjust_delay(self, steps: int) -> int:
        """Shift the delay by ``steps`` increments and return the new delay."""
        self.set_delay(self._state.delay_ms + steps * self._delay_step_ms)
        return self._state.delay_ms

    def clear(self) -> None:
        """Drop the loaded subtitle and any pending load."""
        if self._ignored("clear"):
            return
        self._cancel_load()
        self._generation += 1
        self._set_state(
            SubtitleState(enabled=self._state.enabled, delay_ms=self._state.delay_ms)
        )
        self._publish(None)

    def change_media(self, session: MediaSession) -> None:
        """Switch to a new media item.

        The enabled flag survives; when subtitles are on, the new item gets
        its own automatic search.
        """
        if self._ignored("change_media"):
            return
        self._cancel_load()
        self._generation += 1
        self._session = session
        self._set_state(SubtitleState(enabled=self._state.enabled))
        self._publish(None)
        logger.info("media_changed", title=session.title)
        if self._state.enabled:
            self._maybe_auto_search()

    async def wait_for_load(self) -> None:
        """Wait until the pending load, if any, has finished."""
        task = self._load_task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def dispose(self) -> None:
        """Stop all background work; later commands are ignored."""
        if self._disposed:
            return
        self._disposed = True
        self._generation += 1
        self._state = dataclasses.replace(self._state, enabled=False)
        for task in (self._load_task, self._sync_task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._load_task = None
        self._sync_task = None

    def sync_once(self) -> SubtitleItem | None:
        """Recompute the current cue immediately, e.g. after a seek."""
        state = self._state
        cue = None
        if state.enabled and state.items:
            try:
                position = self._position_source.current_position_ms()
            except Exception as e:
                logger.debug("position_unavailable", error=str(e))
                position = None
            cue = find_cue(state.items, position, state.delay_ms)
        self._publish(cue)
        return cue

    # -- internals ----------------------------------------------------------

    def _ignored(self, command: str) -> bool:
        if self._disposed:
            logger.debug("manager_command_ignored", command=command)
        return self._disposed

    def _replace(self, **changes: object) -> None:
        self._set_state(dataclasses.replace(self._state, **changes))

    def _set_state(self, state: SubtitleState) -> None:
        previous = self._state.status
        self._state = state
        if state.status is previous or self._on_status is None:
            return
        try:
            self._on_status(state)
        except Exception:
            logger.exception("status_callback_failed")

    def _publish(self, cue: SubtitleItem | None) -> None:
        if cue == self._current_cue:
            return
        self._current_cue = cue
        if self._on_cue is None:
            return
        try:
            self._on_cue(cue)
        except Exception:
            logger.exception("cue_callback_failed")

    def _maybe_auto_search(self) -> None:
        state = self._state
        session = self._session
        if state.items or state.embedded is not None:
            return
        if state.status is ManagerStatus.LOADING or session.has_auto_searched:
            return
        title = (session.title or "").strip()
        if not title:
            return
        if self._client is None and self._fallback is None:
            logger.info("auto_search_skipped", reason="no_subtitle_source")
            return

        session.has_auto_searched = True
        logger.info("auto_search_started", title=title)
        self._begin_load(
            functools.partial(
                _search_sources,
                self._client,
                self._fallback,
                title,
                tmdb_id=session.tmdb_id,
                year=session.year,
            ),
            selected=None,
        )

    def _source_for(
        self, track: SubtitleTrack
    ) -> AssrtClient | OpenSubtitlesClient | None:
        if self._fallback is not None and self._fallback.handles(track.url):
            return self._fallback
        return self._client

    def _begin_load(
        self,
        fetch: Callable[[], DownloadedSubtitle],
        *,
        selected: SubtitleTrack | None,
    ) -> None:
        self._cancel_load()
        self._generation += 1
        self._replace(
            status=ManagerStatus.LOADING,
            selected=selected,
            embedded=None,
            items=(),
            error=None,
        )
        self._publish(None)
        self._load_task = asyncio.create_task(self._load(self._generation, fetch))

    async def _load(
        self, generation: int, fetch: Callable[[], DownloadedSubtitle]
    ) -> None:
        try:
            downloaded = await asyncio.to_thread(fetch)
        except (SubtitleSourceError, ValueError) as e:
            if generation != self._generation:
                return
            logger.warning(
                "subtitle_load_failed", error=str(e), error_type=type(e).__name__
            )
            self._fail(str(e))
            return
        except Exception as e:
            if generation != self._generation:
                return
            logger.exception("subtitle_load_crashed", error_type=type(e).__name__)
            self._fail(str(e) or type(e).__name__)
            return

        if generation != self._generation:
            logger.debug("stale_load_dropped", generation=generation)
            return
        self._replace(
            status=ManagerStatus.READY,
            selected=downloaded.track,
            items=tuple(downloaded.items),
            error=None,
        )
        logger.info(
            "subtitle_loaded",
            name=downloaded.track.name,
            format=str(downloaded.track.format),
            cues=len(downloaded.items),
        )
        self.sync_once()

    def _fail_without_client(self, track: SubtitleTrack) -> None:
        self._cancel_load()
        self._generation += 1
        message = "No subtitle source configured"
        logger.warning("subtitle_load_failed", name=track.name, error=message)
        self._fail(message)

    def _fail(self, message: str) -> None:
        self._replace(
            status=ManagerStatus.FAILED,
            selected=None,
            embedded=None,
            items=(),
            error=message,
        )
        self._publish(None)
        self._replace(status=ManagerStatus.IDLE)

    def _cancel_load(self) -> None:
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = None

    def _start_sync(self) -> None:
        if self._sync_task is None or self._sync_task.done():
            self._sync_task = asyncio.create_task(self._sync_loop())

    def _stop_sync(self) -> None:
        if self._sync_task is not None:
            self._sync_task.cancel()
            self._sync_task = None

    async def _sync_loop(self) -> None:
        while True:
            self.sync_once()
            await asyncio.sleep(self._interval)


def _search_sources(
    client: AssrtClient | None,
    fallback: OpenSubtitlesClient | None,
    title: str,
    *,
    tmdb_id: str | None,
    year: int | None,
) -> DownloadedSubtitle:
    """Find a subtitle for ``title`` on ASSRT, then on the fallback source."""
    if client is not None:
        try:
            return client.find_best(title)
        except (SubtitleSourceError, ValueError) as e:
            if fallback is None:
                raise
            logger.info(
                "fallback_search_started",
                title=title,
                source=fallback.name,
                reason=str(e),
            )
    if fallback is None:
        raise SubtitleSourceError("No subtitle source configured")
    return fallback.find_best(title, tmdb_id=tmdb_id, year=year)
