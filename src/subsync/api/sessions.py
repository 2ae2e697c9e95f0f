"""In-memory playback session store with TTL-based cleanup."""

from __future__ import annotations

import asyncio
import contextlib
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from subsync.api.constants import CLEANUP_INTERVAL_SECONDS, EVENT_QUEUE_SIZE, SSEEvent
from subsync.core.manager import SubtitleManager
from subsync.core.playback import MediaSession, ReportedPosition

if TYPE_CHECKING:
    from subsync.core.assrt import AssrtClient
    from subsync.core.manager import SubtitleState
    from subsync.core.opensubtitles import OpenSubtitlesClient
    from subsync.core.subtitle import SubtitleItem

logger = structlog.get_logger()


def cue_payload(cue: SubtitleItem | None) -> dict[str, object] | None:
    """Serialize a cue for SSE and JSON responses."""
    if cue is None:
        return None
    return {"start_ms": cue.start_ms, "end_ms": cue.end_ms, "text": cue.text}


@dataclass
class PlaybackSession:
    """One host player attached to a subtitle manager."""

    id: str
    position: ReportedPosition
    manager: SubtitleManager
    event_queue: asyncio.Queue[dict[str, object]] = field(
        default_factory=lambda: asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)
    )
    last_seen: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def push_event(self, event: SSEEvent, data: object) -> None:
        """Queue an event, dropping the oldest one when the queue is full."""
        if self.event_queue.full():
            self.event_queue.get_nowait()
        self.event_queue.put_nowait({"event": event, "data": data})


class SessionManager:
    """Manages playback sessions with automatic idle cleanup."""

    def __init__(
        self,
        client: AssrtClient | None = None,
        *,
        fallback: OpenSubtitlesClient | None = None,
        ttl_seconds: float = 4 * 3600,
        interval_ms: int = 100,
        delay_step_ms: int = 100,
    ) -> None:
        self._client = client
        self._fallback = fallback
        self._ttl_seconds = ttl_seconds
        self._interval_ms = interval_ms
        self._delay_step_ms = delay_step_ms
        self._sessions: dict[str, PlaybackSession] = {}
        self._cleanup_task: asyncio.Task[None] | None = None

    @property
    def client(self) -> AssrtClient | None:
        return self._client

    def create_session(
        self,
        title: str | None = None,
        *,
        tmdb_id: str | None = None,
        year: int | None = None,
    ) -> PlaybackSession:
        """Create a new playback session and store it."""
        session_id = uuid.uuid4().hex[:12]
        position = ReportedPosition()
        session: PlaybackSession

        def on_cue(cue: SubtitleItem | None) -> None:
            session.push_event(SSEEvent.CUE, cue_payload(cue))

        def on_status(state: SubtitleState) -> None:
            session.push_event(
                SSEEvent.STATUS, {"status": str(state.status), "error": state.error}
            )

        manager = SubtitleManager(
            position,
            client=self._client,
            fallback=self._fallback,
            session=MediaSession(title=title, tmdb_id=tmdb_id, year=year),
            on_cue=on_cue,
            on_status=on_status,
            interval_ms=self._interval_ms,
            delay_step_ms=self._delay_step_ms,
        )
        session = PlaybackSession(id=session_id, position=position, manager=manager)
        self._sessions[session_id] = session
        logger.info("session_created", session_id=session_id, title=title)
        return session

    def get_session(self, session_id: str) -> PlaybackSession | None:
        """Get a session by ID, returns None if not found."""
        session = self._sessions.get(session_id)
        if session is not None:
            session.touch()
        return session

    async def remove_session(self, session_id: str) -> bool:
        """Dispose and drop a session. Returns False if it did not exist."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.manager.dispose()
        session.push_event(SSEEvent.CLOSED, None)
        logger.info("session_removed", session_id=session_id)
        return True

    async def cleanup_expired(self) -> int:
        """Remove sessions idle longer than the TTL. Returns count removed."""
        now = time.monotonic()
        expired = [
            sid
            for sid, session in self._sessions.items()
            if now - session.last_seen > self._ttl_seconds
        ]
        for sid in expired:
            await self.remove_session(sid)
        if expired:
            logger.info("sessions_cleaned_up", count=len(expired))
        return len(expired)

    async def close_all(self) -> None:
        """Dispose every session."""
        for sid in list(self._sessions):
            await self.remove_session(sid)

    async def start_cleanup_loop(self) -> None:
        """Start periodic cleanup task."""
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop_cleanup_loop(self) -> None:
        """Stop the periodic cleanup task."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None

    async def _cleanup_loop(self) -> None:
        """Periodically clean up expired sessions."""
        while True:
            await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
            await self.cleanup_expired()
