"""API route definitions."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

import structlog
from fastapi import APIRouter, Query, Request
from sse_starlette.sse import EventSourceResponse

from subsync.api.constants import SSE_KEEPALIVE_SECONDS, SSEEvent
from subsync.api.errors import (
    InvalidRequestError,
    NoSubtitlesFoundError,
    RateLimitError,
    SessionNotFoundError,
    SourceUnavailableError,
    UpstreamError,
)
from subsync.api.schemas import (
    CandidateModel,
    CueModel,
    DelayRequest,
    EmbeddedTrackModel,
    EmbeddedTracksRequest,
    EmbeddedTracksResponse,
    MediaChangeRequest,
    PositionReport,
    PositionResponse,
    SearchResponse,
    SessionCreateRequest,
    SessionCreateResponse,
    SessionStateResponse,
    SubtitleTrackModel,
)
from subsync.core import (
    MediaSession,
    ReportedTextTracks,
    SubtitleTrack,
    TextTrackInfo,
    collect_embedded_tracks,
)
from subsync.core.remote import NoResultsError, RateLimitedError, SubtitleSourceError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from subsync.api.sessions import PlaybackSession, SessionManager

router = APIRouter(prefix="/api")
logger = structlog.get_logger()


def _get_session_manager(request: Request) -> SessionManager:
    """Get the SessionManager from app state."""
    manager: SessionManager = request.app.state.session_manager
    return manager


def _get_session_or_404(request: Request, session_id: str) -> PlaybackSession:
    """Get a session by ID or raise 404."""
    session = _get_session_manager(request).get_session(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    return session


def _state_response(session: PlaybackSession) -> SessionStateResponse:
    manager = session.manager
    state = manager.state
    cue = manager.current_cue
    return SessionStateResponse(
        session_id=session.id,
        title=manager.session.title,
        has_auto_searched=manager.session.has_auto_searched,
        status=state.status,
        enabled=state.enabled,
        delay_ms=state.delay_ms,
        selected=(
            SubtitleTrackModel.model_validate(state.selected)
            if state.selected
            else None
        ),
        embedded=(
            EmbeddedTrackModel.model_validate(state.embedded)
            if state.embedded
            else None
        ),
        cue_count=len(state.items),
        current_cue=CueModel.model_validate(cue) if cue else None,
        error=state.error,
    )


@router.get("/subtitles/search", response_model=SearchResponse)
async def search_subtitles(
    request: Request, q: str = Query(min_length=1)
) -> SearchResponse:
    """Search the remote source and return ranked candidates."""
    client = _get_session_manager(request).client
    if client is None:
        raise SourceUnavailableError()

    try:
        candidates = await asyncio.to_thread(client.search, q)
    except ValueError as exc:
        raise InvalidRequestError("Invalid search query", detail=str(exc)) from exc
    except RateLimitedError as exc:
        raise RateLimitError(exc.retry_after, detail=str(exc)) from exc
    except NoResultsError as exc:
        raise NoSubtitlesFoundError(q) from exc
    except SubtitleSourceError as exc:
        logger.warning("subtitle_search_failed", query=q, error=str(exc))
        raise UpstreamError("Subtitle search failed", detail=str(exc)) from exc

    return SearchResponse(
        query=q,
        results=[
            CandidateModel(
                id=c.id,
                name=c.name,
                subtype=c.subtype,
                uploaded_at=c.uploaded_at,
                lang_desc=c.lang_desc,
                priority=int(c.priority),
                track=SubtitleTrackModel.model_validate(c.to_track()),
            )
            for c in candidates
        ],
    )


@router.post("/sessions", response_model=SessionCreateResponse)
async def create_session(
    request: Request, body: SessionCreateRequest | None = None
) -> SessionCreateResponse:
    """Create a playback session for one player."""
    body = body or SessionCreateRequest()
    session = _get_session_manager(request).create_session(
        title=body.title, tmdb_id=body.tmdb_id, year=body.year
    )
    return SessionCreateResponse(session_id=session.id)


@router.get("/sessions/{session_id}", response_model=SessionStateResponse)
async def get_session_state(session_id: str, request: Request) -> SessionStateResponse:
    """Get the current subtitle state of a session."""
    return _state_response(_get_session_or_404(request, session_id))


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, request: Request) -> dict[str, str]:
    """Dispose a session and stop its background work."""
    if not await _get_session_manager(request).remove_session(session_id):
        raise SessionNotFoundError(session_id)
    return {"status": "deleted"}


@router.post("/sessions/{session_id}/position", response_model=PositionResponse)
async def report_position(
    session_id: str, body: PositionReport, request: Request
) -> PositionResponse:
    """Record the host playback position and return the current cue."""
    session = _get_session_or_404(request, session_id)
    session.position.report(
        body.position_ms, playing=body.playing, duration_ms=body.duration_ms
    )
    cue = session.manager.sync_once()
    return PositionResponse(cue=CueModel.model_validate(cue) if cue else None)


@router.post("/sessions/{session_id}/media", response_model=SessionStateResponse)
async def change_media(
    session_id: str, body: MediaChangeRequest, request: Request
) -> SessionStateResponse:
    """Switch the session to a new media item."""
    session = _get_session_or_404(request, session_id)
    session.manager.change_media(
        MediaSession(title=body.title, tmdb_id=body.tmdb_id, year=body.year)
    )
    return _state_response(session)


@router.post("/sessions/{session_id}/enable", response_model=SessionStateResponse)
async def enable_subtitles(session_id: str, request: Request) -> SessionStateResponse:
    """Turn subtitles on, triggering the automatic search when due."""
    session = _get_session_or_404(request, session_id)
    session.manager.enable()
    return _state_response(session)


@router.post("/sessions/{session_id}/disable", response_model=SessionStateResponse)
async def disable_subtitles(session_id: str, request: Request) -> SessionStateResponse:
    """Turn subtitles off."""
    session = _get_session_or_404(request, session_id)
    session.manager.disable()
    return _state_response(session)


@router.post("/sessions/{session_id}/clear", response_model=SessionStateResponse)
async def clear_subtitles(session_id: str, request: Request) -> SessionStateResponse:
    """Drop the loaded subtitle."""
    session = _get_session_or_404(request, session_id)
    session.manager.clear()
    return _state_response(session)


@router.post("/sessions/{session_id}/delay", response_model=SessionStateResponse)
async def set_delay(
    session_id: str, body: DelayRequest, request: Request
) -> SessionStateResponse:
    """Set an absolute delay or shift it by steps."""
    session = _get_session_or_404(request, session_id)
    if body.delay_ms is not None:
        session.manager.set_delay(body.delay_ms)
    elif body.steps is not None:
        session.manager.adjust_delay(body.steps)
    return _state_response(session)


@router.post(
    "/sessions/{session_id}/tracks/select", response_model=SessionStateResponse
)
async def select_track(
    session_id: str, body: SubtitleTrackModel, request: Request
) -> SessionStateResponse:
    """Start loading a standalone track; poll state or listen for cues."""
    session = _get_session_or_404(request, session_id)
    session.manager.select_track(
        SubtitleTrack(
            name=body.name,
            url=body.url,
            language=body.language,
            format=body.format,
        )
    )
    return _state_response(session)


@router.post(
    "/sessions/{session_id}/tracks/embedded", response_model=EmbeddedTracksResponse
)
async def activate_embedded(
    session_id: str, body: EmbeddedTracksRequest, request: Request
) -> EmbeddedTracksResponse:
    """Choose the preferred embedded text track for the host to render."""
    session = _get_session_or_404(request, session_id)
    source = ReportedTextTracks(
        [
            TextTrackInfo(
                index=t.index,
                group=t.group,
                language=t.language,
                label=t.label,
                mime_type=t.mime_type,
            )
            for t in body.tracks
        ]
    )
    chosen = session.manager.activate_embedded(collect_embedded_tracks(source))
    return EmbeddedTracksResponse(
        selected=EmbeddedTrackModel.model_validate(chosen) if chosen else None
    )


@router.get("/sessions/{session_id}/events")
async def session_events(session_id: str, request: Request) -> EventSourceResponse:
    """SSE stream of cue and status changes."""
    session = _get_session_or_404(request, session_id)
    return EventSourceResponse(session_event_stream(session))


async def session_event_stream(
    session: PlaybackSession, keepalive_seconds: float = SSE_KEEPALIVE_SECONDS
) -> AsyncIterator[dict[str, str]]:
    """Relay queued session events; an open stream keeps the session alive."""
    while True:
        session.touch()
        try:
            event = await asyncio.wait_for(
                session.event_queue.get(), timeout=keepalive_seconds
            )
        except TimeoutError:
            yield {"event": SSEEvent.PING, "data": ""}
            continue
        if event["event"] == SSEEvent.CLOSED:
            yield {"event": SSEEvent.CLOSED, "data": ""}
            return
        yield {
            "event": str(event["event"]),
            "data": json.dumps(event["data"], ensure_ascii=False),
        }


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}
