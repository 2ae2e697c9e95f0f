"""Pydantic v2 request/response schemas."""

from datetime import datetime
from typing import Self

from pydantic import BaseModel, Field, model_validator

from subsync.core.manager import ManagerStatus
from subsync.core.subtitle import SubtitleFormat


class SubtitleTrackModel(BaseModel):
    """A standalone subtitle track."""

    model_config = {"from_attributes": True}

    name: str
    url: str
    language: str = "und"
    format: SubtitleFormat = SubtitleFormat.SRT


class EmbeddedTrackModel(BaseModel):
    """An embedded text track chosen for display."""

    model_config = {"from_attributes": True}

    track_index: int
    group_index: int
    language: str
    label: str
    format: SubtitleFormat
    mime_type: str


class CueModel(BaseModel):
    """A single timed cue."""

    model_config = {"from_attributes": True}

    start_ms: int
    end_ms: int
    text: str


class CandidateModel(BaseModel):
    """A ranked remote search result."""

    id: int
    name: str
    subtype: str
    uploaded_at: datetime | None = None
    lang_desc: str
    priority: int
    track: SubtitleTrackModel


class SearchResponse(BaseModel):
    """Response body for subtitle searches."""

    query: str
    results: list[CandidateModel]


class SessionCreateRequest(BaseModel):
    """Request body for creating a playback session."""

    title: str | None = None
    tmdb_id: str | None = None
    year: int | None = None


class SessionCreateResponse(BaseModel):
    """Response body after creating a session."""

    session_id: str


class SessionStateResponse(BaseModel):
    """Snapshot of a session's subtitle state."""

    session_id: str
    title: str | None = None
    has_auto_searched: bool
    status: ManagerStatus
    enabled: bool
    delay_ms: int
    selected: SubtitleTrackModel | None = None
    embedded: EmbeddedTrackModel | None = None
    cue_count: int
    current_cue: CueModel | None = None
    error: str | None = None


class PositionReport(BaseModel):
    """Playback position reported by the host."""

    position_ms: int = Field(ge=0)
    playing: bool = True
    duration_ms: int = Field(default=0, ge=0)


class PositionResponse(BaseModel):
    """Cue current at the reported position."""

    cue: CueModel | None = None


class MediaChangeRequest(BaseModel):
    """Request body announcing a new media item."""

    title: str | None = None
    tmdb_id: str | None = None
    year: int | None = None


class DelayRequest(BaseModel):
    """Request body for delay changes: an absolute value or relative steps."""

    delay_ms: int | None = None
    steps: int | None = None

    @model_validator(mode="after")
    def validate_exactly_one(self) -> Self:
        if (self.delay_ms is None) == (self.steps is None):
            raise ValueError("Provide exactly one of delay_ms or steps")
        return self


class TextTrackModel(BaseModel):
    """A text track as enumerated by the host player."""

    index: int
    group: int = 0
    language: str | None = None
    label: str | None = None
    mime_type: str | None = None


class EmbeddedTracksRequest(BaseModel):
    """Embedded text tracks currently exposed by the host."""

    tracks: list[TextTrackModel]


class EmbeddedTracksResponse(BaseModel):
    """The embedded track chosen for display, if any."""

    selected: EmbeddedTrackModel | None = None
