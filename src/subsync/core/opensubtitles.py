"""OpenSubtitles REST client, used when ASSRT has nothing to offer.

Searching is a GET on ``/subtitles``; every download first asks
``/download`` for a short-lived link, so track references carry the file id
and are resolved again on each load.
"""

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Self

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from subsync.core.language import (
    LanguagePriority,
    language_tag,
    priority_from_code,
    rank_by_priority,
)
from subsync.core.remote import (
    DEFAULT_RETRY_AFTER,
    AllCandidatesFailedError,
    DownloadedSubtitle,
    DownloadFailedError,
    InvalidCredentialError,
    NoResultsError,
    RateLimitedError,
    RemoteSource,
    SourceApiError,
    SubtitleSourceError,
)
from subsync.core.subtitle import SubtitleTrack
from subsync.formats.encoding import DEFAULT_FALLBACK_ENCODINGS
from subsync.utils.config import Settings, get_settings

logger = structlog.get_logger()

OPENSUBTITLES_SCHEME = "opensubtitles://"

_MIN_QUERY_LENGTH = 2
_DOWNLOAD_QUOTA_STATUS = 406
DEFAULT_LANGUAGES = ("zh-cn", "zh-tw")


class OpenSubtitlesApiError(SourceApiError):
    """Raised for an unexpected OpenSubtitles response."""


class _File(BaseModel):
    file_id: int | None = None
    file_name: str | None = None


class _Attributes(BaseModel):
    language: str | None = None
    download_count: int | None = None
    release: str | None = None
    files: list[_File] = []


class _Subtitle(BaseModel):
    id: str
    attributes: _Attributes


class _SearchResponse(BaseModel):
    data: list[_Subtitle] = []


class _DownloadResponse(BaseModel):
    link: str = ""
    file_name: str = ""
    remaining: int | None = None


@dataclass(frozen=True)
class OpenSubtitlesCandidate:
    """A ranked OpenSubtitles search result."""

    file_id: int | None
    name: str
    language: str | None
    download_count: int
    priority: LanguagePriority

    @property
    def reference(self) -> str:
        return f"{OPENSUBTITLES_SCHEME}{self.file_id}"


class OpenSubtitlesClient(RemoteSource):
    """Blocking client for the OpenSubtitles REST API."""

    name = "opensubtitles"
    scheme = OPENSUBTITLES_SCHEME
    api_error = OpenSubtitlesApiError

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.opensubtitles.com/api/v1",
        languages: Sequence[str] = DEFAULT_LANGUAGES,
        max_candidates: int = 3,
        connect_timeout: float = 20.0,
        read_timeout: float = 20.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        fallback_encodings: Sequence[str] = DEFAULT_FALLBACK_ENCODINGS,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_key:
            raise ValueError("OpenSubtitles API key cannot be empty")
        super().__init__(
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            max_retries=max_retries,
            backoff_seconds=backoff_seconds,
            fallback_encodings=fallback_encodings,
            headers={"Api-Key": api_key},
            http_client=http_client,
            sleep=sleep,
        )
        self._base_url = base_url.rstrip("/")
        self._languages = ",".join(code.lower() for code in languages)
        self._max_candidates = max(1, max_candidates)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> Self | None:
        """Build a client, or return None when no API key is configured."""
        settings = settings or get_settings()
        if not settings.opensubtitles_api_key:
            return None
        return cls(
            settings.opensubtitles_api_key,
            base_url=settings.opensubtitles_base_url,
            languages=settings.opensubtitles_languages,
            max_candidates=settings.opensubtitles_max_candidates,
            connect_timeout=settings.http_connect_timeout,
            read_timeout=settings.http_read_timeout,
            max_retries=settings.http_max_retries,
            backoff_seconds=settings.http_backoff_seconds,
            fallback_encodings=settings.fallback_encodings,
        )

    def search(
        self, query: str, *, tmdb_id: str | None = None, year: int | None = None
    ) -> list[OpenSubtitlesCandidate]:
        """Search by TMDB id when known, else by title, and rank the results.

        Results are ordered by language priority, then by download count.

        Raises:
            ValueError: If there is no TMDB id and the query is too short
            NoResultsError: If nothing was found
        """
        query = query.strip()
        params: dict[str, Any] = {"languages": self._languages}
        if tmdb_id:
            params["tmdb_id"] = tmdb_id
        else:
            if len(query) < _MIN_QUERY_LENGTH:
                raise ValueError(
                    f"Search query must be at least {_MIN_QUERY_LENGTH} characters, "
                    f"got {query!r}"
                )
            params["query"] = query
            if year:
                params["year"] = year

        payload = self._get_json("/subtitles", params)
        try:
            result = _SearchResponse.model_validate(payload)
        except ValidationError as e:
            raise OpenSubtitlesApiError(f"Malformed OpenSubtitles response: {e}") from e

        if not result.data:
            raise NoResultsError(f"No OpenSubtitles results for {tmdb_id or query!r}")

        candidates = sorted(
            (self._to_candidate(item) for item in result.data),
            key=lambda c: -c.download_count,
        )
        ranked = rank_by_priority(candidates, key=lambda c: c.priority)
        logger.info(
            "opensubtitles_search_done",
            query=query,
            tmdb_id=tmdb_id,
            returned=len(ranked),
        )
        return ranked

    def download_link(self, file_id: int) -> tuple[str, str]:
        """Request a fresh download link.

        Returns:
            (link, file name)

        Raises:
            RateLimitedError: If the daily download quota is used up
            DownloadFailedError: If no link was issued
        """
        try:
            payload = self._post_json("/download", {"file_id": file_id})
        except OpenSubtitlesApiError as e:
            if e.status == _DOWNLOAD_QUOTA_STATUS:
                raise RateLimitedError(
                    DEFAULT_RETRY_AFTER, f"OpenSubtitles download quota exceeded: {e}"
                ) from e
            raise
        try:
            info = _DownloadResponse.model_validate(payload)
        except ValidationError as e:
            raise OpenSubtitlesApiError(f"Malformed download response: {e}") from e
        if not info.link:
            raise DownloadFailedError(f"No download link issued for file {file_id}")
        return info.link, info.file_name

    def fetch_candidate(self, candidate: OpenSubtitlesCandidate) -> DownloadedSubtitle:
        if candidate.file_id is None:
            raise DownloadFailedError(f"Subtitle {candidate.name} has no file")
        return self._fetch_file(
            candidate.file_id,
            name=candidate.name,
            language=language_tag(candidate.priority),
        )

    def fetch_track(self, track: SubtitleTrack) -> DownloadedSubtitle:
        """Resolve and load an ``opensubtitles://`` track reference."""
        if not self.handles(track.url):
            raise ValueError(f"Not an OpenSubtitles reference: {track.url}")
        raw_id = track.url[len(OPENSUBTITLES_SCHEME) :]
        try:
            file_id = int(raw_id)
        except ValueError as e:
            raise ValueError(f"Invalid OpenSubtitles reference: {track.url}") from e
        return self._fetch_file(file_id, name=track.name, language=track.language)

    def find_best(
        self, query: str, *, tmdb_id: str | None = None, year: int | None = None
    ) -> DownloadedSubtitle:
        """Load the best of the top-ranked results, skipping ones that fail.

        Raises:
            NoResultsError: If the search found nothing
            AllCandidatesFailedError: If every tried candidate failed
            RateLimitedError: If the download quota is exhausted
            InvalidCredentialError: If the API key is rejected
        """
        candidates = self.search(query, tmdb_id=tmdb_id, year=year)
        failures: list[tuple[int, str]] = []

        for rank, candidate in enumerate(candidates[: self._max_candidates], start=1):
            try:
                downloaded = self.fetch_candidate(candidate)
            except (RateLimitedError, InvalidCredentialError):
                raise
            except SubtitleSourceError as exc:
                logger.warning(
                    "opensubtitles_candidate_failed",
                    file_id=candidate.file_id,
                    rank=rank,
                    error=str(exc),
                )
                failures.append((candidate.file_id or 0, str(exc)))
                continue

            logger.info(
                "opensubtitles_candidate_loaded",
                file_id=candidate.file_id,
                rank=rank,
                language=candidate.language,
                cues=len(downloaded.items),
            )
            return downloaded

        raise AllCandidatesFailedError(failures)

    def _fetch_file(
        self, file_id: int, *, name: str, language: str
    ) -> DownloadedSubtitle:
        link, filename = self.download_link(file_id)
        fmt, items = self._parse_download(
            self.download(link),
            filename=filename,
            declared=None,
            label=filename or link,
        )
        track = SubtitleTrack(
            name=filename or name,
            url=f"{OPENSUBTITLES_SCHEME}{file_id}",
            language=language,
            format=fmt,
        )
        return DownloadedSubtitle(track=track, items=items)

    @staticmethod
    def _to_candidate(item: _Subtitle) -> OpenSubtitlesCandidate:
        attributes = item.attributes
        first = attributes.files[0] if attributes.files else None
        return OpenSubtitlesCandidate(
            file_id=first.file_id if first else None,
            name=(first.file_name if first else None) or attributes.release or item.id,
            language=attributes.language,
            download_count=attributes.download_count or 0,
            priority=priority_from_code(attributes.language),
        )

    def _get_json(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        response = self._request(
            "GET", f"{self._base_url}{path}", params=params, api=True
        )
        return self._json(response, path)

    def _post_json(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        response = self._request("POST", f"{self._base_url}{path}", json=body, api=True)
        return self._json(response, path)

    @staticmethod
    def _json(response: httpx.Response, path: str) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise OpenSubtitlesApiError(
                f"OpenSubtitles returned invalid JSON for {path}"
            ) from e
        if not isinstance(payload, dict):
            raise OpenSubtitlesApiError(
                f"OpenSubtitles response for {path} is not an object"
            )
        return payload
