"""ASSRT subtitle search and download client.

The ASSRT API (https://assrt.net/api/doc) returns a JSON envelope with a
numeric ``status`` (0 on success). Download URLs returned by the detail
endpoint are time-limited, so they are fetched fresh for every download and
never cached.
"""

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Self

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from subsync.core.language import (
    LanguagePriority,
    language_tag,
    priority_from_flags,
    rank_by_priority,
)
from subsync.core.remote import (
    DEFAULT_RETRY_AFTER,
    AllCandidatesFailedError,
    DownloadedSubtitle,
    DownloadFailedError,
    InvalidCredentialError,
    NetworkError,
    NoResultsError,
    NotFoundError,
    RateLimitedError,
    RemoteSource,
    RequestBudget,
    RequestTimeoutError,
    SourceApiError,
    SubtitleSourceError,
)
from subsync.core.subtitle import SubtitleFormat, SubtitleTrack
from subsync.formats.detect import (
    format_from_declared,
    formats_in_subtype,
    has_supported_extension,
)
from subsync.formats.encoding import DEFAULT_FALLBACK_ENCODINGS, decode_subtitle_bytes
from subsync.formats.parser import parse_subtitle
from subsync.utils.config import Settings, get_assrt_token, get_settings

__all__ = [
    "ASSRT_SCHEME",
    "AllCandidatesFailedError",
    "AssrtApiError",
    "AssrtClient",
    "DownloadFailedError",
    "DownloadedSubtitle",
    "InvalidCredentialError",
    "ManifestFile",
    "NetworkError",
    "NoResultsError",
    "NotFoundError",
    "RateLimitedError",
    "RequestBudget",
    "RequestTimeoutError",
    "SubtitleCandidate",
    "SubtitleDetail",
    "SubtitleSourceError",
]

logger = structlog.get_logger()

ASSRT_SCHEME = "assrt://"

_STATUS_OK = 0
_STATUS_INVALID_TOKEN = 20001
_STATUS_NOT_FOUND = 20900
_STATUS_RATE_LIMITED = 30900

_MIN_QUERY_LENGTH = 3
_MAX_RESULT_COUNT = 15
_ARCHIVE_EXTENSIONS = (".zip", ".rar", ".7z", ".tar", ".gz")


class AssrtApiError(SourceApiError):
    """Raised for a non-success ASSRT status or a malformed ASSRT response."""


# Remote payload shapes. Unknown keys are ignored.


class _Language(BaseModel):
    desc: str | None = None
    langlist: dict[str, bool | None] | None = None


class _SearchItem(BaseModel):
    id: int
    native_name: str | None = None
    videoname: str | None = None
    subtype: str | None = None
    upload_time: str | None = None
    lang: _Language | None = None


class _SearchResult(BaseModel):
    subs: list[_SearchItem] = []


class _ManifestItem(BaseModel):
    f: str = ""
    s: str | None = None
    url: str = ""


class _DetailItem(BaseModel):
    id: int
    filename: str = ""
    native_name: str | None = None
    url: str = ""
    subtype: str | None = None
    filelist: list[_ManifestItem] | None = None


class _DetailResult(BaseModel):
    subs: list[_DetailItem] = []


@dataclass(frozen=True)
class SubtitleCandidate:
    """A ranked remote search result."""

    id: int
    name: str
    subtype: str
    uploaded_at: datetime | None
    lang_desc: str
    priority: LanguagePriority
    format: SubtitleFormat | None

    @property
    def reference(self) -> str:
        """Opaque track reference, re-resolved before every download."""
        return f"{ASSRT_SCHEME}{self.id}"

    def to_track(self) -> SubtitleTrack:
        """Describe this candidate as a selectable track."""
        return SubtitleTrack(
            name=self.name,
            url=self.reference,
            language=language_tag(self.priority),
            format=self.format or SubtitleFormat.SRT,
        )


@dataclass(frozen=True)
class ManifestFile:
    """One file inside an archived subtitle pack."""

    name: str
    url: str
    size: str | None = None


@dataclass(frozen=True)
class SubtitleDetail:
    """Download metadata for a subtitle; its URLs expire quickly."""

    id: int
    filename: str
    url: str
    subtype: str | None
    files: tuple[ManifestFile, ...] = ()



def _parse_upload_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    # Compare everything as naive UTC.
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _raise_for_status(status: int, message: str) -> None:
    if status == _STATUS_OK:
        return
    if status == _STATUS_INVALID_TOKEN:
        raise InvalidCredentialError(f"ASSRT rejected the API token: {message}")
    if status == _STATUS_RATE_LIMITED:
        raise RateLimitedError(DEFAULT_RETRY_AFTER, f"ASSRT quota exceeded: {message}")
    if status == _STATUS_NOT_FOUND:
        raise NotFoundError(f"ASSRT resource not found: {message}")
    raise AssrtApiError(f"ASSRT returned status {status}: {message}", status=status)


class AssrtClient(RemoteSource):
    """Blocking client for the ASSRT subtitle API.

    API calls are limited by a local per-minute request budget on top of the
    retry and error mapping of ``RemoteSource``.
    """

    name = "assrt"
    scheme = ASSRT_SCHEME
    api_error = AssrtApiError

    def __init__(
        self,
        token: str,
        *,
        base_url: str = "https://api.assrt.net",
        connect_timeout: float = 20.0,
        read_timeout: float = 20.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        requests_per_minute: int = 20,
        result_count: int = _MAX_RESULT_COUNT,
        fallback_encodings: Sequence[str] = DEFAULT_FALLBACK_ENCODINGS,
        http_client: httpx.Client | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not token:
            raise ValueError("ASSRT API token cannot be empty")
        super().__init__(
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            max_retries=max_retries,
            backoff_seconds=backoff_seconds,
            budget=RequestBudget(requests_per_minute, clock=clock),
            fallback_encodings=fallback_encodings,
            http_client=http_client,
            sleep=sleep,
        )
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._result_count = max(1, min(result_count, _MAX_RESULT_COUNT))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> Self:
        """Build a client from application settings.

        Raises:
            ValueError: If ASSRT_API_TOKEN is not configured
        """
        settings = settings or get_settings()
        return cls(
            settings.assrt_api_token or get_assrt_token(),
            base_url=settings.assrt_base_url,
            connect_timeout=settings.http_connect_timeout,
            read_timeout=settings.http_read_timeout,
            max_retries=settings.http_max_retries,
            backoff_seconds=settings.http_backoff_seconds,
            requests_per_minute=settings.assrt_requests_per_minute,
            result_count=settings.search_result_count,
            fallback_encodings=settings.fallback_encodings,
        )

    # -- API operations ---------------------------------------------------

    def search(self, query: str, *, offset: int = 0) -> list[SubtitleCandidate]:
        """Search subtitles by title and rank the usable results.

        Candidates whose subtype names no supported format are dropped. The
        rest are ordered by language priority, then by upload time (newest
        first); ties keep the order returned by the API.

        Args:
            query: Free-text title, at least 3 characters
            offset: Pagination offset

        Returns:
            Ranked candidates (never empty)

        Raises:
            ValueError: If the query is too short
            NoResultsError: If no usable candidate was returned
            RateLimitedError: If the request budget or remote quota is exhausted
            NetworkError: On transport failure after retries
        """
        query = query.strip()
        if len(query) < _MIN_QUERY_LENGTH:
            raise ValueError(
                f"Search query must be at least {_MIN_QUERY_LENGTH} characters, "
                f"got {query!r}"
            )

        payload = self._get_json(
            "/v1/sub/search",
            {"q": query, "cnt": self._result_count, "pos": offset},
        )
        result = self._validate(_SearchResult, payload)

        candidates = [
            self._to_candidate(item)
            for item in result.subs
            if formats_in_subtype(item.subtype)
        ]
        if not candidates:
            raise NoResultsError(f"No usable subtitles found for {query!r}")

        candidates.sort(key=lambda c: c.uploaded_at or datetime.min, reverse=True)
        ranked = rank_by_priority(candidates, key=lambda c: c.priority)
        logger.info(
            "assrt_search_done",
            query=query,
            returned=len(result.subs),
            usable=len(ranked),
        )
        return ranked

    def detail(self, subtitle_id: int) -> SubtitleDetail:
        """Fetch fresh download metadata for a subtitle.

        Raises:
            NotFoundError: If the subtitle does not exist
        """
        payload = self._get_json("/v1/sub/detail", {"id": subtitle_id})
        result = self._validate(_DetailResult, payload)
        if not result.subs:
            raise NotFoundError(f"Subtitle {subtitle_id} has no detail entry")

        item = result.subs[0]
        files = tuple(
            ManifestFile(name=f.f, url=f.url, size=f.s) for f in item.filelist or []
        )
        return SubtitleDetail(
            id=item.id,
            filename=item.filename,
            url=item.url,
            subtype=item.subtype,
            files=files,
        )

    def fetch_candidate(self, candidate: SubtitleCandidate) -> DownloadedSubtitle:
        """Resolve a fresh URL for a candidate, download and parse it."""
        return self._fetch_by_id(
            candidate.id,
            name=candidate.name,
            subtype=candidate.subtype,
            language=language_tag(candidate.priority),
        )

    def fetch_track(self, track: SubtitleTrack) -> DownloadedSubtitle:
        """Download and parse a selected track.

        ``assrt://`` references are re-resolved through the detail endpoint;
        plain http(s) URLs are fetched directly and parsed with the track's
        declared format.

        Raises:
            ValueError: If the track URL is neither an ASSRT reference nor http(s)
        """
        if track.url.startswith(ASSRT_SCHEME):
            raw_id = track.url[len(ASSRT_SCHEME) :]
            try:
                subtitle_id = int(raw_id)
            except ValueError as e:
                raise ValueError(f"Invalid ASSRT reference: {track.url}") from e
            return self._fetch_by_id(
                subtitle_id,
                name=track.name,
                subtype=track.format,
                language=track.language,
            )

        if not track.url.startswith(("http://", "https://")):
            raise ValueError(f"Unsupported track URL: {track.url}")

        data = self.download(track.url)
        content = decode_subtitle_bytes(data, self._fallback_encodings)
        items = parse_subtitle(content, track.format)
        if not items:
            raise DownloadFailedError(f"No cues parsed from {track.url}")
        return DownloadedSubtitle(track=track, items=items)

    def find_best(self, query: str) -> DownloadedSubtitle:
        """Search and load the best candidate, falling through the ranking.

        A candidate that fails to download or parse is skipped in favour of
        the next one. Rate limiting and credential errors stop the walk
        immediately so the caller can back off.

        Raises:
            NoResultsError: If the search found nothing usable
            AllCandidatesFailedError: If every candidate failed
            RateLimitedError: If the budget or remote quota is exhausted
            InvalidCredentialError: If the token is rejected
        """
        candidates = self.search(query)
        failures: list[tuple[int, str]] = []

        for rank, candidate in enumerate(candidates, start=1):
            try:
                downloaded = self.fetch_candidate(candidate)
            except (RateLimitedError, InvalidCredentialError):
                raise
            except SubtitleSourceError as exc:
                logger.warning(
                    "assrt_candidate_failed",
                    subtitle_id=candidate.id,
                    rank=rank,
                    error=str(exc),
                )
                failures.append((candidate.id, str(exc)))
                continue

            logger.info(
                "assrt_candidate_loaded",
                subtitle_id=candidate.id,
                rank=rank,
                priority=candidate.priority.name,
                cues=len(downloaded.items),
            )
            return downloaded

        raise AllCandidatesFailedError(failures)

    # -- internals ----------------------------------------------------------

    def _fetch_by_id(
        self, subtitle_id: int, *, name: str, subtype: str | None, language: str
    ) -> DownloadedSubtitle:
        detail = self.detail(subtitle_id)
        url, filename = self._choose_file(detail)
        fmt, items = self._parse_download(
            self.download(url),
            filename=filename,
            declared=detail.subtype or subtype,
            label=filename or url,
        )

        track = SubtitleTrack(
            name=filename or name,
            url=f"{ASSRT_SCHEME}{subtitle_id}",
            language=language,
            format=fmt,
        )
        return DownloadedSubtitle(track=track, items=items)

    @staticmethod
    def _choose_file(detail: SubtitleDetail) -> tuple[str, str]:
        if detail.files:
            for manifest_file in detail.files:
                if manifest_file.url and has_supported_extension(manifest_file.name):
                    return manifest_file.url, manifest_file.name
            raise DownloadFailedError(
                f"Archive {detail.filename or detail.id} has no supported subtitle file"
            )
        if not detail.url:
            raise DownloadFailedError(f"Subtitle {detail.id} has no download URL")
        if detail.filename.lower().endswith(_ARCHIVE_EXTENSIONS):
            raise DownloadFailedError(
                f"Subtitle {detail.id} is an archive without a file manifest"
            )
        return detail.url, detail.filename

    def _to_candidate(self, item: _SearchItem) -> SubtitleCandidate:
        desc = item.lang.desc if item.lang else None
        flags = item.lang.langlist if item.lang else None
        subtype = item.subtype or ""
        return SubtitleCandidate(
            id=item.id,
            name=item.native_name or item.videoname or str(item.id),
            subtype=subtype,
            uploaded_at=_parse_upload_time(item.upload_time),
            lang_desc=desc or "",
            priority=priority_from_flags(desc, flags),
            format=format_from_declared(None, subtype),
        )

    @staticmethod
    def _validate(model: type[BaseModel], payload: dict[str, Any]) -> Any:
        try:
            return model.model_validate(payload.get("sub") or {})
        except ValidationError as e:
            raise AssrtApiError(f"Malformed ASSRT response: {e}") from e

    def _get_json(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        response = self._request(
            "GET",
            f"{self._base_url}{path}",
            params={"token": self._token, **params},
            api=True,
        )
        try:
            payload = response.json()
        except ValueError as e:
            raise AssrtApiError(f"ASSRT returned invalid JSON for {path}") from e
        if not isinstance(payload, dict) or "status" not in payload:
            raise AssrtApiError(f"ASSRT response for {path} has no status")

        status = payload["status"]
        message = str(payload.get("errmsg") or payload.get("error") or "")
        if not isinstance(status, int):
            raise AssrtApiError(f"ASSRT returned non-integer status {status!r}")
        _raise_for_status(status, message)
        return payload

