"""Shared plumbing for remote subtitle sources.

Holds the error taxonomy every source raises, the sliding request budget
and ``RemoteSource``, the blocking httpx wrapper that maps transport and
HTTP failures onto that taxonomy and retries the transient ones.
"""

import time
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, ClassVar, Self

import httpx
import structlog

from subsync.core.subtitle import SubtitleFormat, SubtitleItem, SubtitleTrack
from subsync.formats.detect import detect_format
from subsync.formats.encoding import DEFAULT_FALLBACK_ENCODINGS, decode_subtitle_bytes
from subsync.formats.parser import parse_subtitle

logger = structlog.get_logger()

DEFAULT_RETRY_AFTER = 60.0
# Expired or revoked signed download links.
_DOWNLOAD_REFUSED = (401, 403, 410)


class SubtitleSourceError(Exception):
    """Base class for remote subtitle source failures."""


class NetworkError(SubtitleSourceError):
    """Raised on transport failures and server errors."""


class RequestTimeoutError(NetworkError):
    """Raised when a connect or read timeout expires."""


class RateLimitedError(SubtitleSourceError):
    """Raised when the request budget or the remote quota is exhausted."""

    def __init__(self, retry_after: float, message: str = "") -> None:
        self.retry_after = retry_after
        super().__init__(message or f"Rate limited, retry after {retry_after:.0f}s")


class InvalidCredentialError(SubtitleSourceError):
    """Raised when the API token is rejected."""


class NotFoundError(SubtitleSourceError):
    """Raised when the requested subtitle does not exist."""


class NoResultsError(SubtitleSourceError):
    """Raised when a well-formed search returns no usable candidates."""


class SourceApiError(SubtitleSourceError):
    """Raised for any other non-success API status or malformed response."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class DownloadFailedError(SubtitleSourceError):
    """Raised when a candidate yields no parseable subtitle content."""


class AllCandidatesFailedError(SubtitleSourceError):
    """Raised when every ranked candidate failed to download or parse."""

    def __init__(self, failures: Sequence[tuple[int, str]]) -> None:
        self.failures = list(failures)
        reasons = "; ".join(f"{sid}: {reason}" for sid, reason in self.failures)
        super().__init__(
            f"All {len(self.failures)} subtitle candidates failed: {reasons}"
        )


@dataclass(frozen=True)
class DownloadedSubtitle:
    """Parsed result of a successful download."""

    track: SubtitleTrack
    items: list[SubtitleItem] = field(repr=False)


class RequestBudget:
    """Sliding-window limit on API requests."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._sent: deque[float] = deque()

    def acquire(self) -> None:
        """Record one request, or raise RateLimitedError if the window is full."""
        now = self._clock()
        while self._sent and now - self._sent[0] >= self._window:
            self._sent.popleft()
        if len(self._sent) >= self._max_requests:
            retry_after = self._window - (now - self._sent[0])
            raise RateLimitedError(
                retry_after,
                f"Local request budget exhausted, retry in {retry_after:.0f}s",
            )
        self._sent.append(now)


def retry_after_seconds(response: httpx.Response) -> float:
    header = response.headers.get("Retry-After", "")
    try:
        return float(header)
    except ValueError:
        return DEFAULT_RETRY_AFTER


class RemoteSource:
    """Blocking HTTP base for a subtitle source.

    Every call carries connect and read timeouts. Server errors and transport
    failures are retried with linear backoff; client errors and rate limiting
    are raised at once. Only API calls count against the request budget and
    only they treat 401/403 as a rejected credential: a refused download link
    is a failed download.
    """

    name: ClassVar[str] = "remote"
    scheme: ClassVar[str] = "remote://"
    api_error: ClassVar[type[SourceApiError]] = SourceApiError

    def __init__(
        self,
        *,
        connect_timeout: float = 20.0,
        read_timeout: float = 20.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        budget: RequestBudget | None = None,
        fallback_encodings: Sequence[str] = DEFAULT_FALLBACK_ENCODINGS,
        headers: dict[str, str] | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")

        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._budget = budget
        self._fallback_encodings = tuple(fallback_encodings)
        self._sleep = sleep
        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(
            timeout=httpx.Timeout(
                read_timeout, connect=connect_timeout, write=read_timeout
            ),
            headers={
                "Accept": "application/json",
                "User-Agent": "subsync/0.1",
                **(headers or {}),
            },
            follow_redirects=True,
        )

    def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def handles(self, url: str) -> bool:
        """True if ``url`` is a track reference minted by this source."""
        return url.startswith(self.scheme)

    def download(self, url: str) -> bytes:
        """Download raw subtitle bytes.

        Raises:
            DownloadFailedError: If the link is refused (401, 403, 410) or the
                response body is empty
        """
        response = self._request("GET", url, api=False)
        if not response.content:
            raise DownloadFailedError(f"Empty response body from {url}")
        return response.content

    def _parse_download(
        self,
        data: bytes,
        *,
        filename: str,
        declared: str | None,
        label: str,
    ) -> tuple[SubtitleFormat, list[SubtitleItem]]:
        content = decode_subtitle_bytes(data, self._fallback_encodings)
        fmt = detect_format(content, filename, declared)
        items = parse_subtitle(content, fmt)
        if not items:
            raise DownloadFailedError(f"No cues parsed from {label} as {fmt}")
        return fmt, items

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        api: bool,
    ) -> httpx.Response:
        for attempt in range(1, self._max_retries + 1):
            if api and self._budget is not None:
                self._budget.acquire()
            try:
                return self._attempt(method, url, params=params, json=json, api=api)
            except NetworkError as exc:
                if attempt == self._max_retries:
                    raise
                delay = self._backoff_seconds * attempt
                logger.warning(
                    "remote_request_retry",
                    source=self.name,
                    url=url,
                    attempt=attempt,
                    max_attempts=self._max_retries,
                    delay_seconds=delay,
                    error=str(exc),
                )
                self._sleep(delay)

        raise NetworkError(f"Request to {url} was not attempted")

    def _attempt(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None,
        json: dict[str, Any] | None,
        api: bool,
    ) -> httpx.Response:
        try:
            response = self._http.request(method, url, params=params, json=json)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Request to {url} timed out: {e}") from e
        except httpx.RequestError as e:
            raise NetworkError(f"Request to {url} failed: {e}") from e

        code = response.status_code
        if code == 429:
            raise RateLimitedError(
                retry_after_seconds(response), f"HTTP 429 from {url}"
            )
        if not api and code in _DOWNLOAD_REFUSED:
            raise DownloadFailedError(f"Download link refused with HTTP {code}: {url}")
        if code in (401, 403):
            raise InvalidCredentialError(f"HTTP {code} from {url}")
        if code == 404:
            raise NotFoundError(f"HTTP 404 from {url}")
        if 400 <= code < 500:
            raise self.api_error(f"HTTP {code} from {url}", status=code)
        if code >= 500:
            raise NetworkError(f"HTTP {code} from {url}")
        return response
