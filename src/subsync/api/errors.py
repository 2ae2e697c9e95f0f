"""API error hierarchy."""


class ApiError(Exception):
    """Base API error with HTTP status code and structured detail."""

    def __init__(
        self,
        *,
        status_code: int,
        code: str,
        message: str,
        detail: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        self.detail = detail
        self.headers = headers
        super().__init__(message)


class SessionNotFoundError(ApiError):
    """Raised when a requested playback session does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            status_code=404,
            code="session_not_found",
            message=f"Session {session_id} not found",
        )


class InvalidRequestError(ApiError):
    """Raised when the client sends an invalid request."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(
            status_code=422,
            code="invalid_request",
            message=message,
            detail=detail,
        )


class RateLimitError(ApiError):
    """Raised when the subtitle source refuses further requests for now."""

    def __init__(self, retry_after: float, *, detail: str | None = None) -> None:
        super().__init__(
            status_code=429,
            code="rate_limited",
            message="Subtitle search rate limit reached",
            detail=detail,
            headers={"Retry-After": str(max(1, round(retry_after)))},
        )


class NoSubtitlesFoundError(ApiError):
    """Raised when a search yields no usable subtitles."""

    def __init__(self, query: str) -> None:
        super().__init__(
            status_code=404,
            code="no_results",
            message=f"No subtitles found for {query!r}",
        )


class UpstreamError(ApiError):
    """Raised when the remote subtitle source fails."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(
            status_code=502,
            code="upstream_error",
            message=message,
            detail=detail,
        )


class SourceUnavailableError(ApiError):
    """Raised when no remote subtitle source is configured."""

    def __init__(self) -> None:
        super().__init__(
            status_code=503,
            code="source_unavailable",
            message="Remote subtitle search is not configured",
            detail="Set ASSRT_API_TOKEN to enable it",
        )
