"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        assrt_api_token: API token for the ASSRT subtitle service
        assrt_base_url: Base URL of the ASSRT API
        http_connect_timeout: Connect timeout in seconds for every remote call
        http_read_timeout: Read timeout in seconds for every remote call
        http_max_retries: Attempts per request for 5xx and transport failures
        http_backoff_seconds: Linear backoff step between attempts
        assrt_requests_per_minute: Local request budget for the ASSRT API
        opensubtitles_api_key: API key for the OpenSubtitles fallback source;
            empty disables the fallback
        opensubtitles_base_url: Base URL of the OpenSubtitles REST API
        opensubtitles_languages: Language codes requested from OpenSubtitles
        opensubtitles_max_candidates: Results tried per OpenSubtitles search
        search_result_count: Result cap per search request (max 15)
        sync_interval_ms: Tick interval of the cue synchronization loop
        delay_step_ms: Size of one user delay adjustment step
        session_ttl_seconds: Idle time before a playback session is dropped
        fallback_encodings: Legacy encodings preferred after UTF-8, in order
        log_level: Minimum log level
        log_json: Render logs as JSON lines instead of console output
    """

    assrt_api_token: str = ""
    assrt_base_url: str = "https://api.assrt.net"

    http_connect_timeout: float = 20.0
    http_read_timeout: float = 20.0
    http_max_retries: int = 3
    http_backoff_seconds: float = 1.0

    assrt_requests_per_minute: int = 20
    search_result_count: int = 15

    opensubtitles_api_key: str = ""
    opensubtitles_base_url: str = "https://api.opensubtitles.com/api/v1"
    opensubtitles_languages: list[str] = ["zh-cn", "zh-tw"]
    opensubtitles_max_candidates: int = 3

    sync_interval_ms: int = 100
    delay_step_ms: int = 100
    session_ttl_seconds: int = 4 * 3600

    fallback_encodings: list[str] = ["gbk", "big5", "utf-16"]

    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment

    Note:
        Settings are cached for performance. Use get_settings.cache_clear()
        to reload settings in tests.
    """
    return Settings()


def get_assrt_token() -> str:
    """Get the ASSRT API token from environment.

    Returns:
        ASSRT API token string

    Raises:
        ValueError: If ASSRT_API_TOKEN is not set or empty
    """
    settings = get_settings()
    if not settings.assrt_api_token:
        raise ValueError(
            "ASSRT_API_TOKEN environment variable is not set. "
            "Please set it with your ASSRT API token."
        )
    return settings.assrt_api_token
