"""Constants and enums for the API layer."""

from enum import StrEnum


class SSEEvent(StrEnum):
    """Server-Sent Events event types."""

    CUE = "cue"
    STATUS = "status"
    CLOSED = "closed"
    PING = "ping"


CLEANUP_INTERVAL_SECONDS = 300
SSE_KEEPALIVE_SECONDS = 30
EVENT_QUEUE_SIZE = 256
