"""structlog configuration for the host process."""

import logging
import sys

import structlog

from subsync.utils.config import get_settings


def setup_logging(level: str | None = None, *, json_logs: bool | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Minimum level name; defaults to ``LOG_LEVEL`` from settings
        json_logs: Emit JSON lines; defaults to ``LOG_JSON`` from settings
    """
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    if json_logs is None:
        json_logs = settings.log_json

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)

    renderer: structlog.typing.Processor = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )
