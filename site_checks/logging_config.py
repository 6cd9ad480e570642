from __future__ import annotations

import logging
import sys

import structlog


_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def resolve_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    return _LEVELS.get(str(level or "").strip().upper(), logging.INFO)


def configure_logging(level: str | int | None = "INFO", log_format: str = "console") -> None:
    """Configure structlog for the monitor and the API process.

    ``log_format="json"`` emits one JSON object per line (for log shippers),
    anything else uses the human-readable console renderer.
    """
    numeric_level = resolve_level(level)

    renderer: structlog.types.Processor
    if str(log_format or "").strip().lower() == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=numeric_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    # Avoid leaking secrets (Telegram token is embedded in the Telegram API URL).
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
