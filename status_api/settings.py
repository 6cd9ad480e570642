from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, TypeVar

import structlog

from site_checks.notifier import NOTIFY_MAX_IN_FLIGHT, NOTIFY_TIMEOUT_SECONDS
from site_checks.probe import AUTO_PROBE_TIMEOUT_SECONDS, MANUAL_PROBE_TIMEOUT_SECONDS
from site_checks.registry import default_sites_path
from site_checks.scheduler import CHECK_CONCURRENCY, CHECK_INTERVAL_SECONDS


logger = structlog.get_logger(__name__)

T = TypeVar("T")

_TRUTHY = frozenset({"1", "true", "yes", "y", "on"})
_FALSY = frozenset({"0", "false", "no", "n", "off"})


def _parse_flag(raw: str) -> bool:
    value = raw.lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _parse_origins(raw: str) -> tuple[str, ...]:
    origins = tuple(part.strip() for part in raw.split(",") if part.strip())
    if not origins:
        raise ValueError("empty origin list")
    return origins


def _setting(name: str, default: T, parse: Callable[[str], T] = str) -> T:
    """Environment override for one setting; unset, blank or unparsable values keep the default."""
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return parse(raw)
    except ValueError:
        logger.warning("Ignoring invalid setting, using default", setting=name, value=raw, default=default)
        return default


@dataclass(frozen=True)
class ApiSettings:
    sites_path: str = field(default_factory=lambda: _setting("SITES_PATH", str(default_sites_path())))

    # Automatic monitoring.
    scheduler_enabled: bool = field(default_factory=lambda: _setting("SCHEDULER_ENABLED", True, _parse_flag))
    check_interval_seconds: int = field(
        default_factory=lambda: _setting("CHECK_INTERVAL_SECONDS", CHECK_INTERVAL_SECONDS, int)
    )
    check_concurrency: int = field(default_factory=lambda: _setting("CHECK_CONCURRENCY", CHECK_CONCURRENCY, int))
    probe_timeout_seconds: float = field(
        default_factory=lambda: _setting("PROBE_TIMEOUT_SECONDS", AUTO_PROBE_TIMEOUT_SECONDS, float)
    )
    # Manual "check now" allows slow sites more time than the background cycle.
    manual_probe_timeout_seconds: float = field(
        default_factory=lambda: _setting("MANUAL_PROBE_TIMEOUT_SECONDS", MANUAL_PROBE_TIMEOUT_SECONDS, float)
    )

    # Alerting (sent only when both are set).
    telegram_bot_token: str = field(default_factory=lambda: _setting("TELEGRAM_BOT_TOKEN", ""))
    telegram_chat_id: str = field(default_factory=lambda: _setting("TELEGRAM_CHAT_ID", ""))
    notify_timeout_seconds: float = field(
        default_factory=lambda: _setting("NOTIFY_TIMEOUT_SECONDS", NOTIFY_TIMEOUT_SECONDS, float)
    )
    notify_max_in_flight: int = field(default_factory=lambda: _setting("NOTIFY_MAX_IN_FLIGHT", NOTIFY_MAX_IN_FLIGHT, int))

    cors_allow_origins: tuple[str, ...] = field(
        default_factory=lambda: _setting("CORS_ALLOW_ORIGINS", ("*",), _parse_origins)
    )

    host: str = field(default_factory=lambda: _setting("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _setting("PORT", 5000, int))
    log_level: str = field(default_factory=lambda: _setting("LOG_LEVEL", "INFO"))
    log_format: str = field(default_factory=lambda: _setting("LOG_FORMAT", "console"))
