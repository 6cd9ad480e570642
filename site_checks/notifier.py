from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass

import httpx
import structlog

from site_checks.probe import ProbeResult, ProbeStatus
from site_checks.tracker import ChangeEvent


logger = structlog.get_logger(__name__)

TELEGRAM_MAX_MESSAGE_LEN = 3900
NOTIFY_TIMEOUT_SECONDS = 5.0
NOTIFY_MAX_IN_FLIGHT = 10


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    chat_id: str

    @classmethod
    def from_env(cls) -> "TelegramConfig | None":
        return telegram_config_from_values(os.getenv("TELEGRAM_BOT_TOKEN"), os.getenv("TELEGRAM_CHAT_ID"))


def telegram_config_from_values(bot_token: str | None, chat_id: str | None) -> TelegramConfig | None:
    """Alerts are only enabled when both a token and a destination chat are set."""
    token = (bot_token or "").strip()
    chat = (chat_id or "").strip()
    if not token or not chat:
        return None
    return TelegramConfig(bot_token=token, chat_id=chat)


def split_telegram_message(text: str, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    s = (text or "").strip()
    if not s:
        return [""]

    max_len = max(1, int(max_len))
    parts: list[str] = []
    while s:
        if len(s) <= max_len:
            parts.append(s)
            break
        cut = s.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        chunk = s[:cut].rstrip()
        parts.append(chunk)
        s = s[cut:].lstrip()
    return parts


def build_change_message(event: ChangeEvent, *, url: str, result: ProbeResult | None = None) -> str:
    emoji = "✅" if event.new_status is ProbeStatus.UP else "🚨"
    previous = event.previous_status.value if event.previous_status is not None else "unknown"
    status_code = result.status_code if result is not None else None
    response_time = result.response_time_ms if result is not None else None
    checked_at = result.observed_at if result is not None else event.changed_at

    lines = [
        f"{emoji} Site status change",
        f"Site: {event.name}",
        f"URL: {url}",
        f"Status: {event.new_status.value} (was {previous})",
        f"HTTP: {status_code if status_code is not None else 'N/A'}",
        f"Response: {f'{response_time}ms' if isinstance(response_time, int) else 'N/A'}",
        f"Checked: {checked_at.isoformat()}",
    ]
    if result is not None and result.error_message:
        lines.append(f"Error: {result.error_message[:500]}")
    return "\n".join(lines)


def _redact(text: str, config: TelegramConfig) -> str:
    if config.bot_token:
        return text.replace(config.bot_token, "<redacted>")
    return text


async def send_telegram_message(
    client: httpx.AsyncClient,
    config: TelegramConfig,
    text: str,
    *,
    timeout: float = NOTIFY_TIMEOUT_SECONDS,
) -> tuple[bool, dict]:
    url = f"https://api.telegram.org/bot{config.bot_token}/sendMessage"
    payload = {"chat_id": config.chat_id, "text": text, "disable_web_page_preview": True}
    try:
        resp = await client.post(url, json=payload, timeout=timeout)
        data = resp.json()
        return bool(data.get("ok")), data
    except Exception as e:
        return False, {"ok": False, "error": _redact(f"{type(e).__name__}: {e}", config)}


def redact_telegram_response(data: dict) -> str:
    safe = {"ok": data.get("ok")}
    if isinstance(data.get("result"), dict):
        safe["result"] = {"message_id": data["result"].get("message_id")}
    if data.get("error"):
        safe["error"] = data.get("error")
    if data.get("description"):
        safe["description"] = data.get("description")
    return json.dumps(safe, ensure_ascii=False)


class ChangeNotifier:
    """
    Best-effort delivery of state changes.

    ``notify`` never blocks the caller: it schedules a detached task and
    returns. At most ``max_in_flight`` deliveries run at once; beyond that a
    notification is dropped and logged. Each delivery has its own timeout
    and any failure is logged, never raised.
    """

    def __init__(
        self,
        config: TelegramConfig | None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = NOTIFY_TIMEOUT_SECONDS,
        max_in_flight: int = NOTIFY_MAX_IN_FLIGHT,
    ) -> None:
        self.config = config
        self.timeout = float(timeout)
        self.max_in_flight = max(1, int(max_in_flight))
        self._client = client
        self._owns_client = client is None
        self._tasks: set[asyncio.Task[bool]] = set()

        if config is None:
            logger.info("Telegram alerts disabled (TELEGRAM_BOT_TOKEN/TELEGRAM_CHAT_ID not set)")

    @property
    def enabled(self) -> bool:
        return self.config is not None

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Default certificate verification; the relaxed policy belongs to the prober only.
            self._client = httpx.AsyncClient(headers={"User-Agent": "Site Checks Notifier"})
        return self._client

    def notify(self, event: ChangeEvent, *, url: str, result: ProbeResult | None = None) -> asyncio.Task[bool] | None:
        if self.config is None:
            return None
        if len(self._tasks) >= self.max_in_flight:
            logger.warning(
                "Dropping notification, too many deliveries in flight",
                site=event.name,
                in_flight=len(self._tasks),
                max_in_flight=self.max_in_flight,
            )
            return None

        text = build_change_message(event, url=url, result=result)
        task = asyncio.create_task(self._deliver(event.name, text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, site: str, text: str) -> bool:
        config = self.config
        if config is None:
            return False
        ok_all = True
        try:
            for part in split_telegram_message(text):
                ok, resp = await asyncio.wait_for(
                    send_telegram_message(self._get_client(), config, part, timeout=self.timeout),
                    timeout=self.timeout + 1.0,
                )
                ok_all = ok_all and ok
                if not ok:
                    logger.error("Telegram alert failed", site=site, telegram=redact_telegram_response(resp))
        except asyncio.TimeoutError:
            logger.error("Telegram alert timed out", site=site, timeout_seconds=self.timeout)
            return False
        except Exception as e:
            logger.error("Telegram alert failed", site=site, error=_redact(f"{type(e).__name__}: {e}", config))
            return False

        if ok_all:
            logger.info("Telegram alert sent", site=site)
        return ok_all

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
