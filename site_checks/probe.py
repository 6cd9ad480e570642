from __future__ import annotations

import socket
import ssl
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

import httpx


AUTO_PROBE_TIMEOUT_SECONDS = 5.0
MANUAL_PROBE_TIMEOUT_SECONDS = 120.0
MAX_REDIRECTS = 5

# Browser-like headers; some sites answer 403 to obvious bots.
DEFAULT_REQUEST_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

_TLS_MARKERS = ("certificate", "ssl", "tls", "handshake")
_DNS_MARKERS = (
    "getaddrinfo",
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "no address associated with hostname",
    "name resolution",
)
_REFUSED_MARKERS = ("connection refused", "errno 111", "errno 61", "actively refused")


class ProbeStatus(str, Enum):
    UP = "UP"
    DOWN = "DOWN"


class ErrorKind(str, Enum):
    TIMEOUT = "Timeout"
    DNS_ERROR = "DnsError"
    CONNECTION_REFUSED = "ConnectionRefused"
    TLS_ERROR = "TlsError"
    NETWORK_ERROR = "NetworkError"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class ProbeResult:
    status: ProbeStatus
    status_code: int | None
    response_time_ms: int
    observed_at: datetime
    error_kind: ErrorKind | None = None
    error_message: str | None = None

    @property
    def is_up(self) -> bool:
        return self.status is ProbeStatus.UP


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def classify_status_code(status_code: int) -> ProbeStatus:
    return ProbeStatus.UP if 200 <= int(status_code) < 400 else ProbeStatus.DOWN


def _exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    seen: set[int] = set()
    cur: BaseException | None = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        chain.append(cur)
        cur = cur.__cause__ or cur.__context__
    return chain


def classify_exception(exc: BaseException, *, timeout: float | None = None) -> tuple[ErrorKind, str]:
    """Map a failed request to an error kind plus a short human-readable message."""
    if isinstance(exc, httpx.TimeoutException):
        if timeout is not None:
            return ErrorKind.TIMEOUT, f"Request timeout ({timeout:g} seconds)"
        return ErrorKind.TIMEOUT, "Request timeout"

    if not isinstance(exc, httpx.RequestError):
        return ErrorKind.UNKNOWN, f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__

    chain = _exception_chain(exc)
    if any(isinstance(e, ssl.SSLError) for e in chain):
        return ErrorKind.TLS_ERROR, "SSL certificate issue"
    if any(isinstance(e, socket.gaierror) for e in chain):
        return ErrorKind.DNS_ERROR, "Domain not found"
    if any(isinstance(e, ConnectionRefusedError) for e in chain):
        return ErrorKind.CONNECTION_REFUSED, "Connection refused"

    # httpx flattens some transport errors to strings, fall back to the message text.
    text = " | ".join(str(e) for e in chain).lower()
    if any(m in text for m in _TLS_MARKERS):
        return ErrorKind.TLS_ERROR, "SSL certificate issue"
    if any(m in text for m in _DNS_MARKERS):
        return ErrorKind.DNS_ERROR, "Domain not found"
    if any(m in text for m in _REFUSED_MARKERS):
        return ErrorKind.CONNECTION_REFUSED, "Connection refused"

    detail = str(exc).strip()
    return ErrorKind.NETWORK_ERROR, f"Network error: {detail}" if detail else "Network error"


def build_probe_client(*, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """
    The one client in the system that skips certificate verification.

    Probing answers "is the host serving?", so a self-signed or expired
    certificate still counts as reachable. Never reuse this client for
    any other outbound call.
    """
    return httpx.AsyncClient(
        verify=False,
        follow_redirects=True,
        max_redirects=MAX_REDIRECTS,
        headers=DEFAULT_REQUEST_HEADERS,
        transport=transport,
    )


async def probe(client: httpx.AsyncClient, url: str, timeout: float = AUTO_PROBE_TIMEOUT_SECONDS) -> ProbeResult:
    started = time.perf_counter()
    try:
        resp = await client.get(url, follow_redirects=True, timeout=timeout)
    except Exception as e:
        elapsed_ms = int(round((time.perf_counter() - started) * 1000.0))
        kind, message = classify_exception(e, timeout=timeout)
        return ProbeResult(
            status=ProbeStatus.DOWN,
            status_code=None,
            response_time_ms=elapsed_ms,
            observed_at=utcnow(),
            error_kind=kind,
            error_message=message,
        )

    elapsed_ms = int(round((time.perf_counter() - started) * 1000.0))
    return ProbeResult(
        status=classify_status_code(resp.status_code),
        status_code=resp.status_code,
        response_time_ms=elapsed_ms,
        observed_at=utcnow(),
    )


def failed_result(exc: BaseException, *, elapsed_ms: int = 0) -> ProbeResult:
    """DOWN result for a probe task that crashed instead of returning."""
    message = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
    return ProbeResult(
        status=ProbeStatus.DOWN,
        status_code=None,
        response_time_ms=max(0, int(elapsed_ms)),
        observed_at=utcnow(),
        error_kind=ErrorKind.UNKNOWN,
        error_message=message[:500],
    )
