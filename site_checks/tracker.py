"""
In-memory last-known state per monitored site.

The tracker owns the only mutable shared map in the process. Every public
method takes the internal lock for the whole read/modify/write, so callers
always see a consistent point-in-time view and concurrent updates for
different sites cannot corrupt each other. Two updates for the same site
racing each other resolve as last-writer-wins by completion order; the
cycle runner never probes one site twice at once when recording.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable

import structlog

from site_checks.probe import ProbeResult, ProbeStatus
from site_checks.registry import Target


logger = structlog.get_logger(__name__)


class UnknownSiteError(KeyError):
    """Raised when a probe result arrives for a site the tracker was never seeded with."""


@dataclass(frozen=True)
class ChangeEvent:
    name: str
    previous_status: ProbeStatus
    new_status: ProbeStatus
    changed_at: datetime
    change_count: int


@dataclass
class SiteState:
    name: str
    url: str
    last_status: ProbeStatus | None = None  # None == unknown (never observed)
    last_checked_at: datetime | None = None
    last_changed_at: datetime | None = None
    change_count: int = 0
    last_status_code: int | None = None
    last_error: str | None = None
    last_error_kind: str | None = None
    last_response_time_ms: int | None = None


@dataclass(frozen=True)
class TrackerSummary:
    total: int
    up: int
    down: int
    unknown: int

    @property
    def uptime_percent(self) -> float | None:
        if self.total <= 0:
            return None
        return round(self.up * 100.0 / self.total, 1)


class StateTracker:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, SiteState] = {}

    def initialize(self, targets: Iterable[Target]) -> int:
        """Seed unknown state for new targets; existing sites keep their history. Returns how many were added."""
        added = 0
        with self._lock:
            for target in targets:
                if target.name in self._states:
                    continue
                self._states[target.name] = SiteState(name=target.name, url=target.url)
                added += 1
            total = len(self._states)
        logger.info("Monitoring state initialized", sites=total, added=added)
        return added

    def update(self, name: str, result: ProbeResult) -> ChangeEvent | None:
        with self._lock:
            state = self._states.get(name)
            if state is None:
                raise UnknownSiteError(name)

            previous = state.last_status
            state.last_status = result.status
            state.last_checked_at = result.observed_at
            state.last_status_code = result.status_code
            state.last_error = result.error_message
            state.last_error_kind = result.error_kind.value if result.error_kind is not None else None
            state.last_response_time_ms = result.response_time_ms

            if previous is None or previous == result.status:
                return None

            state.change_count += 1
            state.last_changed_at = result.observed_at
            event = ChangeEvent(
                name=name,
                previous_status=previous,
                new_status=result.status,
                changed_at=result.observed_at,
                change_count=state.change_count,
            )

        logger.warning(
            "State change",
            site=name,
            previous=previous.value,
            new=result.status.value,
            change_count=event.change_count,
        )
        return event

    def snapshot_all(self) -> list[SiteState]:
        with self._lock:
            return [replace(s) for s in self._states.values()]

    def snapshot(self, name: str) -> SiteState | None:
        with self._lock:
            state = self._states.get(name)
            return replace(state) if state is not None else None

    def summary(self) -> TrackerSummary:
        with self._lock:
            states = list(self._states.values())
            up = sum(1 for s in states if s.last_status is ProbeStatus.UP)
            down = sum(1 for s in states if s.last_status is ProbeStatus.DOWN)
            return TrackerSummary(total=len(states), up=up, down=down, unknown=len(states) - up - down)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
