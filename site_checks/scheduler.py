from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence

import httpx
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from site_checks.notifier import ChangeNotifier
from site_checks.probe import (
    AUTO_PROBE_TIMEOUT_SECONDS,
    ProbeResult,
    ProbeStatus,
    failed_result,
    probe,
    utcnow,
)
from site_checks.registry import Target
from site_checks.tracker import ChangeEvent, StateTracker, UnknownSiteError


logger = structlog.get_logger(__name__)

CHECK_INTERVAL_SECONDS = 300
CHECK_CONCURRENCY = 25
MONITORING_JOB_ID = "automatic-monitoring"


@dataclass(frozen=True)
class SiteResult:
    name: str
    url: str
    result: ProbeResult


@dataclass(frozen=True)
class CycleReport:
    timestamp: datetime
    total: int
    up: int
    down: int
    results: list[SiteResult] = field(default_factory=list)
    changes: list[ChangeEvent] = field(default_factory=list)

    @property
    def uptime_percent(self) -> float | None:
        if self.total <= 0:
            return None
        return round(self.up * 100.0 / self.total, 1)


def report_to_dict(report: CycleReport) -> dict[str, Any]:
    return {
        "timestamp": report.timestamp.isoformat(),
        "summary": {
            "total": report.total,
            "up": report.up,
            "down": report.down,
            "uptime_percent": report.uptime_percent,
        },
        "sites": [
            {
                "name": r.name,
                "url": r.url,
                "status": r.result.status.value,
                "status_code": r.result.status_code,
                "response_time_ms": r.result.response_time_ms,
                "checked_at": r.result.observed_at.isoformat(),
                "error_kind": r.result.error_kind.value if r.result.error_kind is not None else None,
                "error": r.result.error_message,
            }
            for r in report.results
        ],
        "changes": [
            {
                "name": c.name,
                "previous_status": c.previous_status.value,
                "new_status": c.new_status.value,
                "changed_at": c.changed_at.isoformat(),
                "change_count": c.change_count,
            }
            for c in report.changes
        ],
    }


class CycleRunner:
    """
    Runs probe cycles over a target list.

    Scheduled cycles and manual checks share ``run_cycle``. Only cycles with
    ``record=True`` feed the tracker (and therefore the notifier); those are
    serialized so a site never has two recorded probes in flight.
    """

    def __init__(
        self,
        tracker: StateTracker,
        client: httpx.AsyncClient,
        *,
        notifier: ChangeNotifier | None = None,
        check_concurrency: int = CHECK_CONCURRENCY,
        probe_timeout: float = AUTO_PROBE_TIMEOUT_SECONDS,
    ) -> None:
        self.tracker = tracker
        self.client = client
        self.notifier = notifier
        self.check_concurrency = max(1, int(check_concurrency))
        self.probe_timeout = float(probe_timeout)
        self._record_lock = asyncio.Lock()
        self._scheduler: AsyncIOScheduler | None = None
        self.last_report: CycleReport | None = None

    async def run_cycle(
        self,
        targets: Sequence[Target],
        *,
        timeout: float | None = None,
        record: bool = True,
    ) -> CycleReport:
        if record:
            async with self._record_lock:
                report = await self._run(targets, timeout=timeout, record=True)
            self.last_report = report
            return report
        return await self._run(targets, timeout=timeout, record=False)

    async def _run(self, targets: Sequence[Target], *, timeout: float | None, record: bool) -> CycleReport:
        probe_timeout = self.probe_timeout if timeout is None else float(timeout)
        semaphore = asyncio.Semaphore(self.check_concurrency)
        logger.info("Running check cycle", sites=len(targets), record=record, timeout_seconds=probe_timeout)

        async def _safe_probe(index: int, target: Target) -> tuple[int, ProbeResult]:
            async with semaphore:
                started = time.perf_counter()
                try:
                    return index, await probe(self.client, target.url, probe_timeout)
                except Exception as exc:
                    elapsed_ms = int(round((time.perf_counter() - started) * 1000.0))
                    logger.exception("Probe crashed", site=target.name, error=f"{type(exc).__name__}: {exc}")
                    return index, failed_result(exc, elapsed_ms=elapsed_ms)

        results: list[SiteResult | None] = [None] * len(targets)
        changes: list[ChangeEvent] = []

        tasks = [asyncio.create_task(_safe_probe(i, t)) for i, t in enumerate(targets)]
        for fut in asyncio.as_completed(tasks):
            index, result = await fut
            target = targets[index]
            results[index] = SiteResult(name=target.name, url=target.url, result=result)
            if record:
                change = self._record(target, result)
                if change is not None:
                    changes.append(change)

        completed = [r for r in results if r is not None]
        up = sum(1 for r in completed if r.result.status is ProbeStatus.UP)
        report = CycleReport(
            timestamp=utcnow(),
            total=len(completed),
            up=up,
            down=len(completed) - up,
            results=completed,
            changes=changes,
        )

        logger.info(
            "Cycle complete",
            total=report.total,
            up=report.up,
            down=report.down,
            changes=[f"{c.name}: {c.previous_status.value} -> {c.new_status.value}" for c in changes],
            record=record,
        )
        return report

    def _record(self, target: Target, result: ProbeResult) -> ChangeEvent | None:
        try:
            change = self.tracker.update(target.name, result)
        except UnknownSiteError:
            logger.error("Probe result for a site the tracker does not know", site=target.name)
            return None
        if change is not None and self.notifier is not None:
            self.notifier.notify(change, url=target.url, result=result)
        return change

    async def _scheduled_cycle(self, targets: Sequence[Target]) -> None:
        try:
            await self.run_cycle(targets)
        except Exception as exc:
            logger.exception("Scheduled monitoring error", error=f"{type(exc).__name__}: {exc}")

    def start(self, targets: Sequence[Target], *, interval_seconds: int = CHECK_INTERVAL_SECONDS) -> AsyncIOScheduler:
        """Run one cycle right away, then every ``interval_seconds``. Must be called with a running loop."""
        if self._scheduler is not None and self._scheduler.running:
            logger.warning("Scheduler already running")
            return self._scheduler

        scheduler = AsyncIOScheduler(timezone=timezone.utc)
        scheduler.add_job(
            self._scheduled_cycle,
            trigger=IntervalTrigger(seconds=max(1, int(interval_seconds)), timezone=timezone.utc),
            args=(list(targets),),
            id=MONITORING_JOB_ID,
            name="Automatic monitoring cycle",
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
            misfire_grace_time=max(1, int(interval_seconds)),
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Automatic monitoring scheduled", interval_seconds=int(interval_seconds), sites=len(targets))
        return scheduler

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def shutdown(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Automatic monitoring stopped")
        self._scheduler = None
