from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from site_checks.scheduler import CycleReport, SiteResult
from site_checks.tracker import SiteState, TrackerSummary


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ErrorResponse(_CamelModel):
    success: bool = False
    message: str


class Summary(_CamelModel):
    total: int
    up: int
    down: int
    uptime: str


class UnknownAwareSummary(Summary):
    unknown: int = 0


class SiteCheckOut(_CamelModel):
    name: str
    url: str
    status: str
    status_code: int | None = Field(None, alias="statusCode")
    response_time: int = Field(..., alias="responseTime")
    checked_at: datetime = Field(..., alias="checkedAt")
    error: str | None = None
    error_type: str | None = Field(None, alias="errorType")

    @classmethod
    def from_site_result(cls, item: SiteResult) -> "SiteCheckOut":
        r = item.result
        return cls(
            name=item.name,
            url=item.url,
            status=r.status.value,
            status_code=r.status_code,
            response_time=r.response_time_ms,
            checked_at=r.observed_at,
            error=r.error_message,
            error_type=r.error_kind.value if r.error_kind is not None else None,
        )


class CheckResponse(_CamelModel):
    success: bool = True
    timestamp: datetime
    summary: Summary
    sites: list[SiteCheckOut]

    @classmethod
    def from_report(cls, report: CycleReport) -> "CheckResponse":
        return cls(
            timestamp=report.timestamp,
            summary=Summary(
                total=report.total,
                up=report.up,
                down=report.down,
                uptime=_format_percent(report.uptime_percent),
            ),
            sites=[SiteCheckOut.from_site_result(r) for r in report.results],
        )


class SiteStatusOut(_CamelModel):
    name: str
    url: str
    last_status: str | None = Field(None, alias="lastStatus")
    last_checked_at: datetime | None = Field(None, alias="lastCheckedAt")
    last_changed_at: datetime | None = Field(None, alias="lastChangedAt")
    change_count: int = Field(0, alias="changeCount")
    last_status_code: int | None = Field(None, alias="lastStatusCode")
    last_error: str | None = Field(None, alias="lastError")
    last_error_type: str | None = Field(None, alias="lastErrorType")
    last_response_time: int | None = Field(None, alias="lastResponseTime")

    @classmethod
    def from_state(cls, state: SiteState) -> "SiteStatusOut":
        return cls(
            name=state.name,
            url=state.url,
            last_status=state.last_status.value if state.last_status is not None else None,
            last_checked_at=state.last_checked_at,
            last_changed_at=state.last_changed_at,
            change_count=state.change_count,
            last_status_code=state.last_status_code,
            last_error=state.last_error,
            last_error_type=state.last_error_kind,
            last_response_time=state.last_response_time_ms,
        )


class StatusResponse(_CamelModel):
    success: bool = True
    timestamp: datetime
    source: str = "automatic-monitoring"
    summary: UnknownAwareSummary
    sites: list[SiteStatusOut]

    @classmethod
    def from_states(cls, *, timestamp: datetime, states: list[SiteState], summary: TrackerSummary) -> "StatusResponse":
        return cls(
            timestamp=timestamp,
            summary=UnknownAwareSummary(
                total=summary.total,
                up=summary.up,
                down=summary.down,
                unknown=summary.unknown,
                uptime=_format_percent(summary.uptime_percent),
            ),
            sites=[SiteStatusOut.from_state(s) for s in states],
        )


class SiteStatusResponse(_CamelModel):
    success: bool = True
    timestamp: datetime
    site: SiteStatusOut


class HealthResponse(_CamelModel):
    status: str = "ok"
    timestamp: datetime
    uptime: float


def _format_percent(value: float | None) -> str:
    if value is None:
        return "N/A"
    return f"{value:.1f}%"
