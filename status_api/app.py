from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from site_checks.notifier import ChangeNotifier, telegram_config_from_values
from site_checks.probe import build_probe_client, utcnow
from site_checks.registry import load_targets
from site_checks.scheduler import CycleRunner
from site_checks.tracker import StateTracker
from status_api.schema import (
    CheckResponse,
    ErrorResponse,
    HealthResponse,
    SiteStatusOut,
    SiteStatusResponse,
    StatusResponse,
)
from status_api.settings import ApiSettings


API_VERSION = "1.0.0"
logger = structlog.get_logger(__name__)

_PROCESS_STARTED_MONOTONIC = time.monotonic()


def create_app(
    settings: ApiSettings | None = None,
    *,
    probe_client: httpx.AsyncClient | None = None,
    notifier: ChangeNotifier | None = None,
) -> FastAPI:
    settings = settings or ApiSettings()
    tracker = StateTracker()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        targets = load_targets(settings.sites_path)
        app.state.targets = targets
        tracker.initialize(targets)

        client = probe_client or build_probe_client()
        change_notifier = notifier or ChangeNotifier(
            telegram_config_from_values(settings.telegram_bot_token, settings.telegram_chat_id),
            timeout=settings.notify_timeout_seconds,
            max_in_flight=settings.notify_max_in_flight,
        )
        runner = CycleRunner(
            tracker,
            client,
            notifier=change_notifier,
            check_concurrency=settings.check_concurrency,
            probe_timeout=settings.probe_timeout_seconds,
        )
        app.state.runner = runner
        app.state.notifier = change_notifier

        logger.info("Site status API starting", sites=len(targets), version=API_VERSION)
        if settings.scheduler_enabled and targets:
            runner.start(targets, interval_seconds=settings.check_interval_seconds)
        elif not targets:
            logger.warning("No sites configured; automatic monitoring not started", path=settings.sites_path)

        try:
            yield
        finally:
            runner.shutdown()
            await change_notifier.aclose()
            if probe_client is None:
                await client.aclose()
            logger.info("Site status API stopped")

    app = FastAPI(title="Site Status API", version=API_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.tracker = tracker
    app.state.targets = []

    allow_origins = list(settings.cors_allow_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials="*" not in allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(req: Request, exc: StarletteHTTPException) -> JSONResponse:
        body = ErrorResponse(message=str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=body.model_dump())

    @app.exception_handler(Exception)
    async def _unhandled_error(req: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled API error", path=req.url.path, error=f"{type(exc).__name__}: {exc}")
        body = ErrorResponse(message="Internal server error")
        return JSONResponse(status_code=500, content=body.model_dump())

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(timestamp=utcnow(), uptime=round(time.monotonic() - _PROCESS_STARTED_MONOTONIC, 3))

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {
            "message": "Site Status API",
            "version": API_VERSION,
            "endpoints": {
                "health": "GET /health - Health check (lightweight, use for keep-alive)",
                "check": "GET /api/check - Check all configured websites now (not recorded)",
                "status": "GET /api/status - Last known status of all sites",
                "site-status": "GET /api/status/{site_name} - Last known status of one site",
            },
        }

    @app.get("/api/check", response_model=CheckResponse)
    async def check_all(req: Request) -> CheckResponse:
        targets = req.app.state.targets
        if not targets:
            raise HTTPException(status_code=400, detail="No sites configured in sites.json")

        runner: CycleRunner = req.app.state.runner
        # Fresh results only; the tracker and alerts are fed by the scheduled cycle.
        report = await runner.run_cycle(targets, timeout=settings.manual_probe_timeout_seconds, record=False)
        return CheckResponse.from_report(report)

    @app.get("/api/status", response_model=StatusResponse)
    async def status_all() -> StatusResponse:
        return StatusResponse.from_states(
            timestamp=utcnow(),
            states=tracker.snapshot_all(),
            summary=tracker.summary(),
        )

    @app.get("/api/status/{site_name}", response_model=SiteStatusResponse)
    async def status_one(site_name: str) -> SiteStatusResponse:
        state = tracker.snapshot(site_name)
        if state is None:
            raise HTTPException(status_code=404, detail=f'Site "{site_name}" not found in monitoring')
        return SiteStatusResponse(timestamp=utcnow(), site=SiteStatusOut.from_state(state))

    return app
