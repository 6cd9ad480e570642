from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path

import structlog

from site_checks.logging_config import configure_logging
from site_checks.notifier import ChangeNotifier, TelegramConfig
from site_checks.probe import AUTO_PROBE_TIMEOUT_SECONDS, build_probe_client
from site_checks.registry import default_sites_path, load_targets
from site_checks.scheduler import CHECK_CONCURRENCY, CHECK_INTERVAL_SECONDS, CycleRunner, report_to_dict
from site_checks.tracker import StateTracker


logger = structlog.get_logger(__name__)


async def run_monitor(
    config_path: Path,
    *,
    once: bool,
    interval_seconds: int = CHECK_INTERVAL_SECONDS,
    timeout_seconds: float = AUTO_PROBE_TIMEOUT_SECONDS,
    check_concurrency: int = CHECK_CONCURRENCY,
) -> int:
    targets = load_targets(config_path)
    if not targets:
        logger.warning("No sites configured; nothing to monitor", path=str(config_path))

    tracker = StateTracker()
    tracker.initialize(targets)
    notifier = ChangeNotifier(TelegramConfig.from_env())

    async with build_probe_client() as client:
        runner = CycleRunner(
            tracker,
            client,
            notifier=notifier,
            check_concurrency=check_concurrency,
            probe_timeout=timeout_seconds,
        )
        try:
            if once:
                report = await runner.run_cycle(targets)
                print(json.dumps(report_to_dict(report), indent=2, ensure_ascii=False))
                return 0

            runner.start(targets, interval_seconds=interval_seconds)
            await asyncio.Event().wait()
            return 0
        finally:
            runner.shutdown()
            await notifier.aclose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Website uptime monitor")
    parser.add_argument(
        "--config",
        default=os.getenv("SITES_PATH") or str(default_sites_path()),
        help="Path to the site list (JSON or YAML)",
    )
    parser.add_argument("--once", action="store_true", help="Run one check cycle, print the report and exit")
    parser.add_argument(
        "--interval",
        type=int,
        default=int(os.getenv("CHECK_INTERVAL_SECONDS", str(CHECK_INTERVAL_SECONDS))),
        help="Seconds between automatic check cycles",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=AUTO_PROBE_TIMEOUT_SECONDS,
        help="Per-request probe timeout in seconds",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (INFO, WARNING, ...)",
    )
    parser.add_argument(
        "--log-format",
        default=os.getenv("LOG_FORMAT", "console"),
        choices=["console", "json"],
        help="Log renderer",
    )
    args = parser.parse_args()

    configure_logging(args.log_level, args.log_format)

    try:
        return asyncio.run(
            run_monitor(
                Path(args.config),
                once=bool(args.once),
                interval_seconds=max(1, int(args.interval)),
                timeout_seconds=float(args.timeout),
            )
        )
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
