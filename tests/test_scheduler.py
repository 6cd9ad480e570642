from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

import site_checks.scheduler as scheduler_mod
from site_checks.probe import ErrorKind, ProbeStatus, build_probe_client
from site_checks.registry import Target
from site_checks.scheduler import CycleRunner, report_to_dict
from site_checks.tracker import ChangeEvent, StateTracker


class _RecordingNotifier:
    def __init__(self) -> None:
        self.calls: list[tuple[ChangeEvent, str]] = []

    def notify(self, event: ChangeEvent, *, url: str, result: Any = None) -> None:
        self.calls.append((event, url))


def _routing_client(routes: dict[str, Any]) -> httpx.AsyncClient:
    """routes: host -> status code, or an exception class to raise."""

    def handler(request: httpx.Request) -> httpx.Response:
        action = routes[request.url.host]
        if isinstance(action, int):
            return httpx.Response(action, text="body")
        raise action("simulated", request=request)

    return build_probe_client(transport=httpx.MockTransport(handler))


def _runner(tracker: StateTracker, client: httpx.AsyncClient, **kwargs: Any) -> CycleRunner:
    return CycleRunner(tracker, client, **kwargs)


@pytest.mark.asyncio
async def test_cycle_with_one_ok_and_one_timeout() -> None:
    targets = [Target(name="A", url="http://ok/"), Target(name="B", url="http://timeout/")]
    tracker = StateTracker()
    tracker.initialize(targets)

    async with _routing_client({"ok": 200, "timeout": httpx.ReadTimeout}) as client:
        report = await _runner(tracker, client, probe_timeout=5.0).run_cycle(targets)

    assert (report.total, report.up, report.down) == (2, 1, 1)
    assert report.changes == []
    assert [r.name for r in report.results] == ["A", "B"]

    a = tracker.snapshot("A")
    b = tracker.snapshot("B")
    assert a is not None and b is not None
    assert a.last_status is ProbeStatus.UP
    assert a.last_status_code == 200
    assert b.last_status is ProbeStatus.DOWN
    assert b.last_error_kind == ErrorKind.TIMEOUT.value
    assert b.last_error == "Request timeout (5 seconds)"


@pytest.mark.asyncio
async def test_crashing_probe_does_not_abort_cycle(monkeypatch: pytest.MonkeyPatch) -> None:
    real_probe = scheduler_mod.probe

    async def flaky_probe(client: httpx.AsyncClient, url: str, timeout: float):
        if "boom" in url:
            raise RuntimeError("probe exploded")
        return await real_probe(client, url, timeout)

    monkeypatch.setattr(scheduler_mod, "probe", flaky_probe)

    targets = [
        Target(name="ok1", url="http://ok/"),
        Target(name="boom", url="http://boom/"),
        Target(name="ok2", url="http://ok/2"),
    ]
    tracker = StateTracker()
    tracker.initialize(targets)

    async with _routing_client({"ok": 200}) as client:
        report = await _runner(tracker, client).run_cycle(targets)

    assert report.total == len(targets)
    assert report.up + report.down == report.total
    boom = next(r for r in report.results if r.name == "boom")
    assert boom.result.status is ProbeStatus.DOWN
    assert boom.result.error_kind is ErrorKind.UNKNOWN
    assert "probe exploded" in (boom.result.error_message or "")
    state = tracker.snapshot("boom")
    assert state is not None and state.last_error_kind == "Unknown"


@pytest.mark.asyncio
async def test_transition_across_cycles_notifies_once() -> None:
    targets = [Target(name="A", url="http://flip/")]
    tracker = StateTracker()
    tracker.initialize(targets)
    notifier = _RecordingNotifier()
    routes: dict[str, Any] = {"flip": 200}

    async with _routing_client(routes) as client:
        runner = _runner(tracker, client, notifier=notifier)
        first = await runner.run_cycle(targets)
        routes["flip"] = 500
        second = await runner.run_cycle(targets)
        third = await runner.run_cycle(targets)

    assert first.changes == []
    assert len(second.changes) == 1
    assert third.changes == []
    event = second.changes[0]
    assert (event.previous_status, event.new_status, event.change_count) == (ProbeStatus.UP, ProbeStatus.DOWN, 1)
    assert event.changed_at == second.results[0].result.observed_at
    assert notifier.calls == [(event, "http://flip/")]
    assert runner.last_report is third


@pytest.mark.asyncio
async def test_unrecorded_cycle_leaves_tracker_untouched() -> None:
    targets = [Target(name="A", url="http://ok/")]
    tracker = StateTracker()
    tracker.initialize(targets)
    notifier = _RecordingNotifier()

    async with _routing_client({"ok": 200}) as client:
        runner = _runner(tracker, client, notifier=notifier)
        report = await runner.run_cycle(targets, record=False, timeout=120.0)

    assert report.up == 1
    state = tracker.snapshot("A")
    assert state is not None
    assert state.last_status is None
    assert state.last_checked_at is None
    assert notifier.calls == []
    assert runner.last_report is None


@pytest.mark.asyncio
async def test_concurrency_is_bounded() -> None:
    active = 0
    peak = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.02)
        active -= 1
        return httpx.Response(200)

    targets = [Target(name=f"s{i}", url=f"http://s{i}/") for i in range(12)]
    tracker = StateTracker()
    tracker.initialize(targets)

    async with build_probe_client(transport=httpx.MockTransport(handler)) as client:
        report = await _runner(tracker, client, check_concurrency=3).run_cycle(targets)

    assert report.total == 12
    assert report.up == 12
    assert peak <= 3


@pytest.mark.asyncio
async def test_result_for_unseeded_site_is_reported_but_not_recorded() -> None:
    tracker = StateTracker()
    async with _routing_client({"ok": 200}) as client:
        report = await _runner(tracker, client).run_cycle([Target(name="ghost", url="http://ok/")])
    assert report.total == 1
    assert tracker.snapshot("ghost") is None


@pytest.mark.asyncio
async def test_empty_target_list_gives_empty_report() -> None:
    async with _routing_client({}) as client:
        report = await _runner(StateTracker(), client).run_cycle([])
    assert (report.total, report.up, report.down) == (0, 0, 0)
    assert report.uptime_percent is None


@pytest.mark.asyncio
async def test_start_runs_first_cycle_immediately() -> None:
    targets = [Target(name="A", url="http://ok/")]
    tracker = StateTracker()
    tracker.initialize(targets)

    async with _routing_client({"ok": 200}) as client:
        runner = _runner(tracker, client)
        runner.start(targets, interval_seconds=3600)
        try:
            assert runner.running
            for _ in range(100):
                state = tracker.snapshot("A")
                if state is not None and state.last_status is not None:
                    break
                await asyncio.sleep(0.02)
        finally:
            runner.shutdown()

    state = tracker.snapshot("A")
    assert state is not None
    assert state.last_status is ProbeStatus.UP
    assert not runner.running


def test_report_to_dict_uses_plain_values() -> None:
    tracker = StateTracker()
    targets = [Target(name="A", url="http://ok/"), Target(name="B", url="http://bad/")]
    tracker.initialize(targets)

    async def _go():
        async with _routing_client({"ok": 200, "bad": 404}) as client:
            return await _runner(tracker, client).run_cycle(targets)

    report = asyncio.run(_go())
    data = report_to_dict(report)
    assert data["summary"] == {"total": 2, "up": 1, "down": 1, "uptime_percent": 50.0}
    assert [s["status"] for s in data["sites"]] == ["UP", "DOWN"]
    assert data["sites"][1]["status_code"] == 404
    assert data["sites"][1]["error_kind"] is None
