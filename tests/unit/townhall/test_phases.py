"""Tests for the phase orchestrator and status reporter."""

from __future__ import annotations

import threading
import time

import pytest

from tests.helpers.fakes import FakeUnit
from townhall.coordinator.phases import Orchestrator, StatusReporter


def _reporter(quiet: bool = False) -> tuple[StatusReporter, list[str]]:
    lines: list[str] = []
    return StatusReporter(quiet=quiet, echo=lines.append), lines


class TestStopStart:
    def test_failing_unit_does_not_block_siblings(self) -> None:
        reporter, _ = _reporter()
        orch = Orchestrator(reporter)
        units = [
            FakeUnit("a", running=True),
            FakeUnit("b", running=True, fail_stop=True),
            FakeUnit("c", running=True),
        ]
        phase = orch.stop_units("stop", units)
        assert not units[0].running
        assert not units[2].running
        assert [o.ok for o in phase.outcomes] == [True, False, True]
        assert orch.ok is False
        assert [o.name for o in orch.failures] == ["b"]

    def test_stop_not_running_is_silent_success(self) -> None:
        reporter, lines = _reporter()
        orch = Orchestrator(reporter)
        phase = orch.stop_units("stop", [FakeUnit("idle")])
        assert phase.ok
        assert phase.outcomes[0].detail == "not running"
        assert lines == []

    def test_start_already_running_is_success(self) -> None:
        reporter, lines = _reporter()
        orch = Orchestrator(reporter)
        phase = orch.start_units("start", [FakeUnit("up", running=True)])
        assert phase.ok
        assert phase.outcomes[0].detail == "started (already running)"
        assert "up" in lines[0]

    def test_start_detail_and_label(self) -> None:
        orch = Orchestrator(_reporter()[0])
        phase = orch.start_units(
            "start",
            [FakeUnit("hq-deacon", label="Deacon")],
            started_detail=lambda unit: unit.name,
        )
        assert phase.outcomes[0].name == "Deacon"
        assert phase.outcomes[0].detail == "hq-deacon"

    def test_every_phase_runs_after_a_failure(self) -> None:
        orch = Orchestrator(_reporter()[0])
        orch.stop_units("one", [FakeUnit("x", running=True, fail_stop=True)])
        late = FakeUnit("y")
        orch.start_units("two", [late])
        assert late.running
        assert [p.title for p in orch.phases] == ["one", "two"]
        assert not orch.ok


class TestReporter:
    def test_quiet_hides_success_keeps_failures(self) -> None:
        reporter, lines = _reporter(quiet=True)
        orch = Orchestrator(reporter)
        reporter.heading("═══ Stopping services ═══")
        orch.stop_units("stop", [FakeUnit("ok", running=True), FakeUnit("bad", running=True, fail_stop=True)])
        reporter.warning("careful")
        assert len(lines) == 2
        assert "bad" in lines[0] and "refused to stop" in lines[0]
        assert "careful" in lines[1]

    def test_summary_always_shown(self) -> None:
        reporter, lines = _reporter(quiet=True)
        reporter.summary(True, "All services reloaded")
        assert lines and "All services reloaded" in lines[0]


class TestRunParallel:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_affect_others(self) -> None:
        orch = Orchestrator(_reporter()[0])

        def work(key: str) -> str:
            if key == "b":
                raise ValueError("rig b broken")
            return key.upper()

        results = await orch.run_parallel(["a", "b", "c"], work)
        assert list(results) == ["a", "b", "c"]
        assert results["a"].value == "A"
        assert results["c"].value == "C"
        assert results["b"].ok is False
        assert results["b"].error == "rig b broken"

    @pytest.mark.asyncio
    async def test_empty_keys(self) -> None:
        assert await Orchestrator().run_parallel([], lambda k: k) == {}

    @pytest.mark.asyncio
    async def test_limit_bounds_concurrency(self) -> None:
        lock = threading.Lock()
        active = 0
        peak = 0

        def work(_key: int) -> None:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with lock:
                active -= 1

        await Orchestrator().run_parallel(list(range(6)), work, limit=2)
        assert peak <= 2
