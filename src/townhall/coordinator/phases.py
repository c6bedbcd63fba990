"""Orchestrator: ordered stop/start phases over service units.

Every phase walks its units independently and records one outcome per
unit.  A failing unit never prevents its siblings from being processed;
a phase (and the whole run) is ok only when every recorded outcome is ok.

Two kinds of fan-out are supported:

- sequential ``stop_units`` / ``start_units`` for ordered phases;
- ``run_parallel`` for keyed fan-out (one task per key, bounded by a
  semaphore), used for per-rig work.  Each task returns its own result,
  which are merged after all tasks complete.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Iterable, Sequence, TypeVar

import click

from townhall.services.units import ServiceUnit

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
R = TypeVar("R")

SUCCESS_PREFIX = "✓"
ERROR_PREFIX = "✗"


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class UnitOutcome:
    """Result of one stop/start action on one unit."""

    name: str
    ok: bool
    detail: str = ""


@dataclass(slots=True)
class PhaseReport:
    title: str
    outcomes: list[UnitOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failures(self) -> list[UnitOutcome]:
        return [o for o in self.outcomes if not o.ok]


@dataclass(slots=True)
class ParallelResult:
    """Outcome of one keyed task in a parallel region."""

    ok: bool
    value: Any = None
    error: str = ""


def display_name(unit: ServiceUnit) -> str:
    return getattr(unit, "label", "") or unit.name


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


class StatusReporter:
    """Operator-facing status lines.

    In quiet mode success lines are suppressed; failures and warnings
    are always shown.
    """

    def __init__(self, quiet: bool = False, echo: Callable[[str], Any] = click.echo) -> None:
        self.quiet = quiet
        self._echo = echo

    def heading(self, text: str) -> None:
        if not self.quiet:
            self._echo(text)

    def blank(self) -> None:
        if not self.quiet:
            self._echo("")

    def status(self, name: str, ok: bool, detail: str = "") -> None:
        if ok and self.quiet:
            return
        if ok:
            prefix = click.style(SUCCESS_PREFIX, fg="green", bold=True)
            self._echo(f"{prefix} {name}: {click.style(detail, dim=True)}")
        else:
            prefix = click.style(ERROR_PREFIX, fg="red", bold=True)
            self._echo(f"{prefix} {name}: {detail}")

    def info(self, text: str) -> None:
        if not self.quiet:
            self._echo(f"  {click.style(SUCCESS_PREFIX, bold=True)} {text}")

    def note(self, text: str) -> None:
        if not self.quiet:
            self._echo(f"  {click.style('·', dim=True)} {text}")

    def warning(self, text: str) -> None:
        self._echo(f"  {click.style('Warning:', fg='yellow')} {text}")

    def summary(self, ok: bool, text: str) -> None:
        prefix = SUCCESS_PREFIX if ok else ERROR_PREFIX
        self._echo(f"{click.style(prefix, bold=True)} {text}")


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Orchestrator:
    """Drives phases and aggregates per-unit outcomes into one success flag."""

    def __init__(self, reporter: StatusReporter | None = None) -> None:
        self._reporter = reporter or StatusReporter()
        self._phases: list[PhaseReport] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def reporter(self) -> StatusReporter:
        return self._reporter

    @property
    def phases(self) -> list[PhaseReport]:
        return list(self._phases)

    @property
    def ok(self) -> bool:
        return all(p.ok for p in self._phases)

    @property
    def failures(self) -> list[UnitOutcome]:
        return [o for p in self._phases for o in p.failures]

    def begin(self, title: str) -> PhaseReport:
        phase = PhaseReport(title=title)
        self._phases.append(phase)
        logger.debug("phase start: %s", title)
        return phase

    def record(
        self,
        phase: PhaseReport,
        name: str,
        ok: bool,
        detail: str = "",
        *,
        show: bool = True,
    ) -> UnitOutcome:
        outcome = UnitOutcome(name=name, ok=ok, detail=detail)
        phase.outcomes.append(outcome)
        if not ok:
            logger.info("%s: %s failed: %s", phase.title, name, detail)
        if show or not ok:
            self._reporter.status(name, ok, detail)
        return outcome

    def stop_units(
        self,
        title: str,
        units: Iterable[ServiceUnit],
        *,
        graceful: bool = True,
        label: Callable[[ServiceUnit], str] | None = None,
    ) -> PhaseReport:
        """Stop each unit; units that were not running are recorded silently."""
        phase = self.begin(title)
        for unit in units:
            name = label(unit) if label else display_name(unit)
            try:
                was_running = unit.stop(graceful)
            except Exception as exc:
                logger.debug("stop of %s raised", name, exc_info=True)
                self.record(phase, name, False, str(exc))
                continue
            if was_running:
                self.record(phase, name, True, "stopped")
            else:
                self.record(phase, name, True, "not running", show=False)
        return phase

    def start_units(
        self,
        title: str,
        units: Iterable[ServiceUnit],
        *,
        label: Callable[[ServiceUnit], str] | None = None,
        started_detail: Callable[[ServiceUnit], str] | None = None,
    ) -> PhaseReport:
        """Start each unit; an already-running unit is a success."""
        phase = self.begin(title)
        for unit in units:
            name = label(unit) if label else display_name(unit)
            try:
                started = unit.start()
            except Exception as exc:
                logger.debug("start of %s raised", name, exc_info=True)
                self.record(phase, name, False, str(exc))
                continue
            detail = started_detail(unit) if started_detail else "started"
            self.record(phase, name, True, detail if started else f"{detail} (already running)")
        return phase

    async def run_parallel(
        self,
        keys: Sequence[K],
        fn: Callable[[K], R],
        *,
        limit: int = 0,
    ) -> dict[K, ParallelResult]:
        """Run blocking ``fn(key)`` for every key concurrently.

        At most *limit* calls run at once (0 = one slot per key).  An
        exception in one task only fails that key.  The returned mapping
        preserves the order of *keys*.
        """
        if not keys:
            return {}
        semaphore = asyncio.Semaphore(limit if limit > 0 else len(keys))

        async def _one(key: K) -> R:
            async with semaphore:
                return await asyncio.to_thread(fn, key)

        results = await asyncio.gather(*(_one(k) for k in keys), return_exceptions=True)

        merged: dict[K, ParallelResult] = {}
        for key, r in zip(keys, results):
            if isinstance(r, BaseException):
                if not isinstance(r, Exception):
                    raise r
                merged[key] = ParallelResult(ok=False, error=str(r) or type(r).__name__)
            else:
                merged[key] = ParallelResult(ok=True, value=r)
        return merged
