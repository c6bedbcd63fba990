"""ReloadController: stop every service, then start them again.

Used after installing new binaries so every agent and daemon picks them
up.  Phases run in dependency order (see ``run``); a failing unit is
recorded and the run carries on, so every phase is always attempted.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

from townhall.config.schema import ReloadOptions
from townhall.coordinator.events import EventFeed, TownEvent, boot_payload
from townhall.coordinator.fleet import (
    RIG_ROLES,
    AgentFactory,
    FleetSnapshot,
    RigDescriptor,
    load_rig_descriptor,
)
from townhall.coordinator.phases import Orchestrator, ParallelResult, StatusReporter, UnitOutcome
from townhall.errors import MultiplexerUnavailableError, ReloadFailedError, TownhallError
from townhall.services.control_daemon import ControlDaemonUnit
from townhall.services.store import StoreClient
from townhall.services.tmux import Multiplexer
from townhall.services.units import ServiceUnit, StoreDaemonUnit
from townhall.workspace.locator import discover, resolve_workspace
from townhall.workspace.town import Town

logger = logging.getLogger(__name__)

PINNED_STATUS = "pinned"
START_ROLES = tuple(reversed(RIG_ROLES))


class ReloadController:
    """Reload all town services in ten ordered phases.

    Stop side:
    1. Polecats (only with ``include_polecats``), best-effort.
    2. Per rig: refinery, then witness.
    3. Town sessions: boot, deacon, and mayor only with ``include_mayor``.
    4. Control daemon.
    5. Every discovered store daemon (never fatal).

    Start side:
    6. Every discovered store daemon.
    7. Control daemon.
    8. Mayor (only with ``include_mayor``), then deacon.
    9. Rig agents in parallel: descriptor pre-fetch, then witness and
       refinery sessions per rig.
    10. Polecats with pinned work (only with ``include_polecats``).
    """

    def __init__(
        self,
        town: Town,
        options: ReloadOptions,
        *,
        mux: Multiplexer,
        store: StoreClient | None = None,
        control_daemon: ControlDaemonUnit | None = None,
        events: EventFeed | None = None,
        reporter: StatusReporter | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._town = town
        self._options = options
        self._mux = mux
        self._store = store or StoreClient(town.config.store)
        self._control_daemon = control_daemon or ControlDaemonUnit(
            town.root, town.config.daemon, sleep=sleep,
        )
        self._events = events or EventFeed(town.events_path)
        self._reporter = reporter or StatusReporter(quiet=options.quiet)
        self._orch = Orchestrator(self._reporter)
        self._agents = AgentFactory(town, mux, sleep=sleep)

    @property
    def orchestrator(self) -> Orchestrator:
        return self._orch

    @property
    def _graceful(self) -> bool:
        return not self._options.force_kill

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> Orchestrator:
        """Run every phase. Raises ReloadFailedError when any outcome failed."""
        if not self._mux.is_available():
            raise MultiplexerUnavailableError(self._town.config.sessions.binary)

        snapshot = FleetSnapshot.capture(self._town, self._mux)
        rigs = snapshot.rig_names
        workspaces = discover(self._town)
        logger.info("reload: %d rigs, %d store workspaces", len(rigs), len(workspaces))

        self._reporter.heading("═══ Stopping services ═══")
        self._reporter.blank()

        if self._options.include_polecats:
            self._stop_polecats(snapshot)
        self._stop_rig_agents(rigs)
        self._stop_town_sessions()
        self._stop_control_daemon()
        self._stop_store_daemons(workspaces)

        self._reporter.blank()
        self._reporter.heading("═══ Starting services ═══")
        self._reporter.blank()

        self._start_store_daemons(workspaces)
        self._start_control_daemon()
        self._start_town_sessions()
        descriptors = await self._start_rig_agents(rigs)
        if self._options.include_polecats:
            self._start_polecats(rigs, descriptors)

        self._reporter.blank()
        if self._orch.ok:
            self._reporter.summary(True, "All services reloaded")
            self._events.append(TownEvent(event_type="boot", payload=boot_payload("reload", ["all"])))
            return self._orch

        self._reporter.summary(False, "Some services failed to reload")
        raise ReloadFailedError(len(self._orch.failures))

    # ------------------------------------------------------------------
    # Stop side
    # ------------------------------------------------------------------

    def _stop_polecats(self, snapshot: FleetSnapshot) -> None:
        phase = self._orch.begin("stop polecats")
        stopped = 0
        for rig in snapshot.rigs:
            for name in rig.polecats:
                unit = self._agents.polecat(rig.name, name)
                try:
                    if unit.stop(self._graceful):
                        stopped += 1
                except Exception as exc:
                    logger.info("polecat stop of %s failed: %s", unit.name, exc)
                    self._reporter.warning(f"{unit.label}: {exc}")
        detail = f"{stopped} stopped" if stopped else "none running"
        self._orch.record(phase, "Polecats", True, detail)

    def _stop_rig_agents(self, rigs: list[str]) -> None:
        units: list[ServiceUnit] = [
            self._agents.rig_agent(rig, role) for rig in rigs for role in RIG_ROLES
        ]
        self._orch.stop_units("stop rig agents", units, graceful=self._graceful)

    def _stop_town_sessions(self) -> None:
        roles = ["mayor"] if self._options.include_mayor else []
        roles.extend(["boot", "deacon"])
        self._orch.stop_units(
            "stop town sessions",
            [self._agents.town_session(role) for role in roles],
            graceful=self._graceful,
        )

    def _stop_control_daemon(self) -> None:
        phase = self._orch.begin("stop control daemon")
        pid = self._control_daemon.pid()
        try:
            was_running = self._control_daemon.stop(self._graceful)
        except Exception as exc:
            self._orch.record(phase, self._control_daemon.name, False, str(exc))
            return
        if was_running:
            self._orch.record(phase, self._control_daemon.name, True, f"stopped (was PID {pid})")

    def _stop_store_daemons(self, workspaces: list[Path]) -> None:
        phase = self._orch.begin("stop store daemons")
        for ws in workspaces:
            unit = StoreDaemonUnit(ws, self._store)
            try:
                was_running = unit.stop()
            except Exception as exc:
                logger.debug("store daemon stop for %s failed: %s", ws, exc)
                was_running = False
            self._orch.record(
                phase, unit.label, True, "stopped" if was_running else "stopped (was not running)",
            )

    # ------------------------------------------------------------------
    # Start side
    # ------------------------------------------------------------------

    def _start_store_daemons(self, workspaces: list[Path]) -> None:
        self._orch.start_units(
            "start store daemons",
            [StoreDaemonUnit(ws, self._store) for ws in workspaces],
        )

    def _start_control_daemon(self) -> None:
        self._orch.start_units(
            "start control daemon",
            [self._control_daemon],
            started_detail=lambda _unit: f"PID {self._control_daemon.pid()}",
        )

    def _start_town_sessions(self) -> None:
        roles = ["mayor"] if self._options.include_mayor else []
        roles.append("deacon")
        self._orch.start_units(
            "start town sessions",
            [self._agents.town_session(role) for role in roles],
            started_detail=lambda unit: unit.name,
        )

    async def _start_rig_agents(self, rigs: list[str]) -> dict[str, ParallelResult]:
        """Pre-fetch rig descriptors, then start witness and refinery per rig, all rigs at once."""
        entries = {entry.name: entry for entry in self._town.rig_entries()}
        limit = self._town.config.reload.max_parallel_rigs

        descriptors = await self._orch.run_parallel(
            rigs,
            lambda rig: load_rig_descriptor(self._town, entries[rig]),
            limit=limit,
        )
        loaded = [rig for rig in rigs if descriptors[rig].ok]
        started = await self._orch.run_parallel(
            loaded,
            lambda rig: self._start_one_rig(descriptors[rig].value),
            limit=limit,
        )

        phase = self._orch.begin("start rig agents")
        for role in START_ROLES:
            for rig in rigs:
                name = self._agents.rig_agent(rig, role).label
                if not descriptors[rig].ok:
                    self._orch.record(phase, name, False, f"loading rig: {descriptors[rig].error}")
                    continue
                result = started[rig]
                if not result.ok:
                    self._orch.record(phase, name, False, result.error)
                    continue
                outcome: UnitOutcome = result.value[role]
                self._orch.record(phase, outcome.name, outcome.ok, outcome.detail)
        return descriptors

    def _start_one_rig(self, rig: RigDescriptor) -> dict[str, UnitOutcome]:
        outcomes: dict[str, UnitOutcome] = {}
        for role in START_ROLES:
            unit = self._agents.rig_agent(rig, role)
            name = unit.label
            try:
                started = unit.start()
            except Exception as exc:
                outcomes[role] = UnitOutcome(name, False, str(exc))
                continue
            outcomes[role] = UnitOutcome(name, True, unit.name if started else f"{unit.name} (already running)")
        return outcomes

    def _start_polecats(self, rigs: list[str], descriptors: dict[str, ParallelResult]) -> None:
        phase = self._orch.begin("start polecats")
        for rig in rigs:
            result = descriptors.get(rig)
            if result is None or not result.ok:
                continue
            descriptor: RigDescriptor = result.value
            try:
                pinned = self._pinned_polecats(descriptor)
            except TownhallError as exc:
                self._orch.record(phase, f"Polecats ({rig})", False, str(exc))
                continue
            for name in pinned:
                unit = self._agents.polecat(rig, name)
                try:
                    started = unit.start()
                except Exception as exc:
                    self._orch.record(phase, unit.label, False, str(exc))
                    continue
                self._orch.record(phase, unit.label, True, "started" if started else "already running")

    def _pinned_polecats(self, rig: RigDescriptor) -> list[str]:
        """Polecats of *rig* holding pinned work in the rig's store."""
        if not rig.polecats:
            return []
        workspace = (
            resolve_workspace(self._town.rig_canonical_path(rig.name), self._town.root)
            or resolve_workspace(rig.path, self._town.root)
        )
        if workspace is None:
            logger.debug("rig %s has no store workspace, no pinned polecats", rig.name)
            return []
        holders: set[str] = set()
        for item in self._store.list_items(workspace, no_daemon=False, status=PINNED_STATUS):
            assignee = str(item.get("assignee") or "")
            if assignee.startswith(f"{rig.name}/"):
                holders.add(assignee.rsplit("/", 1)[-1])
        return [name for name in rig.polecats if name in holders]

