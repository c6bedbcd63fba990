"""ResetController: return a town to a freshly installed state.

The reset is a one-shot, strictly sequential state machine.  Every step
is logged to the audit logger before it runs.  Once the purge steps
begin nothing is reversible, so later failures (config restore, route
rebuild) are warnings and the run still carries on to the end.

Configuration (``mayor/townhall.yaml``, rig registry, formulas) is
preserved.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Callable

import click

from townhall.config.schema import ResetOptions
from townhall.coordinator.fleet import AgentFactory
from townhall.coordinator.phases import StatusReporter
from townhall.errors import TownhallError
from townhall.log import get_logger
from townhall.routing.routes import Route, RouteTable, build_reset_routes
from townhall.services.store import StoreClient
from townhall.services.tmux import Multiplexer
from townhall.services.units import StoreDaemonUnit
from townhall.workspace.town import (
    DB_FILES,
    STORE_DIRNAME,
    STORE_LOGS,
    Town,
)

logger = logging.getLogger(__name__)

CONFIRM_WORD = "reset"

# Store directories purged by a reset, relative to the town root.
PURGED_STORE_DIRS = (Path(STORE_DIRNAME), Path("deacon") / STORE_DIRNAME, Path("mayor") / STORE_DIRNAME)
PURGED_TOWN_LOGS = (Path(".events.jsonl"), Path("daemon") / "activity.json")
RUNTIME_DIRS = (Path(".runtime"), Path("mayor") / ".runtime", Path("deacon") / ".runtime")
AGENT_STATE_FILES = (Path("deacon") / "state.json", Path("deacon") / "heartbeat.json")


class ResetStep(StrEnum):
    CONFIRM = "confirm"
    STOP_AGENTS = "stop_agents"
    STOP_CACHE = "stop_cache"
    PURGE_WORK_ITEMS = "purge_work_items"
    PURGE_STORE_FILES = "purge_store_files"
    PURGE_LOGS = "purge_logs"
    PURGE_RUNTIME_STATE = "purge_runtime_state"
    RECREATE_STORE = "recreate_store"
    RESTORE_CONFIG = "restore_config"
    REBUILD_ROUTES = "rebuild_routes"
    DONE = "done"


@dataclass(slots=True)
class ResetResult:
    aborted: bool = False
    completed: list[ResetStep] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    deleted_items: list[str] = field(default_factory=list)
    removed_paths: list[Path] = field(default_factory=list)


def select_items_for_deletion(items: list[dict], prefix: str) -> list[str]:
    """Ids of *items* owned by *prefix* (``<prefix>-...``), in listing order."""
    marker = f"{prefix}-"
    return [
        str(item["id"]) for item in items
        if isinstance(item.get("id"), str) and item["id"].startswith(marker)
    ]


def _default_prompt(text: str) -> str:
    return click.prompt(text, default="", show_default=False)


class ResetController:
    def __init__(
        self,
        town: Town,
        options: ResetOptions,
        *,
        mux: Multiplexer,
        store: StoreClient | None = None,
        reporter: StatusReporter | None = None,
        prompt: Callable[[str], str] = _default_prompt,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._town = town
        self._options = options
        self._mux = mux
        self._store = store or StoreClient(town.config.store)
        self._reporter = reporter or StatusReporter()
        self._prompt = prompt
        self._agents = AgentFactory(town, mux, sleep=sleep)
        self._audit = get_logger("townhall.reset", town=str(town.root))
        self._result = ResetResult()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> ResetResult:
        steps: list[tuple[ResetStep, Callable[[], bool]]] = [
            (ResetStep.CONFIRM, self._confirm),
            (ResetStep.STOP_AGENTS, self._stop_agents),
            (ResetStep.STOP_CACHE, self._stop_cache),
            (ResetStep.PURGE_WORK_ITEMS, self._purge_work_items),
            (ResetStep.PURGE_STORE_FILES, self._purge_store_files),
            (ResetStep.PURGE_LOGS, self._purge_logs),
            (ResetStep.PURGE_RUNTIME_STATE, self._purge_runtime_state),
            (ResetStep.RECREATE_STORE, self._recreate_store),
            (ResetStep.RESTORE_CONFIG, self._restore_config),
            (ResetStep.REBUILD_ROUTES, self._rebuild_routes),
        ]
        for step, action in steps:
            self._audit.info("reset.step", step=step.value)
            if not action():
                self._audit.info("reset.aborted", step=step.value)
                self._result.aborted = True
                return self._result
            self._result.completed.append(step)

        self._result.completed.append(ResetStep.DONE)
        self._audit.info(
            "reset.done",
            deleted=len(self._result.deleted_items),
            warnings=len(self._result.warnings),
            stop_mayor=self._options.stop_mayor,
        )
        self._reporter.blank()
        self._reporter.summary(True, "Town reset to clean state")
        self._reporter.heading("  Configuration preserved (townhall.yaml, rigs.json, formulas)")
        return self._result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _confirm(self) -> bool:
        if self._options.force:
            return True
        self._reporter.heading("This will permanently delete all town state:")
        self._reporter.heading("   - All issues, wisps, and molecules")
        self._reporter.heading("   - All activity history")
        self._reporter.heading("   - All hook and mail state")
        self._reporter.blank()
        answer = self._prompt(f"Type '{CONFIRM_WORD}' to confirm")
        if answer.strip() != CONFIRM_WORD:
            self._reporter.heading("Aborted.")
            return False
        self._reporter.blank()
        return True

    def _stop_agents(self) -> bool:
        self._reporter.heading("Stopping agents...")
        roles = ["deacon"]
        if self._options.stop_mayor:
            roles.append("mayor")
        for role in roles:
            unit = self._agents.town_session(role)
            try:
                if unit.stop(graceful=False):
                    self._reporter.info(f"Stopped {role}")
            except Exception as exc:
                self._warn(f"Could not stop {role}: {exc}")
        return True

    def _stop_cache(self) -> bool:
        self._reporter.heading("Stopping store daemon...")
        unit = StoreDaemonUnit(self._town.root, self._store)
        try:
            if unit.stop():
                self._reporter.info("Stopped store daemon")
            else:
                self._reporter.note("Store daemon was not running")
        except TownhallError as exc:
            self._warn(f"Could not stop store daemon: {exc}")
        return True

    def _purge_work_items(self) -> bool:
        self._reporter.heading("Deleting all work items...")
        root = self._town.root
        try:
            prefix = self._store.config_get(root, "issue_prefix")
            if not prefix:
                self._warn("Could not delete work items: no issue prefix configured")
                return True
            items = self._store.list_items(root, no_daemon=True)
            ids = select_items_for_deletion(items, prefix)
            if not ids:
                self._reporter.note("No work items to delete")
                return True
            self._store.delete(root, ids, no_daemon=True)
        except TownhallError as exc:
            self._warn(f"Could not delete work items: {exc}")
            return True
        self._result.deleted_items.extend(ids)
        self._reporter.info(f"Deleted {len(ids)} work items")
        return True

    def _purge_store_files(self) -> bool:
        self._reporter.heading("Clearing databases...")
        for store_dir in PURGED_STORE_DIRS:
            for name in DB_FILES:
                self._remove(store_dir / name, "Deleted")
        return True

    def _purge_logs(self) -> bool:
        self._reporter.heading("Clearing logs and store data...")
        for store_dir in PURGED_STORE_DIRS:
            for name in STORE_LOGS:
                self._remove(store_dir / name, "Cleared")
        for rel in PURGED_TOWN_LOGS:
            self._remove(rel, "Cleared")
        return True

    def _purge_runtime_state(self) -> bool:
        self._reporter.heading("Clearing runtime state...")
        for rel_dir in RUNTIME_DIRS:
            directory = self._town.root / rel_dir
            try:
                entries = sorted(directory.iterdir())
            except FileNotFoundError:
                continue
            except OSError as exc:
                self._warn(f"Could not read {rel_dir}: {exc}")
                continue
            for entry in entries:
                if not entry.is_dir():
                    self._remove(rel_dir / entry.name, "Cleared")
        for rel in AGENT_STATE_FILES:
            self._remove(rel, "Cleared")
        return True

    def _recreate_store(self) -> bool:
        self._reporter.heading("Recreating store database...")
        try:
            self._store.init_from_jsonl(self._town.root)
        except TownhallError as exc:
            self._warn(f"Could not recreate database: {exc}")
            return True
        self._reporter.info("Recreated store database")
        return True

    def _restore_config(self) -> bool:
        self._reporter.heading("Restoring store configuration...")
        settings = self._town.config.town
        facts = [
            ("issue_prefix", settings.prefix, "town prefix"),
            ("allowed_prefixes", ",".join(settings.allowed_prefixes), "allowed prefixes"),
            ("types.custom", ",".join(settings.custom_types), "custom types"),
        ]
        for key, value, label in facts:
            try:
                self._store.config_set(self._town.root, key, value)
            except TownhallError as exc:
                self._warn(f"Could not restore {label}: {exc}")
        return True

    def _rebuild_routes(self) -> bool:
        self._reporter.heading("Restoring routing configuration...")
        routes: list[Route] = []
        owners: dict[str, str] = {}
        for route in build_reset_routes(self._town):
            owner = owners.setdefault(route.prefix, route.path)
            if owner != route.path:
                self._warn(f"Could not restore route {route.prefix} -> {route.path}: already routed to {owner}")
                continue
            routes.append(route)
        try:
            RouteTable.for_town(self._town).rebuild(routes)
        except TownhallError as exc:
            self._warn(f"Could not restore routing configuration: {exc}")
            return True
        self._reporter.info("Restored routing configuration")
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _remove(self, rel: Path, verb: str) -> None:
        """Best-effort removal of one town-relative file."""
        path = self._town.root / rel
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            self._warn(f"Could not remove {rel}: {exc}")
            return
        self._result.removed_paths.append(path)
        self._reporter.info(f"{verb} {rel}")

    def _warn(self, message: str) -> None:
        logger.info("reset warning: %s", message)
        self._result.warnings.append(message)
        self._reporter.warning(message)
