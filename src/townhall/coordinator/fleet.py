"""Fleet model: agent session naming, rig descriptors and run snapshots."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from townhall.errors import ErrorCategory, TownhallError
from townhall.protocol.io import read_json
from townhall.services.tmux import Multiplexer
from townhall.services.units import SessionUnit
from townhall.workspace.town import RigEntry, Town

logger = logging.getLogger(__name__)

RIG_SESSION_PREFIX = "gt"
# Stop order; starts run in reverse (witness before refinery).
RIG_ROLES = ("refinery", "witness")
POLECATS_DIR = "polecats"


def town_session_name(town: Town, role: str) -> str:
    return f"{town.config.town.prefix}-{role}"


def rig_session_name(rig: str, role: str) -> str:
    return f"{RIG_SESSION_PREFIX}-{rig}-{role}"


def list_polecats(rig_path: Path) -> list[str]:
    """Polecat names: the subdirectories of ``<rig>/polecats``."""
    home = rig_path / POLECATS_DIR
    try:
        return sorted(
            child.name for child in home.iterdir()
            if child.is_dir() and not child.name.startswith(".")
        )
    except FileNotFoundError:
        return []
    except OSError as exc:
        logger.warning("cannot list polecats in %s: %s", home, exc)
        return []


class RigNotFoundError(TownhallError):
    def __init__(self, rig: str, path: Path) -> None:
        super().__init__(
            f"rig {rig!r} not found at {path}",
            category=ErrorCategory.WORKSPACE,
            details={"rig": rig, "path": str(path)},
        )


@dataclass(slots=True)
class RigDescriptor:
    """Everything needed to start one rig's agents."""

    name: str
    path: Path
    prefix: str = ""
    witness_dir: Path | None = None
    refinery_dir: Path | None = None
    polecats: list[str] = field(default_factory=list)


def load_rig_descriptor(town: Town, entry: RigEntry) -> RigDescriptor:
    """Load a rig's descriptor from disk. Raises RigNotFoundError for a missing rig."""
    path = town.rig_path(entry.name)
    if not path.is_dir():
        raise RigNotFoundError(entry.name, path)

    prefix = entry.prefix
    rig_config = read_json(path / "config.json", {})
    if isinstance(rig_config, dict):
        beads = rig_config.get("beads")
        if isinstance(beads, dict) and beads.get("prefix"):
            prefix = str(beads["prefix"])

    witness_dir = path / "witness"
    refinery_dir = path / "refinery" / "rig"
    if not refinery_dir.is_dir():
        refinery_dir = path / "refinery"
    return RigDescriptor(
        name=entry.name,
        path=path,
        prefix=prefix,
        witness_dir=witness_dir if witness_dir.is_dir() else path,
        refinery_dir=refinery_dir if refinery_dir.is_dir() else path,
        polecats=list_polecats(path),
    )


class AgentFactory:
    """Builds session units for the town's agents, re-looked-up by name each run."""

    def __init__(
        self,
        town: Town,
        mux: Multiplexer,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._town = town
        self._mux = mux
        self._sleep = sleep

    def _unit(self, name: str, label: str, workdir: Path, env: dict[str, str]) -> SessionUnit:
        sessions = self._town.config.sessions
        return SessionUnit(
            name=name,
            mux=self._mux,
            workdir=workdir,
            label=label,
            command=sessions.agent_command,
            env={"GT_TOWN_ROOT": str(self._town.root), **env},
            grace_period=sessions.grace_period_ms / 1000,
            sleep=self._sleep,
        )

    def town_session(self, role: str) -> SessionUnit:
        workdir = self._town.root / role
        return self._unit(
            town_session_name(self._town, role),
            role.capitalize(),
            workdir if workdir.is_dir() else self._town.root,
            {"GT_ROLE": role},
        )

    def rig_agent(self, rig: str | RigDescriptor, role: str) -> SessionUnit:
        if isinstance(rig, RigDescriptor):
            name = rig.name
            workdir = rig.witness_dir if role == "witness" else rig.refinery_dir
            workdir = workdir or rig.path
        else:
            name = rig
            workdir = self._town.rig_path(rig)
        return self._unit(
            rig_session_name(name, role),
            f"{role.capitalize()} ({name})",
            workdir,
            {"GT_ROLE": role, "GT_RIG": name},
        )

    def polecat(self, rig: str, polecat: str) -> SessionUnit:
        return self._unit(
            rig_session_name(rig, polecat),
            f"Polecat ({rig}/{polecat})",
            self._town.rig_path(rig) / POLECATS_DIR / polecat,
            {"GT_ROLE": "polecat", "GT_RIG": rig, "GT_POLECAT": polecat},
        )


@dataclass(slots=True)
class RigSnapshot:
    name: str
    refinery: bool = False
    witness: bool = False
    polecats: list[str] = field(default_factory=list)


@dataclass(slots=True)
class FleetSnapshot:
    """Which rig agents were running when a run began. Never reused across runs."""

    rigs: list[RigSnapshot] = field(default_factory=list)

    @property
    def rig_names(self) -> list[str]:
        return [r.name for r in self.rigs]

    @property
    def running_polecats(self) -> int:
        return sum(len(r.polecats) for r in self.rigs)

    @classmethod
    def capture(cls, town: Town, mux: Multiplexer) -> "FleetSnapshot":
        rigs: list[RigSnapshot] = []
        for rig_name in town.rig_names():
            polecats = [
                p for p in list_polecats(town.rig_path(rig_name))
                if mux.has_session(rig_session_name(rig_name, p))
            ]
            rigs.append(RigSnapshot(
                name=rig_name,
                refinery=mux.has_session(rig_session_name(rig_name, "refinery")),
                witness=mux.has_session(rig_session_name(rig_name, "witness")),
                polecats=polecats,
            ))
        snapshot = cls(rigs=rigs)
        logger.debug(
            "fleet snapshot: %d rigs, %d running polecats",
            len(snapshot.rigs),
            snapshot.running_polecats,
        )
        return snapshot
