"""Town layout: root discovery, rig registry and well-known paths."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from townhall.config.schema import TownhallConfig
from townhall.errors import TownNotFoundError
from townhall.protocol.io import read_json

log = logging.getLogger(__name__)

TOWN_MARKER = Path("mayor") / "town.json"
RIGS_REGISTRY = Path("mayor") / "rigs.json"

STORE_DIRNAME = ".beads"
DB_FILES = ("beads.db", "beads.db-shm", "beads.db-wal")
DB_FILE = DB_FILES[0]
PRIMARY_LOG = "issues.jsonl"
ROUTES_LOG = "routes.jsonl"
STORE_LOGS = (PRIMARY_LOG, "interactions.jsonl", ROUTES_LOG, "molecules.jsonl")
REDIRECT_MARKER = "redirect"
STORE_DAEMON_PID = "daemon.pid"

# Canonical nested workspace of a rig, relative to the rig root.
RIG_CANONICAL_SUBDIR = Path("mayor") / "rig"

EVENTS_FEED = ".events.jsonl"
DAEMON_DIR = "daemon"


@dataclass(slots=True)
class RigEntry:
    """One rig as declared in the town's rig registry."""

    name: str
    prefix: str = ""
    git_url: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Town:
    """A located town root plus its configuration."""

    root: Path
    config: TownhallConfig = field(default_factory=TownhallConfig)

    def __post_init__(self) -> None:
        self.root = Path(os.path.abspath(self.root))

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def store_dir(self) -> Path:
        return self.root / STORE_DIRNAME

    @property
    def routes_path(self) -> Path:
        return self.store_dir / ROUTES_LOG

    @property
    def primary_log_path(self) -> Path:
        return self.store_dir / PRIMARY_LOG

    @property
    def events_path(self) -> Path:
        return self.root / EVENTS_FEED

    @property
    def daemon_dir(self) -> Path:
        return self.root / DAEMON_DIR

    def rig_path(self, rig_name: str) -> Path:
        return self.root / rig_name

    def rig_canonical_path(self, rig_name: str) -> Path:
        return self.root / rig_name / RIG_CANONICAL_SUBDIR

    # ------------------------------------------------------------------
    # Rig registry
    # ------------------------------------------------------------------

    def rig_entries(self) -> list[RigEntry]:
        """Rigs declared in ``mayor/rigs.json``, sorted by name.

        A missing or malformed registry yields no rigs.
        """
        raw = read_json(self.root / RIGS_REGISTRY, {})
        rigs_raw = raw.get("rigs", {}) if isinstance(raw, dict) else {}
        if not isinstance(rigs_raw, dict):
            log.warning("rig registry %s has no 'rigs' mapping", self.root / RIGS_REGISTRY)
            return []

        entries: list[RigEntry] = []
        for name in sorted(rigs_raw):
            item = rigs_raw[name] if isinstance(rigs_raw[name], dict) else {}
            beads = item.get("beads") if isinstance(item.get("beads"), dict) else {}
            entries.append(RigEntry(
                name=name,
                prefix=str(beads.get("prefix") or ""),
                git_url=str(item.get("git_url") or ""),
                raw=item,
            ))
        return entries

    def rig_names(self) -> list[str]:
        return [entry.name for entry in self.rig_entries()]


def find_town_root(start: str | Path | None = None) -> Path:
    """Walk upward from *start* (default: cwd) to the directory holding the town marker."""
    origin = Path(os.path.abspath(start or os.getcwd()))
    for candidate in (origin, *origin.parents):
        if (candidate / TOWN_MARKER).is_file():
            return candidate
    raise TownNotFoundError(str(origin))


def short_path(path: str | Path) -> str:
    """Shorten *path* for display by replacing the home directory with ``~``."""
    text = str(path)
    home = os.path.expanduser("~")
    if home and home != "~" and text.startswith(home):
        return "~" + text[len(home):]
    return text
