"""ServiceUnit: one named, independently stoppable and startable control point.

Two kinds sit behind the same contract:

- session-backed units (mayor, deacon, witness, refinery, polecats)
  running inside a multiplexer session;
- daemon-backed units (per-workspace store daemons and the local control
  daemon) tracked through pid files.

Units hold no cached state: ``status()`` asks the multiplexer or the pid
file every time, and stop/start are idempotent.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Callable, Protocol

from townhall.errors import SessionError
from townhall.services.store import StoreClient
from townhall.services.tmux import Multiplexer
from townhall.workspace.locator import store_dir
from townhall.workspace.town import STORE_DAEMON_PID, short_path

log = logging.getLogger(__name__)


class UnitState(StrEnum):
    RUNNING = "running"
    STOPPED = "stopped"


class ServiceUnit(Protocol):
    name: str

    def status(self) -> UnitState: ...

    def stop(self, graceful: bool = True) -> bool: ...

    def start(self) -> bool: ...


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def read_pid(path: Path) -> int | None:
    try:
        text = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return int(text) if text.isdigit() else None


# ---------------------------------------------------------------------------
# Session-backed units
# ---------------------------------------------------------------------------


@dataclass
class SessionUnit:
    """A multiplexer session running one agent."""

    name: str
    mux: Multiplexer
    workdir: Path | None = None
    label: str = ""
    command: str = ""
    env: dict[str, str] = field(default_factory=dict)
    grace_period: float = 0.1
    sleep: Callable[[float], None] = time.sleep

    def status(self) -> UnitState:
        return UnitState.RUNNING if self.mux.has_session(self.name) else UnitState.STOPPED

    def stop(self, graceful: bool = True) -> bool:
        """Stop the session. Returns whether it was running.

        A graceful stop interrupts the agent and waits the grace period
        before the session and its processes are killed.
        """
        if not self.mux.has_session(self.name):
            return False
        if graceful:
            try:
                self.mux.send_keys_raw(self.name, "C-c")
            except SessionError as exc:
                log.debug("interrupt of %s failed: %s", self.name, exc)
            self.sleep(self.grace_period)
        self.mux.kill_session_with_processes(self.name)
        return True

    def start(self) -> bool:
        """Start the session. Returns False when it was already running."""
        if self.mux.has_session(self.name):
            return False
        if not self.command:
            raise SessionError(f"no command configured for {self.name}", unit=self.name)
        workdir = self.workdir or Path.cwd()
        if not workdir.is_dir():
            raise SessionError(f"working directory {workdir} does not exist", unit=self.name)
        self.mux.new_session(self.name, str(workdir), self.command, self.env)
        return True


# ---------------------------------------------------------------------------
# Daemon-backed units
# ---------------------------------------------------------------------------


@dataclass
class StoreDaemonUnit:
    """The store daemon caching one workspace's database."""

    workspace: Path
    store: StoreClient
    name: str = ""
    label: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            self.name = f"store daemon ({self.workspace})"
        if not self.label:
            self.label = f"bd daemon ({short_path(self.workspace)})"

    @property
    def pid_path(self) -> Path:
        return store_dir(self.workspace) / STORE_DAEMON_PID

    def status(self) -> UnitState:
        pid = read_pid(self.pid_path)
        return UnitState.RUNNING if pid is not None and pid_alive(pid) else UnitState.STOPPED

    def stop(self, graceful: bool = True) -> bool:
        return self.store.daemons_stop(self.workspace)

    def start(self) -> bool:
        return self.store.daemon_start(self.workspace)
