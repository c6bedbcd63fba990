"""Local control daemon: pid-file lifecycle and heartbeat loop."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable

from townhall.config.schema import DaemonConfig
from townhall.errors import DaemonError
from townhall.protocol.io import write_json_atomic
from townhall.services.units import UnitState, pid_alive, read_pid
from townhall.workspace.town import DAEMON_DIR

log = logging.getLogger(__name__)

PID_FILE = "daemon.pid"
ACTIVITY_FILE = "activity.json"
LOG_FILE = "daemon.log"


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


class ControlDaemonUnit:
    """The town's control daemon, tracked through ``daemon/daemon.pid``."""

    name = "Daemon"
    label = "Daemon"

    def __init__(
        self,
        town_root: Path,
        config: DaemonConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._town_root = town_root
        self._config = config or DaemonConfig()
        self._sleep = sleep

    @property
    def daemon_dir(self) -> Path:
        return self._town_root / DAEMON_DIR

    @property
    def pid_path(self) -> Path:
        return self.daemon_dir / PID_FILE

    def pid(self) -> int | None:
        """Pid of the running daemon, or None."""
        pid = read_pid(self.pid_path)
        if pid is None or not pid_alive(pid):
            return None
        return pid

    def status(self) -> UnitState:
        return UnitState.RUNNING if self.pid() is not None else UnitState.STOPPED

    def stop(self, graceful: bool = True) -> bool:
        pid = self.pid()
        if pid is None:
            self._clear_pid_file()
            return False
        try:
            os.kill(pid, signal.SIGTERM if graceful else signal.SIGKILL)
        except ProcessLookupError:
            self._clear_pid_file()
            return False
        except PermissionError as exc:
            raise DaemonError(f"cannot signal daemon pid {pid}: {exc}", unit=self.name) from exc

        deadline = time.monotonic() + self._config.stop_timeout_seconds
        while pid_alive(pid) and time.monotonic() < deadline:
            self._sleep(0.1)
        if pid_alive(pid):
            log.warning("daemon pid %d ignored SIGTERM, sending SIGKILL", pid)
            try:
                os.kill(pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        self._clear_pid_file()
        return True

    def start(self) -> bool:
        if self.pid() is not None:
            return False
        self.daemon_dir.mkdir(parents=True, exist_ok=True)
        log_path = self.daemon_dir / LOG_FILE
        try:
            with log_path.open("a", encoding="utf-8") as log_handle:
                proc = subprocess.Popen(
                    self._config.command,
                    cwd=self._town_root,
                    stdin=subprocess.DEVNULL,
                    stdout=log_handle,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except FileNotFoundError as exc:
            raise DaemonError(f"'{self._config.command[0]}' not found", unit=self.name) from exc
        self.pid_path.write_text(f"{proc.pid}\n", encoding="utf-8")

        self._sleep(self._config.start_delay_ms / 1000)
        if proc.poll() is not None:
            self._clear_pid_file()
            raise DaemonError(
                f"daemon exited during startup (status {proc.returncode}), see {log_path}",
                unit=self.name,
            )
        return True

    def _clear_pid_file(self) -> None:
        try:
            self.pid_path.unlink()
        except FileNotFoundError:
            pass


class HeartbeatLoop:
    """Foreground body of ``townhall daemon run``.

    Records its pid, refreshes ``daemon/activity.json`` every interval and
    exits on SIGTERM or SIGINT, removing its pid file.
    """

    def __init__(self, town_root: Path, config: DaemonConfig | None = None) -> None:
        self._town_root = town_root
        self._config = config or DaemonConfig()
        self._stopping = False
        self._beats = 0

    @property
    def daemon_dir(self) -> Path:
        return self._town_root / DAEMON_DIR

    def request_stop(self, signum: int = 0, frame: object = None) -> None:
        log.info("daemon stopping (signal %s)", signum)
        self._stopping = True

    def beat(self) -> None:
        self._beats += 1
        write_json_atomic(self.daemon_dir / ACTIVITY_FILE, {
            "pid": os.getpid(),
            "last_heartbeat": now_iso(),
            "beats": self._beats,
        })

    def run(self, max_beats: int | None = None) -> int:
        self.daemon_dir.mkdir(parents=True, exist_ok=True)
        pid_path = self.daemon_dir / PID_FILE
        pid_path.write_text(f"{os.getpid()}\n", encoding="utf-8")
        previous = {
            signum: signal.signal(signum, self.request_stop)
            for signum in (signal.SIGTERM, signal.SIGINT)
        }
        log.info("daemon started (pid %d)", os.getpid())
        try:
            while not self._stopping:
                self.beat()
                if max_beats is not None and self._beats >= max_beats:
                    break
                deadline = time.monotonic() + self._config.heartbeat_interval_seconds
                while not self._stopping and time.monotonic() < deadline:
                    time.sleep(min(0.5, self._config.heartbeat_interval_seconds))
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)
            if read_pid(pid_path) == os.getpid():
                pid_path.unlink(missing_ok=True)
        return self._beats
