"""Session multiplexer interface and its tmux implementation."""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
from typing import Mapping, Protocol

from townhall.errors import SessionError

log = logging.getLogger(__name__)


class Multiplexer(Protocol):
    def is_available(self) -> bool: ...

    def has_session(self, name: str) -> bool: ...

    def send_keys_raw(self, name: str, keys: str) -> None: ...

    def kill_session_with_processes(self, name: str) -> None: ...

    def new_session(
        self,
        name: str,
        workdir: str,
        command: str,
        env: Mapping[str, str] | None = None,
    ) -> None: ...


class Tmux:
    """Thin wrapper over the ``tmux`` binary.

    Session targets use the ``=name`` form so tmux matches names exactly
    instead of by prefix.
    """

    def __init__(self, binary: str = "tmux") -> None:
        self._binary = binary

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        cmd = [self._binary, *args]
        try:
            return subprocess.run(
                cmd,
                check=check,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as exc:
            raise SessionError(f"{' '.join(cmd[:2])}: {(exc.stderr or '').strip() or exc}") from exc
        except FileNotFoundError as exc:
            raise SessionError(f"{self._binary} not found") from exc

    def is_available(self) -> bool:
        if shutil.which(self._binary) is None:
            return False
        try:
            self._run("-V")
        except SessionError:
            return False
        return True

    def has_session(self, name: str) -> bool:
        result = self._run("has-session", "-t", f"={name}", check=False)
        return result.returncode == 0

    def send_keys_raw(self, name: str, keys: str) -> None:
        self._run("send-keys", "-t", f"={name}", keys)

    def pane_pids(self, name: str) -> list[int]:
        result = self._run("list-panes", "-s", "-t", f"={name}", "-F", "#{pane_pid}", check=False)
        if result.returncode != 0:
            return []
        pids: list[int] = []
        for line in result.stdout.splitlines():
            line = line.strip()
            if line.isdigit():
                pids.append(int(line))
        return pids

    def kill_session_with_processes(self, name: str) -> None:
        """Terminate every pane's process group, then kill the session itself."""
        for pid in self.pane_pids(name):
            try:
                os.killpg(os.getpgid(pid), signal.SIGTERM)
            except ProcessLookupError:
                continue
            except PermissionError as exc:
                log.warning("cannot signal pane process %d of %s: %s", pid, name, exc)
        result = self._run("kill-session", "-t", f"={name}", check=False)
        if result.returncode != 0 and self.has_session(name):
            raise SessionError(
                f"kill-session {name}: {result.stderr.strip() or 'failed'}",
                unit=name,
            )

    def new_session(
        self,
        name: str,
        workdir: str,
        command: str,
        env: Mapping[str, str] | None = None,
    ) -> None:
        args = ["new-session", "-d", "-s", name, "-c", workdir]
        for key, value in (env or {}).items():
            args.extend(["-e", f"{key}={value}"])
        args.append(command)
        self._run(*args)
