"""Client for the external work-item store binary (``bd``).

Every call runs the binary with its working directory set to one
workspace, which is how the binary picks the store it operates on.
"""

from __future__ import annotations

import json
import logging
import subprocess
import time
from pathlib import Path
from typing import Any, Callable

from townhall.config.schema import StoreConfig
from townhall.errors import StoreCommandError

log = logging.getLogger(__name__)

_ALREADY_RUNNING = "already running"
_NOT_RUNNING = ("not running", "no daemon")


class StoreClient:
    def __init__(
        self,
        config: StoreConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config or StoreConfig()
        self._sleep = sleep

    @property
    def binary(self) -> str:
        return self._config.binary

    def _run(
        self,
        args: list[str],
        cwd: Path,
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        cmd = [self._config.binary, *args]
        log.debug("store: %s (cwd=%s)", " ".join(cmd), cwd)
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as exc:
            raise StoreCommandError(cmd, None, f"{self._config.binary} not found") from exc
        if check and result.returncode != 0:
            raise StoreCommandError(cmd, result.returncode, result.stderr or result.stdout)
        return result

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def config_get(self, workspace: Path, key: str) -> str:
        return self._run(["config", "get", key], workspace).stdout.strip()

    def config_set(self, workspace: Path, key: str, value: str) -> None:
        self._run(["config", "set", key, value], workspace)

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def list_items(
        self,
        workspace: Path,
        *,
        no_daemon: bool = True,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        args = ["--no-daemon"] if no_daemon else []
        args.extend(["list", "--json"])
        if status:
            args.extend(["--status", status])
        result = self._run(args, workspace)
        text = result.stdout.strip()
        if not text:
            return []
        try:
            items = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StoreCommandError(
                [self._config.binary, *args], result.returncode, f"parsing item list: {exc}",
            ) from exc
        if items is None:
            return []
        if not isinstance(items, list):
            raise StoreCommandError(
                [self._config.binary, *args], result.returncode, "item list is not a JSON array",
            )
        return [item for item in items if isinstance(item, dict)]

    def delete(self, workspace: Path, ids: list[str], *, no_daemon: bool = True) -> None:
        """Permanently delete *ids* and their children in a single call."""
        if not ids:
            return
        args = ["--no-daemon"] if no_daemon else []
        args.extend(["delete", "--cascade", "--hard", "--force", *ids])
        self._run(args, workspace)

    def init_from_jsonl(self, workspace: Path) -> None:
        """Recreate the database from structured logs only, never from VCS history."""
        self._run(["init", "--quiet", "--from-jsonl"], workspace)

    # ------------------------------------------------------------------
    # Daemon
    # ------------------------------------------------------------------

    def daemon_start(self, workspace: Path) -> bool:
        """Start the store daemon for *workspace*. False when it was already running."""
        result = self._run(["daemon", "start"], workspace, check=False)
        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            if _ALREADY_RUNNING in output.lower():
                return False
            raise StoreCommandError([self._config.binary, "daemon", "start"], result.returncode, output)
        self._sleep(self._config.daemon_start_delay_ms / 1000)
        return True

    def daemons_stop(self, workspace: Path) -> bool:
        """Stop the store daemon serving *workspace*. False when none was running."""
        result = self._run(["daemons", "stop", str(workspace)], workspace, check=False)
        if result.returncode == 0:
            return True
        output = ((result.stdout or "") + (result.stderr or "")).lower()
        if any(marker in output for marker in _NOT_RUNNING):
            return False
        raise StoreCommandError(
            [self._config.binary, "daemons", "stop", str(workspace)],
            result.returncode,
            output,
        )
