"""Append-only prefix route table backed by ``routes.jsonl``.

Each line of the routes log is one ``{"prefix": ..., "path": ...}``
record. The table is rebuilt by replaying the whole log on every read;
the longest prefix that literally starts an identifier owns it.

The store binary adopts the first structured log it discovers in a
store directory as its default sink, so the primary ``issues.jsonl``
must exist before ``routes.jsonl`` is ever created.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable

from townhall.errors import AmbiguousRouteError, RouteNotFoundError, RouteWriteError
from townhall.protocol.io import append_jsonl, ensure_file, write_jsonl_atomic
from townhall.workspace.locator import read_redirect
from townhall.workspace.town import PRIMARY_LOG, ROUTES_LOG, STORE_DIRNAME, Town

log = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Route:
    prefix: str
    path: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class RouteTable:
    """Prefix routes of one town, persisted in the town store's routes log."""

    def __init__(self, town_root: str | Path) -> None:
        self._town_root = Path(os.path.abspath(town_root))
        self._store_dir = self._town_root / STORE_DIRNAME

    @classmethod
    def for_town(cls, town: Town) -> "RouteTable":
        return cls(town.root)

    @property
    def routes_path(self) -> Path:
        return self._store_dir / ROUTES_LOG

    @property
    def primary_log_path(self) -> Path:
        return self._store_dir / PRIMARY_LOG

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def routes(self) -> list[Route]:
        """Replay the routes log in file order."""
        if not self.routes_path.exists():
            return []
        routes: list[Route] = []
        with self.routes_path.open(encoding="utf-8") as handle:
            for lineno, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    raw = json.loads(line)
                except json.JSONDecodeError:
                    log.debug("skipping malformed route at %s:%d", self.routes_path, lineno)
                    continue
                if not isinstance(raw, dict) or not raw.get("prefix") or "path" not in raw:
                    log.debug("skipping incomplete route at %s:%d", self.routes_path, lineno)
                    continue
                routes.append(Route(prefix=str(raw["prefix"]), path=str(raw["path"])))
        return routes

    def match(self, identifier: str) -> Route:
        """Return the route with the longest prefix of *identifier*."""
        best: Route | None = None
        conflicts: set[str] = set()
        for route in self.routes():
            if not identifier.startswith(route.prefix):
                continue
            if best is None or len(route.prefix) > len(best.prefix):
                best = route
                conflicts = {route.path}
            elif route.prefix == best.prefix:
                conflicts.add(route.path)
        if best is None:
            raise RouteNotFoundError(identifier)
        if len(conflicts) > 1:
            raise AmbiguousRouteError(best.prefix, sorted(conflicts))
        return best

    def resolve(self, identifier: str) -> Path:
        """Resolve *identifier* to the absolute workspace directory that owns it."""
        route = self.match(identifier)
        workspace = Path(route.path)
        if not workspace.is_absolute():
            workspace = self._town_root / workspace
        workspace = Path(os.path.abspath(workspace))
        target = read_redirect(workspace, self._town_root)
        return target if target is not None else workspace

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def ensure_primary_log(self) -> bool:
        """Create an empty primary log if missing. Returns True when created."""
        try:
            created = ensure_file(self.primary_log_path)
        except OSError as exc:
            raise RouteWriteError(f"creating {self.primary_log_path}: {exc}") from exc
        if created:
            log.debug("created empty primary log %s", self.primary_log_path)
        return created

    def append(self, route: Route) -> None:
        """Append one route record.

        Identical records are accepted (replay collapses them); a record
        reusing an existing prefix with a different path is refused.
        """
        for existing in self.routes():
            if existing.prefix == route.prefix and existing.path != route.path:
                raise AmbiguousRouteError(route.prefix, sorted({existing.path, route.path}))
        self.ensure_primary_log()
        try:
            append_jsonl(self.routes_path, route.to_dict())
        except OSError as exc:
            raise RouteWriteError(f"appending to {self.routes_path}: {exc}") from exc

    def rebuild(self, entries: Iterable[Route]) -> None:
        """Atomically replace the routes log with *entries*, in order. Used by reset."""
        self.ensure_primary_log()
        try:
            write_jsonl_atomic(self.routes_path, [route.to_dict() for route in entries])
        except OSError as exc:
            raise RouteWriteError(f"rewriting {self.routes_path}: {exc}") from exc


def build_reset_routes(town: Town) -> list[Route]:
    """Routes a freshly reset town needs: the town route, then one per prefixed rig.

    A rig route points at the rig's canonical nested workspace when it
    holds a store directory, else at the rig root.
    """
    routes = [Route(prefix=f"{town.config.town.prefix}-", path=".")]
    for entry in town.rig_entries():
        if not entry.prefix:
            continue
        path = entry.name
        if (town.rig_canonical_path(entry.name) / STORE_DIRNAME).exists():
            path = f"{entry.name}/mayor/rig"
        routes.append(Route(prefix=f"{entry.prefix}-", path=path))
    return routes
