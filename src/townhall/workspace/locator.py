"""Store workspace discovery with redirect following."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from townhall.workspace.town import (
    DB_FILE,
    REDIRECT_MARKER,
    STORE_DIRNAME,
    Town,
)

log = logging.getLogger(__name__)


def _abs(path: Path) -> Path:
    return Path(os.path.abspath(path))


def owning_workspace(store_or_root: Path) -> Path:
    """Map a redirect target to the workspace it names.

    ``.../.beads`` maps to its parent. Any other directory, including a
    bare store directory holding the database directly, is used as is.
    """
    return store_or_root.parent if store_or_root.name == STORE_DIRNAME else store_or_root


def store_dir(workspace: Path) -> Path:
    """The directory holding *workspace*'s database files."""
    if (workspace / DB_FILE).is_file() and not (workspace / STORE_DIRNAME).is_dir():
        return workspace
    return workspace / STORE_DIRNAME


def read_redirect(workspace: Path, town_root: Path) -> Path | None:
    """Return the absolute workspace a redirect marker points at.

    ``None`` when *workspace* carries no redirect marker. A relative
    marker value is resolved against *town_root*. Read and decode errors
    propagate.
    """
    marker = workspace / STORE_DIRNAME / REDIRECT_MARKER
    if not marker.is_file():
        return None
    target = marker.read_text(encoding="utf-8").strip()
    if not target:
        return None
    target_path = Path(target)
    if not target_path.is_absolute():
        target_path = town_root / target_path
    return owning_workspace(_abs(target_path))


def has_database(workspace: Path) -> bool:
    return (store_dir(workspace) / DB_FILE).is_file()


def resolve_workspace(candidate: Path, town_root: Path) -> Path | None:
    """Resolve *candidate* to the absolute root of the workspace holding its database.

    A redirect is followed once. Returns ``None`` when neither the
    candidate nor its redirect target holds a database; a dangling
    redirect is a valid transient state, not an error.
    """
    candidate = _abs(candidate)
    target = read_redirect(candidate, town_root)
    if target is not None:
        if has_database(target):
            return target
        log.debug("skipping dangling redirect %s -> %s", candidate, target)
        return None
    if has_database(candidate):
        return candidate
    return None


def candidate_workspaces(town: Town) -> list[Path]:
    """Locations to check, in discovery order: town root, then each rig root and its canonical subdir."""
    candidates = [town.root]
    for rig_name in town.rig_names():
        candidates.append(town.rig_path(rig_name))
        candidates.append(town.rig_canonical_path(rig_name))
    return candidates


def discover(town: Town) -> list[Path]:
    """Discover every physical store workspace under *town*.

    The result holds absolute workspace roots, deduplicated, in a stable
    order (town root first, then rigs in enumeration order).
    """
    seen: set[Path] = set()
    found: list[Path] = []
    for candidate in candidate_workspaces(town):
        try:
            resolved = resolve_workspace(candidate, town.root)
        except (OSError, UnicodeDecodeError) as exc:
            log.warning("cannot inspect workspace candidate %s: %s", candidate, exc)
            continue
        if resolved is None or resolved in seen:
            continue
        seen.add(resolved)
        found.append(resolved)
    return found
