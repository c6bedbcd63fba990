"""Tests for store workspace discovery."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from tests.helpers.towns import make_rig, make_town, make_workspace
from townhall.workspace.locator import (
    candidate_workspaces,
    discover,
    owning_workspace,
    read_redirect,
    resolve_workspace,
    store_dir,
)
from townhall.workspace.town import Town


def test_owning_workspace_strips_store_dir(tmp_path: Path) -> None:
    assert owning_workspace(tmp_path / "rig" / ".beads") == tmp_path / "rig"
    assert owning_workspace(tmp_path / "rig") == tmp_path / "rig"


def test_read_redirect_relative_to_town_root(tmp_path: Path) -> None:
    make_workspace(tmp_path / "rig", redirect="other/.beads")
    assert read_redirect(tmp_path / "rig", tmp_path) == tmp_path / "other"


def test_read_redirect_absent(tmp_path: Path) -> None:
    make_workspace(tmp_path / "rig")
    assert read_redirect(tmp_path / "rig", tmp_path) is None


def test_resolve_workspace_without_store(tmp_path: Path) -> None:
    (tmp_path / "empty").mkdir()
    assert resolve_workspace(tmp_path / "empty", tmp_path) is None


def test_dangling_redirect_resolves_to_nothing(tmp_path: Path) -> None:
    make_workspace(tmp_path / "rig", redirect="gone")
    assert resolve_workspace(tmp_path / "rig", tmp_path) is None


class TestDiscover:
    def test_town_root_then_rigs(self, town: Town) -> None:
        assert discover(town) == [
            town.root,
            town.root / "alpha" / "mayor" / "rig",
            town.root / "beta",
        ]

    def test_results_are_absolute(self, town: Town) -> None:
        assert all(p.is_absolute() for p in discover(town))

    def test_redirect_to_sibling_is_deduplicated(self, tmp_path: Path) -> None:
        root = tmp_path / "town"
        make_rig(root, "alpha", canonical=False)
        make_rig(root, "beta", with_store=False)
        make_workspace(root / "beta", redirect="alpha")
        town = make_town(root, {"alpha": "al", "beta": "be"})
        assert discover(town) == [root, root / "alpha"]

    def test_redirect_outside_town(self, tmp_path: Path) -> None:
        elsewhere = make_workspace(tmp_path / "elsewhere")
        root = tmp_path / "town"
        make_rig(root, "alpha", with_store=False)
        make_workspace(root / "alpha", redirect=str(elsewhere / ".beads"))
        town = make_town(root, {"alpha": "al"})
        assert discover(town) == [root, elsewhere]

    def test_dangling_redirect_excluded(self, tmp_path: Path) -> None:
        root = tmp_path / "town"
        make_rig(root, "alpha", with_store=False)
        make_workspace(root / "alpha", redirect="missing")
        town = make_town(root, {"alpha": "al"})
        assert discover(town) == [root]

    def test_town_without_store(self, tmp_path: Path) -> None:
        root = tmp_path / "town"
        make_rig(root, "alpha", canonical=False)
        town = make_town(root, {"alpha": "al"}, with_store=False)
        assert discover(town) == [root / "alpha"]

    def test_unreadable_candidate_is_skipped(self, town: Town) -> None:
        real = resolve_workspace

        def flaky(candidate: Path, town_root: Path) -> Path | None:
            if candidate == town.root / "beta":
                raise PermissionError("denied")
            return real(candidate, town_root)

        with patch("townhall.workspace.locator.resolve_workspace", side_effect=flaky):
            found = discover(town)
        assert found == [town.root, town.root / "alpha" / "mayor" / "rig"]

    def test_candidates_cover_rig_root_and_canonical(self, town: Town) -> None:
        assert candidate_workspaces(town) == [
            town.root,
            town.root / "alpha",
            town.root / "alpha" / "mayor" / "rig",
            town.root / "beta",
            town.root / "beta" / "mayor" / "rig",
        ]

    def test_redirect_to_bare_store_directory(self, tmp_path: Path) -> None:
        shared = tmp_path / "shared_store"
        shared.mkdir()
        (shared / "beads.db").write_bytes(b"")
        root = tmp_path / "town"
        make_rig(root, "alpha", with_store=False)
        make_workspace(root / "alpha", redirect=str(shared))
        town = make_town(root, {"alpha": "al"})
        assert discover(town) == [root, shared]
        assert store_dir(shared) == shared

    def test_undecodable_redirect_is_skipped(self, tmp_path: Path) -> None:
        root = tmp_path / "town"
        make_rig(root, "alpha", with_store=False)
        make_rig(root, "beta", canonical=False)
        make_workspace(root / "alpha", redirect="placeholder")
        (root / "alpha" / ".beads" / "redirect").write_bytes(b"\xff\xfe bad")
        town = make_town(root, {"alpha": "al", "beta": "be"})
        assert discover(town) == [root, root / "beta"]
