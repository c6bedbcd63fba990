"""Global test fixtures for townhall."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.helpers.fakes import FakeMultiplexer, FakeStore
from tests.helpers.towns import make_rig, make_town
from townhall.workspace.town import Town


@pytest.fixture
def town(tmp_path: Path) -> Town:
    """A town with two rigs: ``alpha`` (canonical store) and ``beta`` (root store)."""
    root = tmp_path / "town"
    root.mkdir()
    make_rig(root, "alpha", canonical=True, polecats=("nux", "slit"))
    make_rig(root, "beta", canonical=False)
    return make_town(root, {"alpha": "al", "beta": "be"})


@pytest.fixture
def mux() -> FakeMultiplexer:
    return FakeMultiplexer()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()
