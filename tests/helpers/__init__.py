"""Test helpers for townhall."""

from tests.helpers.fakes import FakeControlDaemon, FakeMultiplexer, FakeStore, FakeUnit
from tests.helpers.towns import make_rig, make_town, make_workspace

__all__ = [
    "FakeControlDaemon",
    "FakeMultiplexer",
    "FakeStore",
    "FakeUnit",
    "make_rig",
    "make_town",
    "make_workspace",
]
