"""Tests for town layout, the fleet model and the activity feed."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from tests.helpers.fakes import FakeMultiplexer
from tests.helpers.towns import make_town
from townhall.coordinator.events import EventFeed, TownEvent, boot_payload
from townhall.coordinator.fleet import (
    AgentFactory,
    FleetSnapshot,
    RigNotFoundError,
    list_polecats,
    load_rig_descriptor,
    rig_session_name,
    town_session_name,
)
from townhall.errors import TownNotFoundError
from townhall.workspace.town import Town, find_town_root, short_path


class TestTown:
    def test_find_town_root_walks_upward(self, town: Town) -> None:
        nested = town.root / "alpha" / "polecats" / "nux"
        assert find_town_root(nested) == town.root

    def test_find_town_root_outside_a_town(self, tmp_path: Path) -> None:
        with pytest.raises(TownNotFoundError):
            find_town_root(tmp_path)

    def test_rig_entries_sorted_with_prefix(self, town: Town) -> None:
        entries = town.rig_entries()
        assert [(e.name, e.prefix) for e in entries] == [("alpha", "al"), ("beta", "be")]

    def test_missing_registry_has_no_rigs(self, tmp_path: Path) -> None:
        assert Town(root=tmp_path).rig_names() == []

    def test_undecodable_registry_has_no_rigs(self, tmp_path: Path) -> None:
        make_town(tmp_path)
        (tmp_path / "mayor" / "rigs.json").write_bytes(b"\xff\xfe{}")
        assert Town(root=tmp_path).rig_names() == []

    def test_short_path(self) -> None:
        home = Path.home()
        assert short_path(home / "gt") == "~/gt"
        assert short_path("/elsewhere/gt") == "/elsewhere/gt"


class TestFleet:
    def test_session_names(self, town: Town) -> None:
        assert town_session_name(town, "deacon") == "hq-deacon"
        assert rig_session_name("alpha", "witness") == "gt-alpha-witness"

    def test_descriptor_reads_rig_config_prefix(self, town: Town) -> None:
        (town.root / "alpha" / "config.json").write_text(
            json.dumps({"beads": {"prefix": "ax"}}), encoding="utf-8",
        )
        entry = town.rig_entries()[0]
        descriptor = load_rig_descriptor(town, entry)
        assert descriptor.prefix == "ax"
        assert descriptor.polecats == ["nux", "slit"]
        assert descriptor.refinery_dir == town.root / "alpha" / "refinery" / "rig"

    def test_descriptor_for_missing_rig(self, tmp_path: Path) -> None:
        town = make_town(tmp_path, {"ghost": "gh"})
        with pytest.raises(RigNotFoundError):
            load_rig_descriptor(town, town.rig_entries()[0])

    def test_snapshot_sees_running_agents(self, town: Town) -> None:
        mux = FakeMultiplexer({"gt-alpha-witness", "gt-alpha-nux"})
        snapshot = FleetSnapshot.capture(town, mux)
        alpha = snapshot.rigs[0]
        assert alpha.witness and not alpha.refinery
        assert alpha.polecats == ["nux"]
        assert snapshot.rig_names == ["alpha", "beta"]
        assert snapshot.running_polecats == 1

    def test_polecats_path_that_is_a_file(self, town: Town) -> None:
        beta = town.root / "beta"
        (beta / "polecats").write_text("", encoding="utf-8")
        assert list_polecats(beta) == []
        assert FleetSnapshot.capture(town, FakeMultiplexer()).rig_names == ["alpha", "beta"]

    def test_town_session_env(self, town: Town) -> None:
        unit = AgentFactory(town, FakeMultiplexer()).town_session("mayor")
        assert unit.label == "Mayor"
        assert unit.env["GT_ROLE"] == "mayor"
        assert unit.env["GT_TOWN_ROOT"] == str(town.root)


class TestEventFeed:
    def test_append_persists_jsonl(self, tmp_path: Path) -> None:
        path = tmp_path / ".events.jsonl"
        feed = EventFeed(path)
        feed.append(TownEvent(event_type="boot", payload=boot_payload("reload", ["all"])))
        record = json.loads(path.read_text(encoding="utf-8").strip())
        assert record["event_type"] == "boot"
        assert record["actor"] == "townhall"
        assert record["payload"] == {"action": "reload", "targets": ["all"]}

    def test_write_failure_keeps_history(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        feed = EventFeed(blocker / ".events.jsonl")
        feed.append(TownEvent(event_type="boot"))
        assert [e.event_type for e in feed.history] == ["boot"]
