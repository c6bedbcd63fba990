from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner

from townhall.cli import main
from townhall.workspace.town import Town


def _invoke(town: Town, *args: str, input: str | None = None):  # type: ignore[no-untyped-def]
    return CliRunner().invoke(main, ["--town", str(town.root), *args], input=input)


def test_version() -> None:
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "townhall" in result.output


def test_outside_a_town(tmp_path: Path) -> None:
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=tmp_path):
        result = runner.invoke(main, ["routes", "list"], env={"TOWNHALL_ROOT": None})
    assert result.exit_code == 1
    assert "not in a town workspace" in result.output


def test_routes_add_list_resolve(town: Town) -> None:
    result = _invoke(town, "routes", "add", "al-", "alpha/mayor/rig")
    assert result.exit_code == 0, result.output

    result = _invoke(town, "routes", "list")
    assert "al-" in result.output and "alpha/mayor/rig" in result.output

    result = _invoke(town, "routes", "resolve", "al-123")
    assert result.exit_code == 0
    assert result.output.strip() == str(town.root / "alpha" / "mayor" / "rig")


def test_routes_add_requires_separator(town: Town) -> None:
    result = _invoke(town, "routes", "add", "al", "alpha")
    assert result.exit_code == 2
    assert "must end with '-'" in result.output


def test_routes_resolve_unknown(town: Town) -> None:
    result = _invoke(town, "routes", "resolve", "zz-1")
    assert result.exit_code == 1
    assert "no route matches" in result.output


def test_workspaces(town: Town) -> None:
    result = _invoke(town, "workspaces")
    assert result.exit_code == 0
    lines = result.output.strip().splitlines()
    assert len(lines) == 3
    assert lines[1].endswith("alpha/mayor/rig")


def test_daemon_status_stopped(town: Town) -> None:
    result = _invoke(town, "daemon", "status")
    assert result.exit_code == 0
    assert "Daemon: stopped" in result.output


def test_reset_aborts_on_wrong_confirmation(town: Town) -> None:
    result = _invoke(town, "reset", input="no\n")
    assert result.exit_code == 0
    assert "Aborted." in result.output
    assert (town.root / ".beads" / "beads.db").exists()


def test_reload_without_multiplexer(town: Town) -> None:
    with patch("townhall.services.tmux.Tmux.is_available", return_value=False):
        result = _invoke(town, "reload", "-q")
    assert result.exit_code == 1
    assert "tmux not available" in result.output
