"""Tests for the tmux wrapper."""

from __future__ import annotations

import subprocess
from unittest.mock import call, patch

import pytest

from townhall.errors import SessionError
from townhall.services.tmux import Tmux


def _done(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def test_has_session_uses_exact_match() -> None:
    with patch("subprocess.run", return_value=_done()) as run:
        assert Tmux().has_session("hq-mayor") is True
    assert run.call_args.args[0] == ["tmux", "has-session", "-t", "=hq-mayor"]


def test_has_session_missing() -> None:
    with patch("subprocess.run", return_value=_done(1)):
        assert Tmux().has_session("hq-mayor") is False


def test_is_available_without_binary() -> None:
    with patch("shutil.which", return_value=None):
        assert Tmux("tmux-nope").is_available() is False


def test_new_session_passes_env() -> None:
    with patch("subprocess.run", return_value=_done()) as run:
        Tmux().new_session("gt-alpha-witness", "/town/alpha", "claude", {"GT_RIG": "alpha"})
    assert run.call_args.args[0] == [
        "tmux", "new-session", "-d", "-s", "gt-alpha-witness", "-c", "/town/alpha",
        "-e", "GT_RIG=alpha", "claude",
    ]


def test_command_failure_becomes_session_error() -> None:
    error = subprocess.CalledProcessError(1, ["tmux"], stderr="duplicate session")
    with patch("subprocess.run", side_effect=error):
        with pytest.raises(SessionError, match="duplicate session"):
            Tmux().send_keys_raw("hq-mayor", "C-c")


def test_kill_signals_pane_groups_then_session() -> None:
    responses = [_done(stdout="101\n102\n"), _done()]
    with (
        patch("subprocess.run", side_effect=responses) as run,
        patch("os.getpgid", side_effect=lambda pid: pid) as getpgid,
        patch("os.killpg") as killpg,
    ):
        Tmux().kill_session_with_processes("hq-deacon")
    assert getpgid.call_count == 2
    assert killpg.call_count == 2
    assert run.call_args_list[-1] == call(
        ["tmux", "kill-session", "-t", "=hq-deacon"], check=False, capture_output=True, text=True,
    )


def test_kill_tolerates_vanished_panes() -> None:
    responses = [_done(stdout="101\n"), _done()]
    with (
        patch("subprocess.run", side_effect=responses),
        patch("os.getpgid", side_effect=ProcessLookupError),
    ):
        Tmux().kill_session_with_processes("hq-deacon")
