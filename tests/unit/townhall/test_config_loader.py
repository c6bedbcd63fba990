from __future__ import annotations

from pathlib import Path

import pytest

from townhall.config.loader import default_config_path, load_townhall_yaml
from townhall.errors import ConfigurationError


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    cfg = load_townhall_yaml(tmp_path / "absent.yaml")
    assert cfg.town.prefix == "hq"
    assert cfg.town.allowed_prefixes == ["hq", "hq-cv"]
    assert cfg.sessions.binary == "tmux"
    assert cfg.store.binary == "bd"
    assert cfg.daemon.command == ["townhall", "daemon", "run"]
    assert cfg.reload.max_parallel_rigs == 0


def test_load_sections(tmp_path: Path) -> None:
    path = tmp_path / "townhall.yaml"
    path.write_text(
        """version: 1
town:
  prefix: gt
  allowed_prefixes: [gt, gt-cv]
sessions:
  agent_command: claude --resume
  grace_period_ms: 250
  unknown_key: ignored
store:
  binary: /usr/local/bin/bd
daemon:
  command: gt daemon run
reload:
  max_parallel_rigs: 4
""",
        encoding="utf-8",
    )
    cfg = load_townhall_yaml(path)
    assert cfg.town.prefix == "gt"
    assert cfg.town.allowed_prefixes == ["gt", "gt-cv"]
    assert cfg.sessions.agent_command == "claude --resume"
    assert cfg.sessions.grace_period_ms == 250
    assert cfg.store.binary == "/usr/local/bin/bd"
    assert cfg.daemon.command == ["gt", "daemon", "run"]
    assert cfg.reload.max_parallel_rigs == 4


def test_invalid_yaml(tmp_path: Path) -> None:
    path = tmp_path / "townhall.yaml"
    path.write_text("town: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="invalid YAML"):
        load_townhall_yaml(path)


def test_empty_prefix_rejected(tmp_path: Path) -> None:
    path = tmp_path / "townhall.yaml"
    path.write_text("town:\n  prefix: ''\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="town.prefix"):
        load_townhall_yaml(path)


def test_default_config_path(tmp_path: Path) -> None:
    assert default_config_path(tmp_path) == tmp_path / "mayor" / "townhall.yaml"
