"""YAML config loader for townhall."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from townhall.config.schema import (
    DaemonConfig,
    ReloadConfig,
    SessionConfig,
    StoreConfig,
    TownhallConfig,
    TownSettings,
)
from townhall.errors import ConfigurationError

CONFIG_RELPATH = Path("mayor") / "townhall.yaml"


def default_config_path(town_root: Path) -> Path:
    return town_root / CONFIG_RELPATH


def load_townhall_yaml(path: str | Path) -> TownhallConfig:
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) if p.exists() else {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {p}: {exc}") from exc
    if not isinstance(raw, dict):
        raw = {}

    town_raw = _section(raw, "town")
    sessions_raw = _section(raw, "sessions")
    store_raw = _section(raw, "store")
    daemon_raw = _section(raw, "daemon")
    reload_raw = _section(raw, "reload")

    town = TownSettings(**_pick(town_raw, TownSettings))
    sessions = SessionConfig(**_pick(sessions_raw, SessionConfig))
    store = StoreConfig(**_pick(store_raw, StoreConfig))
    daemon = DaemonConfig(**_pick(daemon_raw, DaemonConfig))
    reload = ReloadConfig(**_pick(reload_raw, ReloadConfig))

    if isinstance(daemon.command, str):
        daemon.command = daemon.command.split()
    if not daemon.command:
        raise ConfigurationError("daemon.command must not be empty")
    if not town.prefix:
        raise ConfigurationError("town.prefix must not be empty")

    return TownhallConfig(
        version=int(raw.get("version", 1)),
        town=town,
        sessions=sessions,
        store=store,
        daemon=daemon,
        reload=reload,
    )


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key, {})
    return value if isinstance(value, dict) else {}


def _pick(raw: dict[str, Any], model_type: type[Any]) -> dict[str, Any]:
    allowed = set(model_type.__dataclass_fields__.keys())
    return {k: v for k, v in raw.items() if k in allowed}
