"""Configuration schema for townhall YAML files."""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_CUSTOM_TYPES = [
    "agent",
    "role",
    "rig",
    "convoy",
    "slot",
    "queue",
    "event",
    "message",
    "molecule",
    "gate",
    "merge-request",
]


@dataclass(slots=True)
class TownSettings:
    prefix: str = "hq"
    allowed_prefixes: list[str] = field(default_factory=lambda: ["hq", "hq-cv"])
    custom_types: list[str] = field(default_factory=lambda: list(DEFAULT_CUSTOM_TYPES))


@dataclass(slots=True)
class SessionConfig:
    binary: str = "tmux"
    agent_command: str = "claude"
    grace_period_ms: int = 100


@dataclass(slots=True)
class StoreConfig:
    binary: str = "bd"
    daemon_start_delay_ms: int = 200


@dataclass(slots=True)
class DaemonConfig:
    command: list[str] = field(default_factory=lambda: ["townhall", "daemon", "run"])
    start_delay_ms: int = 300
    stop_timeout_seconds: float = 5.0
    heartbeat_interval_seconds: float = 30.0


@dataclass(slots=True)
class ReloadConfig:
    max_parallel_rigs: int = 0  # 0 = one slot per rig


@dataclass(slots=True)
class TownhallConfig:
    version: int = 1
    town: TownSettings = field(default_factory=TownSettings)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    reload: ReloadConfig = field(default_factory=ReloadConfig)


@dataclass(slots=True, frozen=True)
class ReloadOptions:
    """Scope flags for one reload run."""

    include_mayor: bool = False
    include_polecats: bool = False
    force_kill: bool = False
    quiet: bool = False


@dataclass(slots=True, frozen=True)
class ResetOptions:
    """Flags for one reset run."""

    force: bool = False
    stop_mayor: bool = False
