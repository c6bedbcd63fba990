"""Town lifecycle events, appended to the ``.events.jsonl`` activity feed."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from townhall.protocol.io import append_jsonl

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TownEvent:
    event_type: str         # "boot"
    actor: str = "townhall"
    timestamp: float = field(default_factory=time.time)
    payload: dict[str, Any] = field(default_factory=dict)


def boot_payload(action: str, targets: list[str]) -> dict[str, Any]:
    return {"action": action, "targets": list(targets)}


class EventFeed:
    """Append-only activity feed.

    Without a path events are only kept in memory.  A write failure is
    logged and never fails the run that produced the event.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._history: list[TownEvent] = []

    def append(self, event: TownEvent) -> None:
        self._history.append(event)
        if self._path is None:
            return
        try:
            append_jsonl(self._path, asdict(event))
        except OSError as exc:
            logger.warning("could not record %s event in %s: %s", event.event_type, self._path, exc)

    @property
    def history(self) -> list[TownEvent]:
        return list(self._history)
