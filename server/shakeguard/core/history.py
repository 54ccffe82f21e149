"""Local earthquake history — newest first, capped, optionally persisted as JSON."""

from __future__ import annotations

import json
from pathlib import Path

import structlog

from shakeguard.core.models import EarthquakeEvent

log = structlog.get_logger()


class EventHistory:
    """Finalized events kept on the device.

    Persistence failures are logged; the in-memory list stays authoritative.
    """

    def __init__(self, max_events: int = 100, path: str | Path | None = None) -> None:
        self._max_events = max_events
        self._path = Path(path) if path else None
        self._events: list[EarthquakeEvent] = []
        self._load()

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            rows = json.loads(self._path.read_text())
            self._events = [EarthquakeEvent(**row) for row in rows][: self._max_events]
        except (json.JSONDecodeError, OSError, TypeError):
            log.warning("history_load_failed", path=str(self._path), exc_info=True)

    def _save(self) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps([e.to_dict() for e in self._events]))
        except OSError:
            log.error("history_save_failed", path=str(self._path), exc_info=True)

    def add(self, event: EarthquakeEvent) -> None:
        self._events = [event, *self._events][: self._max_events]
        self._save()

    def remove(self, index: int) -> bool:
        if not 0 <= index < len(self._events):
            return False
        del self._events[index]
        self._save()
        return True

    def clear(self) -> None:
        self._events = []
        self._save()

    def events(self) -> list[EarthquakeEvent]:
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)
