from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from threading import RLock

from .models import Room

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "monikers_rooms"


class MemorySnapshot:
    """Process-local snapshot; lost on restart."""

    def __init__(self, namespace: str = DEFAULT_NAMESPACE):
        self.namespace = namespace
        self._data: dict[str, dict] = {}

    def load(self) -> dict[str, Room]:
        return {code: Room.from_dict(raw) for code, raw in self._data.items()}

    def save(self, rooms: dict[str, Room]) -> None:
        self._data = {code: room.to_dict() for code, room in rooms.items()}


class JsonFileSnapshot:
    """JSON file of namespaced keys; the namespace key maps room id -> room."""

    def __init__(self, path: str | Path, namespace: str = DEFAULT_NAMESPACE):
        self.path = Path(path)
        self.namespace = namespace
        self._lock = RLock()

    def _read_all(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable snapshot %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring snapshot %s: top level is not an object", self.path)
            return {}
        return data

    def load(self) -> dict[str, Room]:
        with self._lock:
            raw_rooms = self._read_all().get(self.namespace) or {}
        rooms: dict[str, Room] = {}
        for code, raw in raw_rooms.items():
            try:
                rooms[code] = Room.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Dropping malformed room %s from snapshot: %s", code, exc)
        return rooms

    def save(self, rooms: dict[str, Room]) -> None:
        with self._lock:
            data = self._read_all()
            data[self.namespace] = {code: room.to_dict() for code, room in rooms.items()}
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".snapshot-", dir=str(self.path.parent))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, ensure_ascii=False)
                os.replace(tmp, self.path)
            except OSError:
                Path(tmp).unlink(missing_ok=True)
                raise


def open_snapshot(path: str | None, namespace: str = DEFAULT_NAMESPACE):
    if path:
        return JsonFileSnapshot(path, namespace=namespace)
    return MemorySnapshot(namespace=namespace)
