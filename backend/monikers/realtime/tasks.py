from __future__ import annotations

import logging

from flask_socketio import SocketIO

from ..game.models import GameState
from ..game.rules import RoomStateMachine
from ..game.store import RoomStore
from .events import normalize_room_id

logger = logging.getLogger(__name__)


class TurnClock:
    """One background task per room that ticks the active turn every second."""

    def __init__(self, socketio: SocketIO, machine: RoomStateMachine, store: RoomStore, interval: float = 1.0):
        self.socketio = socketio
        self.machine = machine
        self.store = store
        self.interval = interval
        self._running: dict[str, bool] = {}

    def is_running(self, room_id: str) -> bool:
        return bool(self._running.get(normalize_room_id(room_id)))

    def ensure_running(self, room_id: str) -> None:
        room_id = normalize_room_id(room_id)
        if self._running.get(room_id):
            return
        self._running[room_id] = True

        def _runner() -> None:
            try:
                while True:
                    self.socketio.sleep(self.interval)
                    room = self.store.get_room(room_id)
                    if room is None or room.game_state is not GameState.PLAYING:
                        break
                    if not room.turn_started:
                        break
                    self.machine.tick(room_id)
            except Exception:
                logger.exception("Turn clock for room %s crashed", room_id)
            finally:
                self._running.pop(room_id, None)

        self.socketio.start_background_task(_runner)


class RoomSweeper:
    """Deletes rooms nobody has touched for ``ttl_sec`` seconds."""

    def __init__(self, socketio: SocketIO, store: RoomStore, ttl_sec: int, interval: float = 30.0):
        self.socketio = socketio
        self.store = store
        self.ttl_sec = ttl_sec
        self.interval = interval
        self._started = False

    def start(self) -> None:
        if self._started or self.ttl_sec <= 0:
            return
        self._started = True

        def _runner() -> None:
            while True:
                self.socketio.sleep(self.interval)
                try:
                    removed = self.store.sweep_idle(self.ttl_sec * 1000)
                except Exception:
                    logger.exception("Idle room sweep failed")
                    continue
                if removed:
                    logger.info("Swept %d idle room(s): %s", len(removed), ", ".join(removed))

        self.socketio.start_background_task(_runner)
