from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from .events import RoomEvent, channel_name, normalize_room_id

logger = logging.getLogger(__name__)


class Bus(Protocol):
    def publish(self, channel: str, event: str, data: Any) -> None: ...


class SocketIOBus:
    """Fan-out through the coordinator's Socket.IO rooms (one room per channel)."""

    def __init__(self, socketio, namespace: str = "/"):
        self.socketio = socketio
        self.namespace = namespace

    def publish(self, channel: str, event: str, data: Any) -> None:
        self.socketio.emit(event, data, to=channel, namespace=self.namespace)


class HttpBus:
    """Client-side publisher that relays through the coordinator's /api/broadcast."""

    def __init__(self, base_url: str, timeout: float = 5.0, client: httpx.Client | None = None):
        self.url = base_url.rstrip("/") + "/api/broadcast"
        self._client = client or httpx.Client(timeout=timeout)

    def publish(self, channel: str, event: str, data: Any) -> None:
        res = self._client.post(self.url, json={"channel": channel, "event": event, "data": data})
        res.raise_for_status()

    def close(self) -> None:
        self._client.close()


def build_payload(room_id: str, snapshot: dict | None) -> dict:
    return {"roomId": normalize_room_id(room_id), "room": snapshot}


class Broadcaster:
    """Publishes full-room snapshots; delivery is best effort."""

    def __init__(self, bus: Bus):
        self.bus = bus

    def publish(self, room_id: str, event: RoomEvent, snapshot: dict | None) -> bool:
        channel = channel_name(room_id)
        try:
            self.bus.publish(channel, RoomEvent(event).value, build_payload(room_id, snapshot))
        except Exception as exc:
            # The local mutation already happened; peers catch up on the next delivery.
            logger.warning("Broadcast of %s on %s failed: %s", RoomEvent(event).value, channel, exc)
            return False
        logger.debug("Broadcast %s on %s", RoomEvent(event).value, channel)
        return True
