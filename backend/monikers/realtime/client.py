from __future__ import annotations

import logging
from typing import Any, Callable

import httpx
import socketio

from ..game.models import Room
from .events import SUBSCRIBE, UNSUBSCRIBE, RoomEvent, normalize_room_id

logger = logging.getLogger(__name__)


class SubscriptionError(RuntimeError):
    pass


class SocketIOTransport:
    """Push transport over a python-socketio client.

    Automatic reconnection is left off; PushRoomObserver owns the retry policy.
    """

    def __init__(
        self,
        url: str,
        namespace: str = "/",
        wait_timeout: float = 5.0,
        client: socketio.Client | None = None,
    ):
        self.url = url
        self.namespace = namespace
        self.wait_timeout = wait_timeout
        self._client = client or socketio.Client(reconnection=False)
        self._bound = False

    def bind(
        self,
        on_event: Callable[[str, Any], None],
        on_disconnect: Callable[[], None],
        on_error: Callable[[Exception], None],
    ) -> None:
        if self._bound:
            return
        self._bound = True

        for event in RoomEvent:
            self._client.on(event.value, self._forward(event.value, on_event), namespace=self.namespace)

        def _disconnected(*_args):
            on_disconnect()

        def _connect_error(data=None):
            on_error(ConnectionError(f"connect error: {data}"))

        self._client.on("disconnect", _disconnected, namespace=self.namespace)
        self._client.on("connect_error", _connect_error, namespace=self.namespace)

    @staticmethod
    def _forward(event: str, on_event: Callable[[str, Any], None]):
        def _handler(data=None):
            on_event(event, data)

        return _handler

    def connect(self) -> None:
        if self._client.connected:
            return
        self._client.connect(self.url, namespaces=[self.namespace], wait_timeout=self.wait_timeout)

    def subscribe(self, channel: str) -> None:
        ack = self._client.call(SUBSCRIBE, {"channel": channel}, namespace=self.namespace, timeout=self.wait_timeout)
        if not isinstance(ack, dict) or not ack.get("ok"):
            raise SubscriptionError(f"subscription to {channel} refused: {ack!r}")

    def unsubscribe(self, channel: str) -> None:
        if self._client.connected:
            self._client.emit(UNSUBSCRIBE, {"channel": channel}, namespace=self.namespace)

    def close(self) -> None:
        if self._client.connected:
            self._client.disconnect()


class HttpRoomSource:
    """Fetches a room snapshot from the coordinator's REST surface."""

    def __init__(self, base_url: str, timeout: float = 5.0, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def __call__(self, room_id: str) -> Room | None:
        res = self._client.get(f"{self.base_url}/api/rooms/{normalize_room_id(room_id)}")
        if res.status_code == 404:
            return None
        res.raise_for_status()
        return Room.from_dict(res.json())

    def close(self) -> None:
        self._client.close()
