"""Client-side room observers.

An observer keeps one local RoomStore in step with a room and reports what
changed through three callbacks:

- ``on_update(room)`` for ordinary field changes,
- ``on_state(room)`` when the room's phase changed,
- ``on_deleted(room_id)`` once the room is gone.

Two implementations share that contract: ``PushRoomObserver`` follows the
room's broadcast channel and ``PollingRoomObserver`` re-reads the room on a
fixed interval. ``create_room_observer`` picks one from configuration.
"""
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable

from ..game.models import Room
from ..game.store import RoomStore
from .events import RoomEvent, channel_name, normalize_room_id

logger = logging.getLogger(__name__)

RoomCallback = Callable[[Room], None]
DeletedCallback = Callable[[str], None]


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class SnapshotReconciler:
    """Installs received snapshots into a store (full overwrite, last delivery wins)."""

    def __init__(self, store: RoomStore, reject_stale: bool = False):
        self.store = store
        self.reject_stale = reject_stale

    def apply(self, event: RoomEvent | str, data: Any, room_id: str | None = None) -> bool:
        event = RoomEvent(event)
        payload = data if isinstance(data, dict) else {}
        code = normalize_room_id(payload.get("roomId") or room_id or "")
        if event is RoomEvent.DELETED:
            return self.store.discard(code) if code else False
        snapshot = payload.get("room")
        if not snapshot:
            return False
        try:
            return self.store.apply_snapshot(snapshot, reject_stale=self.reject_stale)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed snapshot for %s: %s", code or "?", exc)
            return False


class RoomObserver:
    def __init__(
        self,
        room_id: str,
        on_update: RoomCallback | None = None,
        on_deleted: DeletedCallback | None = None,
        on_state: RoomCallback | None = None,
        on_status: Callable[[ConnectionStatus], None] | None = None,
    ):
        self.room_id = normalize_room_id(room_id)
        self.on_update = on_update
        self.on_deleted = on_deleted
        self.on_state = on_state
        self.on_status = on_status
        self._status = ConnectionStatus.DISCONNECTED

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    def _set_status(self, status: ConnectionStatus) -> None:
        if self._status is status:
            return
        self._status = status
        logger.debug("Observer for %s is %s", self.room_id, status.value)
        if self.on_status:
            self.on_status(status)

    def _notify(self, event: RoomEvent, room: Room | None) -> None:
        if event is RoomEvent.DELETED:
            if self.on_deleted:
                self.on_deleted(self.room_id)
            return
        if room is None:
            return
        callback = self.on_state if event is RoomEvent.STATE else self.on_update
        if callback:
            callback(room)

    def start(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()


class PushRoomObserver(RoomObserver):
    """Follows ``room-{id}`` on a push transport, reconnecting after a fixed delay."""

    def __init__(
        self,
        room_id: str,
        store: RoomStore,
        transport,
        reconnect_delay: float = 2.0,
        reject_stale: bool = False,
        timer_factory=threading.Timer,
        **callbacks,
    ):
        super().__init__(room_id, **callbacks)
        self.store = store
        self.transport = transport
        self.reconnect_delay = reconnect_delay
        self.reconciler = SnapshotReconciler(store, reject_stale=reject_stale)
        self.channel = channel_name(room_id)
        self._timer_factory = timer_factory
        self._reconnect_timer = None
        self._running = False
        self._lock = threading.RLock()

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
        self.transport.bind(self._handle_event, self._handle_disconnect, self._handle_error)
        self._connect()

    def stop(self) -> None:
        with self._lock:
            self._running = False
            timer, self._reconnect_timer = self._reconnect_timer, None
        if timer is not None:
            timer.cancel()
        try:
            self.transport.unsubscribe(self.channel)
            self.transport.close()
        except Exception as exc:
            logger.debug("Ignoring error while closing %s: %s", self.channel, exc)
        self._set_status(ConnectionStatus.DISCONNECTED)

    def _connect(self) -> None:
        self._set_status(ConnectionStatus.CONNECTING)
        try:
            self.transport.connect()
            self.transport.subscribe(self.channel)
        except Exception as exc:
            logger.warning("Subscribing to %s failed: %s", self.channel, exc)
            self._set_status(ConnectionStatus.DISCONNECTED)
            self._schedule_reconnect()
            return
        logger.info("Subscribed to %s", self.channel)
        self._set_status(ConnectionStatus.CONNECTED)

    def _schedule_reconnect(self) -> None:
        with self._lock:
            if not self._running:
                return
            if self._reconnect_timer is not None:
                self._reconnect_timer.cancel()
            timer = self._timer_factory(self.reconnect_delay, self._reconnect)
            timer.daemon = True
            self._reconnect_timer = timer
        timer.start()

    def _reconnect(self) -> None:
        with self._lock:
            self._reconnect_timer = None
            if not self._running:
                return
        logger.info("Reconnecting to %s", self.channel)
        try:
            self.transport.unsubscribe(self.channel)
        except Exception as exc:
            logger.debug("Unsubscribe before reconnect failed: %s", exc)
        self._connect()

    def _handle_event(self, event: str, data: Any) -> None:
        if not self._running:
            return
        try:
            kind = RoomEvent(event)
        except ValueError:
            return
        if isinstance(data, dict) and normalize_room_id(data.get("roomId") or self.room_id) != self.room_id:
            return
        applied = self.reconciler.apply(kind, data, self.room_id)
        if not applied and kind is not RoomEvent.DELETED:
            return
        self._notify(kind, None if kind is RoomEvent.DELETED else self.store.get_room(self.room_id))

    def _handle_disconnect(self) -> None:
        if not self._running:
            return
        logger.info("Lost connection while following %s", self.channel)
        self._set_status(ConnectionStatus.DISCONNECTED)
        self._schedule_reconnect()

    def _handle_error(self, exc: Exception) -> None:
        if not self._running:
            return
        logger.warning("Transport error on %s: %s", self.channel, exc)
        self._set_status(ConnectionStatus.DISCONNECTED)
        self._schedule_reconnect()


class StoreRoomSource:
    def __init__(self, store: RoomStore):
        self.store = store

    def __call__(self, room_id: str) -> Room | None:
        return self.store.get_room(room_id)


class PollingRoomObserver(RoomObserver):
    """Re-reads the room every ``interval`` seconds and diffs it.

    With a ``store`` the fetched snapshot is reconciled into it; leave it unset
    when the source already reads that store.
    """

    def __init__(
        self,
        room_id: str,
        source: Callable[[str], Room | None],
        interval: float = 1.0,
        store: RoomStore | None = None,
        owns_source: bool = False,
        **callbacks,
    ):
        super().__init__(room_id, **callbacks)
        self.source = source
        self.owns_source = owns_source
        self.interval = interval
        self.store = store
        self._last: Room | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._set_status(ConnectionStatus.CONNECTING)
        self._thread = threading.Thread(target=self._run, name=f"poll-{self.room_id}", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval + 1)
        if self.owns_source and hasattr(self.source, "close"):
            self.source.close()
        self._set_status(ConnectionStatus.DISCONNECTED)

    def _run(self) -> None:
        while not self._stop.is_set():
            self.poll_once()
            self._stop.wait(self.interval)

    def poll_once(self) -> RoomEvent | None:
        try:
            room = self.source(self.room_id)
        except Exception as exc:
            logger.warning("Polling %s failed: %s", self.room_id, exc)
            self._set_status(ConnectionStatus.DISCONNECTED)
            return None
        self._set_status(ConnectionStatus.CONNECTED)

        prev, self._last = self._last, room
        if room is None:
            if prev is None:
                return None
            if self.store is not None:
                self.store.discard(self.room_id)
            self._notify(RoomEvent.DELETED, None)
            return RoomEvent.DELETED

        if self.store is not None:
            self.store.apply_snapshot(room)
        if prev is not None and room.game_state is not prev.game_state:
            event = RoomEvent.STATE
        elif prev is None or room.updated_at != prev.updated_at:
            event = RoomEvent.UPDATED
        else:
            return None
        self._notify(event, room)
        return event


def create_room_observer(config, room_id: str, store: RoomStore, transport=None, source=None, **callbacks) -> RoomObserver:
    kind = getattr(config, "ROOM_OBSERVER", "push")
    server_url = getattr(config, "SERVER_URL", "")

    if kind == "poll":
        owns_source = False
        if source is None:
            if server_url:
                from .client import HttpRoomSource

                source = HttpRoomSource(server_url)
                owns_source = True
            else:
                source = StoreRoomSource(store)
        reconcile_into = None if isinstance(source, StoreRoomSource) else store
        return PollingRoomObserver(
            room_id,
            source,
            interval=float(getattr(config, "POLL_INTERVAL_SEC", 1.0)),
            store=reconcile_into,
            owns_source=owns_source,
            **callbacks,
        )

    if kind == "push":
        if transport is None:
            from .client import SocketIOTransport

            transport = SocketIOTransport(server_url)
        return PushRoomObserver(
            room_id,
            store,
            transport,
            reconnect_delay=float(getattr(config, "RECONNECT_DELAY_SEC", 2.0)),
            reject_stale=bool(getattr(config, "REJECT_STALE_SNAPSHOTS", False)),
            **callbacks,
        )

    raise ValueError(f"unknown ROOM_OBSERVER {kind!r}")
