from __future__ import annotations

import logging

from flask import request
from flask_socketio import SocketIO, emit, join_room, leave_room

from ..context import current_services
from .broadcaster import build_payload
from .events import SUBSCRIBE, UNSUBSCRIBE, RoomEvent, channel_name, room_id_from_channel

logger = logging.getLogger(__name__)


def _channel_from_payload(data) -> str:
    payload = data or {}
    if not isinstance(payload, dict):
        return ""
    channel = str(payload.get("channel") or "").strip()
    if channel:
        return channel if room_id_from_channel(channel) else ""
    room_id = str(payload.get("roomId") or "").strip()
    return channel_name(room_id) if room_id else ""


def register_socketio_handlers(socketio: SocketIO) -> None:
    @socketio.on(SUBSCRIBE)
    def room_subscribe(data):
        channel = _channel_from_payload(data)
        if not channel:
            return {"ok": False, "error": "invalid_channel"}

        join_room(channel)
        room_id = room_id_from_channel(channel)
        logger.debug("%s subscribed to %s", request.sid, channel)

        room = current_services().store.get_room(room_id)
        if room is not None:
            emit(RoomEvent.UPDATED.value, build_payload(room_id, room.to_dict()))
        return {"ok": True, "channel": channel}

    @socketio.on(UNSUBSCRIBE)
    def room_unsubscribe(data):
        channel = _channel_from_payload(data)
        if not channel:
            return {"ok": False, "error": "invalid_channel"}
        leave_room(channel)
        logger.debug("%s unsubscribed from %s", request.sid, channel)
        return {"ok": True, "channel": channel}

    @socketio.on("disconnect")
    def on_disconnect(*_args):
        logger.debug("Socket %s disconnected", request.sid)
