from __future__ import annotations

from enum import Enum


class RoomEvent(str, Enum):
    UPDATED = "room:updated"
    DELETED = "room:deleted"
    STATE = "room:state"


# Socket.IO control events understood by the coordinator.
SUBSCRIBE = "room:subscribe"
UNSUBSCRIBE = "room:unsubscribe"

CHANNEL_PREFIX = "room-"


def normalize_room_id(room_id: str) -> str:
    return (room_id or "").strip().lower()


def channel_name(room_id: str) -> str:
    return f"{CHANNEL_PREFIX}{normalize_room_id(room_id)}"


def room_id_from_channel(channel: str) -> str | None:
    if not channel or not channel.startswith(CHANNEL_PREFIX):
        return None
    return normalize_room_id(channel[len(CHANNEL_PREFIX):]) or None
