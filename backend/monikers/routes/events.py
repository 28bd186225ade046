from __future__ import annotations

import json
import logging
import time

from flask import Blueprint, Response, current_app, jsonify, stream_with_context

from ..context import current_services
from ..realtime.events import normalize_room_id

logger = logging.getLogger(__name__)

bp = Blueprint("events", __name__)

ROOM_STATE = "room-state"
ROOM_UPDATE = "room-update"
ROOM_DELETED = "room-deleted"


def sse_message(kind: str, data=None) -> str:
    body = {"type": kind}
    if data is not None:
        body["data"] = data
    return f"data: {json.dumps(body)}\n\n"


@bp.get("/rooms/<room_id>/events")
def room_events(room_id: str):
    code = normalize_room_id(room_id)
    store = current_services().store
    interval = float(current_app.config.get("STREAM_POLL_INTERVAL_SEC", 1.0))

    room = store.get_room(code)
    if room is None:
        return jsonify({"error": "room_not_found"}), 404

    def _stream():
        logger.debug("Event stream opened for %s", code)
        try:
            yield sse_message(ROOM_STATE, room.to_dict())
            while True:
                time.sleep(interval)
                current = store.get_room(code)
                if current is None:
                    yield sse_message(ROOM_DELETED)
                    return
                yield sse_message(ROOM_UPDATE, current.to_dict())
        finally:
            logger.debug("Event stream closed for %s", code)

    return Response(
        stream_with_context(_stream()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
