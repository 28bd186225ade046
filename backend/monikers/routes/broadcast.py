from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from ..context import current_services
from ..realtime.events import RoomEvent, room_id_from_channel
from ..realtime.subscriber import SnapshotReconciler

logger = logging.getLogger(__name__)

bp = Blueprint("broadcast", __name__)


@bp.post("/broadcast")
def broadcast():
    """Relay one event from a client-side store to every channel subscriber."""
    payload = request.get_json(silent=True) or {}
    channel = str(payload.get("channel") or "").strip()
    event = str(payload.get("event") or "").strip()
    data = payload.get("data")

    if not channel or not event:
        return jsonify({"error": "channel_and_event_required"}), 400

    services = current_services()
    try:
        services.broadcaster.bus.publish(channel, event, data)
    except Exception as exc:
        logger.error("Relay of %s on %s failed: %s", event, channel, exc)
        return jsonify({"error": "broadcast_failed"}), 500

    room_id = room_id_from_channel(channel)
    if current_app.config.get("RECONCILE_RELAYED", True) and room_id and event in {e.value for e in RoomEvent}:
        reconciler = SnapshotReconciler(
            services.store,
            reject_stale=current_app.config.get("REJECT_STALE_SNAPSHOTS", False),
        )
        reconciler.apply(event, data, room_id)

    return jsonify({"ok": True})
