from __future__ import annotations

from flask import Blueprint, jsonify

from ..context import current_services

bp = Blueprint("health", __name__)


@bp.get("/health")
def health():
    services = current_services()
    return jsonify({"ok": True, "rooms": len(services.store.get_all_rooms()), "cards": len(services.catalog)})
