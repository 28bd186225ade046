from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..context import current_services

bp = Blueprint("cards", __name__)


@bp.get("/cards")
def list_cards():
    catalog = current_services().catalog
    level = request.args.get("level", type=int)
    cards = [c.to_dict() for c in catalog if level is None or c.level == level]
    return jsonify({"cards": cards})


@bp.get("/rooms/<room_id>/players/<player_id>/card-options")
def card_options(room_id: str, player_id: str):
    services = current_services()
    room = services.store.get_room(room_id)
    if not room:
        return jsonify({"error": "room_not_found"}), 404
    if room.find_player(player_id) is None:
        return jsonify({"error": "player_not_found"}), 404

    count = request.args.get("count", type=int)
    options = services.catalog.deal_options(room, player_id, count=count)
    return jsonify({"cards": [c.to_dict() for c in options], "cardsPerPlayer": room.settings.cards_per_player})
