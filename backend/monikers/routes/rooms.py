from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..context import current_services
from ..game.models import DeviceKind, Settings, Team

bp = Blueprint("rooms", __name__)


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _room_or_404(room_id: str):
    room = current_services().store.get_room(room_id)
    if not room:
        return None, (jsonify({"error": "room_not_found"}), 404)
    return room, None


def _outcome(room_id: str, ok, error: str, **extra):
    """Room snapshot on success; 404 if the room vanished, 409 otherwise."""
    room, missing = _room_or_404(room_id)
    if missing:
        return missing
    if ok is None or ok is False:
        return jsonify({"error": error}), 409
    body = {"room": room.to_dict()}
    body.update(extra)
    return jsonify(body)


def _device_kind(raw) -> DeviceKind | None:
    try:
        return DeviceKind(raw or DeviceKind.DESKTOP.value)
    except ValueError:
        return None


@bp.get("/rooms")
def list_rooms():
    rooms = current_services().store.get_all_rooms()
    return jsonify({"rooms": [r.to_dict() for r in rooms]})


@bp.post("/rooms")
def create_room():
    data = _payload()
    host_name = str(data.get("hostName") or data.get("name") or "").strip()
    if not host_name:
        return jsonify({"error": "invalid_name"}), 400
    device_kind = _device_kind(data.get("deviceType"))
    if device_kind is None:
        return jsonify({"error": "invalid_device_type"}), 400

    settings = None
    if isinstance(data.get("settings"), dict):
        try:
            settings = Settings.from_dict(data["settings"])
        except (TypeError, ValueError):
            return jsonify({"error": "invalid_settings"}), 400
        if settings.player_count < 2 or settings.cards_per_player < 1:
            return jsonify({"error": "invalid_settings"}), 400

    room = current_services().store.create_room(host_name, device_kind, settings)
    return jsonify({"roomId": room.id, "playerId": room.host_id, "room": room.to_dict()}), 201


@bp.get("/rooms/<room_id>")
def get_room(room_id: str):
    room, missing = _room_or_404(room_id)
    if missing:
        return missing
    return jsonify(room.to_dict())


@bp.delete("/rooms/<room_id>")
def delete_room(room_id: str):
    if not current_services().store.delete_room(room_id):
        return jsonify({"error": "room_not_found"}), 404
    return jsonify({"ok": True})


@bp.post("/rooms/<room_id>/join")
def join_room(room_id: str):
    data = _payload()
    device_kind = _device_kind(data.get("deviceType"))
    if device_kind is None:
        return jsonify({"error": "invalid_device_type"}), 400
    _, missing = _room_or_404(room_id)
    if missing:
        return missing

    player = current_services().store.join_room(room_id, str(data.get("name") or ""), device_kind)
    if player is None:
        return _outcome(room_id, None, "join_rejected")
    return _outcome(room_id, True, "join_rejected", playerId=player.id)


@bp.post("/rooms/<room_id>/leave")
def leave_room(room_id: str):
    store = current_services().store
    _, missing = _room_or_404(room_id)
    if missing:
        return missing
    if not store.leave_room(room_id, str(_payload().get("playerId") or "")):
        return jsonify({"error": "player_not_found"}), 409
    room = store.get_room(room_id)
    return jsonify({"ok": True, "room": room.to_dict() if room else None})


@bp.get("/rooms/<room_id>/teams")
def available_teams(room_id: str):
    _, missing = _room_or_404(room_id)
    if missing:
        return missing
    teams = current_services().store.get_available_teams(room_id)
    return jsonify({"available": [t.value for t in teams]})


@bp.post("/rooms/<room_id>/team")
def choose_team(room_id: str):
    data = _payload()
    try:
        team = Team(data.get("team"))
    except ValueError:
        return jsonify({"error": "invalid_team"}), 400
    ok = current_services().machine.choose_team(room_id, str(data.get("playerId") or ""), team)
    return _outcome(room_id, ok, "team_unavailable")


@bp.patch("/rooms/<room_id>/settings")
def update_settings(room_id: str):
    data = _payload()
    try:
        player_count = int(data["playerCount"]) if data.get("playerCount") is not None else None
        cards_per_player = int(data["cardsPerPlayer"]) if data.get("cardsPerPlayer") is not None else None
    except (TypeError, ValueError):
        return jsonify({"error": "invalid_settings"}), 400
    ok = current_services().store.update_settings(room_id, player_count, cards_per_player)
    return _outcome(room_id, ok, "settings_rejected")


@bp.post("/rooms/<room_id>/start")
def start_card_selection(room_id: str):
    ok = current_services().machine.start_card_selection(room_id, str(_payload().get("playerId") or ""))
    return _outcome(room_id, ok, "cannot_start")


@bp.post("/rooms/<room_id>/cards")
def select_cards(room_id: str):
    data = _payload()
    words = data.get("words")
    if not isinstance(words, list):
        return jsonify({"error": "invalid_words"}), 400
    ok = current_services().machine.select_cards(room_id, str(data.get("playerId") or ""), [str(w) for w in words])
    return _outcome(room_id, ok, "selection_rejected")


@bp.post("/rooms/<room_id>/round/start")
def start_round(room_id: str):
    ok = current_services().machine.start_round(room_id)
    return _outcome(room_id, ok, "cannot_start_round")


@bp.post("/rooms/<room_id>/turn/start")
def start_turn(room_id: str):
    services = current_services()
    ok = services.machine.start_turn(room_id, _payload().get("playerId"))
    if ok and services.clock is not None:
        services.clock.ensure_running(room_id)
    return _outcome(room_id, ok, "cannot_start_turn")


@bp.post("/rooms/<room_id>/turn/correct")
def correct_guess(room_id: str):
    card = current_services().machine.correct_guess(room_id, _payload().get("playerId"))
    if card is None:
        return _outcome(room_id, None, "no_active_card")
    return _outcome(room_id, True, "no_active_card", card=card.to_dict())


@bp.post("/rooms/<room_id>/turn/skip")
def skip_card(room_id: str):
    ok = current_services().machine.skip_card(room_id, _payload().get("playerId"))
    return _outcome(room_id, ok, "cannot_skip")


@bp.post("/rooms/<room_id>/turn/end")
def end_turn(room_id: str):
    ok = current_services().machine.end_turn(room_id, _payload().get("playerId"))
    return _outcome(room_id, ok, "cannot_end_turn")


@bp.post("/rooms/<room_id>/finish")
def finish_game(room_id: str):
    ok = current_services().machine.finish_game(room_id, str(_payload().get("playerId") or ""))
    return _outcome(room_id, ok, "cannot_finish")


@bp.get("/rooms/<room_id>/scores")
def scores(room_id: str):
    board = current_services().machine.scoreboard(room_id)
    if board is None:
        return jsonify({"error": "room_not_found"}), 404
    return jsonify(board)
