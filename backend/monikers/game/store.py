from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from threading import RLock
from typing import Callable, TypeVar

from ..realtime.events import RoomEvent, normalize_room_id
from .models import (
    Card,
    DeviceKind,
    GameState,
    Player,
    Room,
    Settings,
    Team,
    TOTAL_ROUNDS,
    now_ms,
)
from .snapshot import MemorySnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RoomStore:
    """Authoritative rooms for this process, mirrored to a local snapshot.

    Every public operation reloads the snapshot first and persists right after
    a mutation, so writes made by a reconciler are always visible. Mutations
    publish one full-room snapshot through the broadcaster once the lock is
    released.
    """

    def __init__(
        self,
        snapshot=None,
        broadcaster=None,
        now: Callable[[], int] = now_ms,
        create_debounce_ms: int = 300,
        default_settings: Settings | None = None,
    ):
        self._snapshot = snapshot if snapshot is not None else MemorySnapshot()
        self._broadcaster = broadcaster
        self._now = now
        self._create_debounce_ms = create_debounce_ms
        self._default_settings = default_settings or Settings()
        self._lock = RLock()
        self._rooms: dict[str, Room] = self._snapshot.load()
        # host name -> (room id, created at ms)
        self._last_created: dict[str, tuple[str, int]] = {}
        self._leave_handler: Callable[[Room, Player, int, bool], None] | None = None

    # -- plumbing --------------------------------------------------------

    def _reload(self) -> None:
        self._rooms = self._snapshot.load()

    def _persist(self) -> None:
        try:
            self._snapshot.save(self._rooms)
        except OSError:
            logger.exception("Failed to write room snapshot")

    def _publish(self, room_id: str, event: RoomEvent, snapshot: dict | None) -> None:
        if self._broadcaster is None:
            return
        self._broadcaster.publish(room_id, event, snapshot)

    def mutate(
        self,
        room_id: str,
        fn: Callable[[Room], T],
        event: RoomEvent | None = None,
    ) -> T | None:
        """Read-modify-write one room.

        ``fn`` returns ``None`` or ``False`` to reject; nothing is persisted or
        broadcast in that case. Backward ``gameState`` moves are rejected here
        for every caller.
        """
        code = normalize_room_id(room_id)
        with self._lock:
            self._reload()
            room = self._rooms.get(code)
            if room is None:
                logger.debug("mutate: room %s not found", code)
                return None

            before = room.game_state
            result = fn(room)
            if result is None or result is False:
                self._reload()
                return result
            if room.game_state.rank < before.rank:
                logger.warning("Rejected backward transition %s -> %s in room %s", before.value, room.game_state.value, code)
                self._reload()
                return None

            room.updated_at = self._now()
            self._persist()
            if event is None:
                event = RoomEvent.STATE if room.game_state is not before else RoomEvent.UPDATED
            snapshot = room.to_dict()

        self._publish(code, event, snapshot)
        return result

    def set_leave_handler(self, handler: Callable[[Room, Player, int, bool], None] | None) -> None:
        """Install the rule hook run inside ``leave_room`` on the remaining room.

        Called as ``handler(room, leaving_player, old_index, was_current)``
        before the room is persisted and published.
        """
        self._leave_handler = handler

    def _update(self, room_id: str, fn: Callable[[Room], bool | None], event: RoomEvent | None = None) -> bool:
        return bool(self.mutate(room_id, fn, event))

    # -- lifecycle -------------------------------------------------------

    def create_room(
        self,
        host_name: str,
        device_kind: DeviceKind = DeviceKind.DESKTOP,
        settings: Settings | None = None,
    ) -> Room:
        name = (host_name or "").strip()
        key = name.casefold()
        with self._lock:
            self._reload()
            now = self._now()

            # Absorb double submits from the same host.
            last = self._last_created.get(key)
            if last is not None and now - last[1] < self._create_debounce_ms and last[0] in self._rooms:
                logger.debug("create_room debounced for host %r -> %s", name, last[0])
                return self._rooms[last[0]]

            code = uuid.uuid4().hex[:8]
            while code in self._rooms:
                code = uuid.uuid4().hex[:8]

            host_id = str(uuid.uuid4())
            host = Player(
                id=host_id,
                name=name,
                is_host=True,
                device_kind=DeviceKind(device_kind),
                team=Team.TEAM1,
            )
            room = Room(
                id=code,
                host_id=host_id,
                players=[host],
                settings=replace(settings or self._default_settings),
                created_at=now,
                updated_at=now,
            )
            self._rooms[code] = room
            self._last_created = {
                name_key: entry
                for name_key, entry in self._last_created.items()
                if now - entry[1] < self._create_debounce_ms
            }
            self._last_created[key] = (code, now)
            self._persist()
            snapshot = room.to_dict()

        logger.info("Room %s created by %s", code, name)
        self._publish(code, RoomEvent.UPDATED, snapshot)
        return room

    def get_room(self, room_id: str) -> Room | None:
        with self._lock:
            self._reload()
            return self._rooms.get(normalize_room_id(room_id))

    def get_all_rooms(self) -> list[Room]:
        with self._lock:
            self._reload()
            return list(self._rooms.values())

    def join_room(
        self,
        room_id: str,
        name: str,
        device_kind: DeviceKind = DeviceKind.DESKTOP,
    ) -> Player | None:
        clean = (name or "").strip()
        if not clean:
            return None

        def _join(room: Room) -> Player | None:
            if room.game_state is not GameState.WAITING:
                return None
            if len(room.players) >= room.settings.player_count:
                return None
            if any(p.name.casefold() == clean.casefold() for p in room.players):
                return None
            player = Player(id=str(uuid.uuid4()), name=clean, device_kind=DeviceKind(device_kind))
            room.players.append(player)
            return player

        player = self.mutate(room_id, _join, RoomEvent.UPDATED)
        if player is not None:
            logger.info("%s joined room %s", clean, normalize_room_id(room_id))
        return player

    def leave_room(self, room_id: str, player_id: str) -> bool:
        code = normalize_room_id(room_id)
        with self._lock:
            self._reload()
            room = self._rooms.get(code)
            if room is None:
                return False
            idx = room.index_of(player_id)
            if idx < 0:
                return False

            was_current = idx == room.current_player_index
            leaving = room.players.pop(idx)
            if not room.players:
                del self._rooms[code]
                self._persist()
                event, snapshot = RoomEvent.DELETED, None
            else:
                before = room.game_state
                if idx < room.current_player_index:
                    room.current_player_index -= 1
                if room.current_player_index >= len(room.players):
                    room.current_player_index = 0
                room.player_timers.pop(player_id, None)
                room.player_skip_counts.pop(player_id, None)
                if room.host_id == player_id:
                    heir = room.players[0]
                    heir.is_host = True
                    heir.team = Team.TEAM1
                    room.host_id = heir.id
                    logger.info("Host of room %s passed to %s", code, heir.name)
                if self._leave_handler is not None:
                    self._leave_handler(room, leaving, idx, was_current)
                room.updated_at = self._now()
                self._persist()
                event = RoomEvent.STATE if room.game_state is not before else RoomEvent.UPDATED
                snapshot = room.to_dict()

        self._publish(code, event, snapshot)
        return True

    def delete_room(self, room_id: str) -> bool:
        code = normalize_room_id(room_id)
        with self._lock:
            self._reload()
            if code not in self._rooms:
                return False
            del self._rooms[code]
            self._persist()

        logger.info("Room %s deleted", code)
        self._publish(code, RoomEvent.DELETED, None)
        return True

    def sweep_idle(self, max_idle_ms: int) -> list[str]:
        """Delete rooms untouched for longer than ``max_idle_ms``."""
        with self._lock:
            self._reload()
            cutoff = self._now() - max_idle_ms
            stale = [code for code, room in self._rooms.items() if room.updated_at < cutoff]
        return [code for code in stale if self.delete_room(code)]

    # -- reconciliation --------------------------------------------------

    def apply_snapshot(self, room: Room | dict | None, reject_stale: bool = False) -> bool:
        """Install a full room snapshot received from elsewhere. Never broadcasts."""
        if room is None:
            return False
        if isinstance(room, dict):
            room = Room.from_dict(room)
        code = normalize_room_id(room.id)
        room.id = code
        with self._lock:
            self._reload()
            local = self._rooms.get(code)
            if reject_stale and local is not None and room.updated_at < local.updated_at:
                logger.debug("Dropped stale snapshot for %s (%s < %s)", code, room.updated_at, local.updated_at)
                return False
            self._rooms[code] = room
            self._persist()
        return True

    def discard(self, room_id: str) -> bool:
        """Forget a room locally without broadcasting."""
        code = normalize_room_id(room_id)
        with self._lock:
            self._reload()
            if self._rooms.pop(code, None) is None:
                return False
            self._persist()
        return True

    # -- teams -----------------------------------------------------------

    def assign_team_to_player(self, room_id: str, player_id: str, team: Team) -> bool:
        team = Team(team)

        def _assign(room: Room) -> bool | None:
            if room.game_state not in (GameState.WAITING, GameState.CARD_SELECTION):
                return None
            player = room.find_player(player_id)
            if player is None:
                return None
            if player.team is team:
                return True
            if room.team_count(team) >= room.max_team_size:
                return None
            player.team = team
            return True

        return self._update(room_id, _assign)

    def is_team_available(self, room_id: str, team: Team) -> bool:
        room = self.get_room(room_id)
        if room is None:
            return False
        return room.team_count(Team(team)) < room.max_team_size

    def get_available_teams(self, room_id: str) -> list[Team]:
        room = self.get_room(room_id)
        if room is None:
            return []
        return [t for t in Team if room.team_count(t) < room.max_team_size]

    def get_all_selected_cards(self, room_id: str) -> list[Card]:
        room = self.get_room(room_id)
        if room is None:
            return []
        return room.all_selected_cards()

    # -- field-level updates ---------------------------------------------

    def update_settings(
        self,
        room_id: str,
        player_count: int | None = None,
        cards_per_player: int | None = None,
    ) -> bool:
        def _settings(room: Room) -> bool | None:
            if room.game_state is not GameState.WAITING:
                return None
            if player_count is not None:
                if player_count < max(2, len(room.players)):
                    return None
                room.settings.player_count = player_count
            if cards_per_player is not None:
                if cards_per_player < 1:
                    return None
                room.settings.cards_per_player = cards_per_player
            return True

        return self._update(room_id, _settings)

    def update_game_state(self, room_id: str, game_state: GameState) -> bool:
        game_state = GameState(game_state)

        def _state(room: Room) -> bool | None:
            if game_state.rank <= room.game_state.rank:
                return None
            room.game_state = game_state
            return True

        return self._update(room_id, _state, RoomEvent.STATE)

    def update_player_cards(self, room_id: str, player_id: str, cards: list[Card]) -> bool:
        texts = [c.text for c in cards]

        def _cards(room: Room) -> bool | None:
            player = room.find_player(player_id)
            if player is None or len(set(texts)) != len(texts):
                return None
            held = {c.text for p in room.players if p.id != player_id for c in p.selected_cards}
            if held.intersection(texts):
                return None
            player.selected_cards = list(cards)
            return True

        return self._update(room_id, _cards)

    def update_current_player(self, room_id: str, player_index: int) -> bool:
        def _current(room: Room) -> bool | None:
            if not 0 <= player_index < len(room.players):
                return None
            room.current_player_index = player_index
            return True

        return self._update(room_id, _current)

    def update_scores(self, room_id: str, scores: dict[Team, dict[int, list[Card]]]) -> bool:
        """Replace scores; only extensions of the existing round lists are accepted."""

        def _scores(room: Room) -> bool | None:
            for team, rounds in room.scores.items():
                incoming = scores.get(team, {})
                for rnd, cards in rounds.items():
                    if list(incoming.get(rnd, []))[: len(cards)] != cards:
                        return None
            merged = {Team.TEAM1: {}, Team.TEAM2: {}}
            for team, rounds in scores.items():
                merged[Team(team)] = {int(rnd): list(cards) for rnd, cards in rounds.items()}
            room.scores = merged
            return True

        return self._update(room_id, _scores)

    def update_current_round(self, room_id: str, current_round: int) -> bool:
        def _round(room: Room) -> bool | None:
            if not 1 <= current_round <= TOTAL_ROUNDS:
                return None
            room.current_round = current_round
            return True

        return self._update(room_id, _round)

    def update_current_team(self, room_id: str, team: Team) -> bool:
        team = Team(team)

        def _team(room: Room) -> bool:
            room.current_team = team
            return True

        return self._update(room_id, _team)

    def update_timer(self, room_id: str, timer: int) -> bool:
        def _timer(room: Room) -> bool:
            room.timer = max(0, int(timer))
            return True

        return self._update(room_id, _timer)

    def update_round_status(self, room_id: str, is_round_active: bool, round_started: bool) -> bool:
        def _status(room: Room) -> bool:
            room.is_round_active = bool(is_round_active)
            room.round_started = bool(round_started)
            return True

        return self._update(room_id, _status)

    def update_used_cards(self, room_id: str, used_cards: list[str]) -> bool:
        def _used(room: Room) -> bool:
            room.used_cards = list(dict.fromkeys(used_cards))
            return True

        return self._update(room_id, _used)

    def update_current_card(self, room_id: str, current_card: Card | None) -> bool:
        def _card(room: Room) -> bool:
            room.current_card = current_card
            return True

        return self._update(room_id, _card)

    def update_player_timer(self, room_id: str, player_id: str, timer: int) -> bool:
        def _timer(room: Room) -> bool | None:
            if room.find_player(player_id) is None:
                return None
            room.player_timers[player_id] = int(timer)
            return True

        return self._update(room_id, _timer)

    def update_player_skip_count(self, room_id: str, player_id: str, skip_count: int) -> bool:
        def _skips(room: Room) -> bool | None:
            if room.find_player(player_id) is None or skip_count < 0:
                return None
            room.player_skip_counts[player_id] = int(skip_count)
            return True

        return self._update(room_id, _skips)

    def update_turn_started(self, room_id: str, turn_started: bool) -> bool:
        def _turn(room: Room) -> bool:
            room.turn_started = bool(turn_started)
            return True

        return self._update(room_id, _turn)
