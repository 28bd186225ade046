from __future__ import annotations

import logging
from dataclasses import replace

from .cards import CardCatalog
from .models import Card, GameState, Player, Room, Team, TOTAL_ROUNDS
from .store import RoomStore

logger = logging.getLogger(__name__)


# ---- helpers over a Room ---------------------------------------------------


def build_deck_order(room: Room) -> list[str]:
    return [c.id for p in room.players for c in p.selected_cards]


def droppable_pool(room: Room) -> list[str]:
    """Card ids the active team can still be served, in draw order."""
    if not room.deck_order:
        room.deck_order = build_deck_order(room)
    used = set(room.used_cards)
    owners = {c.id: p.team for p in room.players for c in p.selected_cards}
    return [cid for cid in room.deck_order if owners.get(cid) is room.current_team and cid not in used]


def find_card(room: Room, card_id: str) -> Card | None:
    for p in room.players:
        for c in p.selected_cards:
            if c.id == card_id:
                return c
    return None


def is_round_complete(room: Room) -> bool:
    selected = {c.id for c in room.all_selected_cards()}
    return bool(selected) and selected.issubset(room.used_cards)


def first_index_of(room: Room, team: Team) -> int:
    for idx, p in enumerate(room.players):
        if p.team is team:
            return idx
    return -1


def team_round_score(room: Room, team: Team, round_no: int) -> int:
    return sum(c.level or 1 for c in room.scores.get(team, {}).get(round_no, []))


def team_card_count(room: Room, team: Team, round_no: int) -> int:
    return len(room.scores.get(team, {}).get(round_no, []))


def total_team_score(room: Room, team: Team) -> int:
    return sum(team_round_score(room, team, rnd) for rnd in range(1, TOTAL_ROUNDS + 1))


def winner(room: Room) -> Team | None:
    """Team with the strictly higher total, or None on a tie."""
    t1 = total_team_score(room, Team.TEAM1)
    t2 = total_team_score(room, Team.TEAM2)
    if t1 > t2:
        return Team.TEAM1
    if t2 > t1:
        return Team.TEAM2
    return None


def skips_remaining(room: Room, player_id: str, max_skips: int) -> int:
    return max(0, max_skips - room.skips_for(player_id))


def fill_missing_teams(room: Room) -> None:
    # Manual choices stand; unassigned players go to the smaller team.
    for p in room.players:
        if p.team is None:
            t1 = room.team_count(Team.TEAM1)
            t2 = room.team_count(Team.TEAM2)
            p.team = Team.TEAM2 if t2 < t1 else Team.TEAM1


# ---- state machine ---------------------------------------------------------


class RoomStateMachine:
    """Turn, round and scoring rules layered on a RoomStore.

    Every action is one store mutation: a rejected rule returns False or None
    and leaves the room untouched.
    """

    def __init__(
        self,
        store: RoomStore,
        catalog: CardCatalog | None = None,
        turn_duration_sec: int = 60,
        max_skips: int = 2,
        total_rounds: int = TOTAL_ROUNDS,
    ):
        self.store = store
        self.catalog = catalog
        self.turn_duration_sec = turn_duration_sec
        self.max_skips = max_skips
        self.total_rounds = total_rounds
        store.set_leave_handler(self._on_player_left)

    def _is_current(self, room: Room, player_id: str | None) -> bool:
        current = room.current_player
        if current is None:
            return False
        return player_id is None or current.id == player_id

    def _start_play_if_ready(self, room: Room) -> bool:
        wanted = room.settings.cards_per_player
        if not room.players or not all(len(p.selected_cards) == wanted for p in room.players):
            return False
        room.game_state = GameState.PLAYING
        room.current_round = 1
        room.current_team = Team.TEAM1
        room.current_player_index = max(0, first_index_of(room, Team.TEAM1))
        logger.info("Room %s: every player is ready, game starts", room.id)
        return True

    def _pass_turn(self, room: Room, start: int) -> None:
        """Hand the turn to the first current-team member at or after ``start``.

        Past the team's last member the other team's first player takes over,
        or the current team wraps when the other team is empty.
        """
        team = room.current_team
        members = [i for i, p in enumerate(room.players) if p.team is team]
        later = [i for i in members if i >= start]
        if later:
            room.current_player_index = later[0]
            return
        others = [i for i, p in enumerate(room.players) if p.team is team.other]
        if others:
            room.current_team = team.other
            room.current_player_index = others[0]
        elif members:
            room.current_player_index = members[0]

    def _on_player_left(self, room: Room, player: Player, index: int, was_current: bool) -> None:
        if room.game_state is GameState.CARD_SELECTION:
            self._start_play_if_ready(room)
            return
        if room.game_state is not GameState.PLAYING:
            return

        full = self.turn_duration_sec
        current = room.current_player
        passed = was_current or current is None or current.team is not room.current_team
        if passed:
            room.turn_started = False
            self._pass_turn(room, index if was_current else room.current_player_index)
            nxt = room.current_player
            room.timer = room.timer_for(nxt.id, full) if nxt else full
            logger.info("Room %s: %s left, turn passes on", room.id, player.name)

        if not room.is_round_active:
            return
        if is_round_complete(room):
            self._complete_round(room)
        elif passed or room.current_card is None or room.card_owner(room.current_card.id) is None:
            self._draw(room)

    def _draw(self, room: Room) -> None:
        pool = droppable_pool(room)
        card = find_card(room, pool[0]) if pool else None
        room.current_card = replace(card, source_round=room.current_round) if card else None

    # -- lobby -------------------------------------------------------------

    def choose_team(self, room_id: str, player_id: str, team: Team) -> bool:
        return self.store.assign_team_to_player(room_id, player_id, team)

    def start_card_selection(self, room_id: str, player_id: str) -> bool:
        def _start(room: Room) -> bool | None:
            if room.game_state is not GameState.WAITING:
                return None
            if room.host_id != player_id or len(room.players) < 2:
                return None
            fill_missing_teams(room)
            room.game_state = GameState.CARD_SELECTION
            room.current_player_index = 0
            return True

        return bool(self.store.mutate(room_id, _start))

    def select_cards(self, room_id: str, player_id: str, words: list[str]) -> bool:
        """Confirm a player's card choice; the last confirmation starts play."""
        words = [(w or "").strip() for w in words]

        def _select(room: Room) -> bool | None:
            if room.game_state is not GameState.CARD_SELECTION:
                return None
            player = room.find_player(player_id)
            if player is None:
                return None
            wanted = room.settings.cards_per_player
            if len(words) != wanted or len(set(words)) != len(words) or not all(words):
                return None
            if self.catalog is not None and any(w not in self.catalog for w in words):
                return None
            held = {c.text for p in room.players if p.id != player_id for c in p.selected_cards}
            if held.intersection(words):
                return None

            if self.catalog is not None:
                player.selected_cards = [self.catalog.make_card(w) for w in words]
            else:
                player.selected_cards = [Card(id=w, text=w) for w in words]

            self._start_play_if_ready(room)
            return True

        return bool(self.store.mutate(room_id, _select))

    # -- rounds and turns --------------------------------------------------

    def start_round(self, room_id: str) -> bool:
        def _start(room: Room) -> bool | None:
            if room.game_state is not GameState.PLAYING or room.is_round_active:
                return None
            if not room.all_selected_cards():
                return None
            room.deck_order = build_deck_order(room)
            room.used_cards = []
            room.current_team = Team.TEAM1
            first = first_index_of(room, Team.TEAM1)
            if first < 0:
                room.current_team = Team.TEAM2
                first = first_index_of(room, Team.TEAM2)
            room.current_player_index = max(0, first)
            room.is_round_active = True
            room.round_started = True
            room.turn_started = False
            room.timer = self.turn_duration_sec
            self._draw(room)
            return True

        return bool(self.store.mutate(room_id, _start))

    def start_turn(self, room_id: str, player_id: str | None = None) -> bool:
        full = self.turn_duration_sec

        def _start(room: Room) -> bool | None:
            if not room.is_round_active or room.turn_started:
                return None
            if not self._is_current(room, player_id):
                return None
            current = room.current_player
            if room.timer_for(current.id, full) <= 0:
                room.player_timers[current.id] = full
            else:
                room.player_timers[current.id] = room.timer_for(current.id, full)
            room.player_skip_counts[current.id] = 0
            room.turn_started = True
            room.timer = room.player_timers[current.id]
            if room.current_card is None:
                self._draw(room)
            return True

        return bool(self.store.mutate(room_id, _start))

    def correct_guess(self, room_id: str, player_id: str | None = None) -> Card | None:
        def _correct(room: Room) -> Card | None:
            if not room.is_round_active or not room.turn_started:
                return None
            if room.current_card is None or not self._is_current(room, player_id):
                return None
            card = room.current_card
            if card.id in room.used_cards:
                return None

            room.used_cards.append(card.id)
            room.scores.setdefault(room.current_team, {}).setdefault(room.current_round, []).append(card)
            room.player_skip_counts[room.current_player.id] = 0

            if is_round_complete(room):
                self._complete_round(room)
            else:
                self._draw(room)
            return card

        return self.store.mutate(room_id, _correct)

    def skip_card(self, room_id: str, player_id: str | None = None) -> bool:
        def _skip(room: Room) -> bool | None:
            if not room.turn_started or room.current_card is None:
                return None
            if not self._is_current(room, player_id):
                return None
            current = room.current_player
            skips = room.skips_for(current.id)
            if skips >= self.max_skips:
                return None

            card_id = room.current_card.id
            if not room.deck_order:
                room.deck_order = build_deck_order(room)
            if card_id in room.deck_order:
                room.deck_order.remove(card_id)
                room.deck_order.append(card_id)
            room.player_skip_counts[current.id] = skips + 1
            self._draw(room)
            return True

        return bool(self.store.mutate(room_id, _skip))

    def end_turn(self, room_id: str, player_id: str | None = None) -> bool:
        def _end(room: Room) -> bool | None:
            if not room.is_round_active or not self._is_current(room, player_id):
                return None
            self._rotate(room)
            return True

        return bool(self.store.mutate(room_id, _end))

    def tick(self, room_id: str) -> int | None:
        """Count the active player's clock down one second."""
        full = self.turn_duration_sec

        def _tick(room: Room) -> int | None:
            if room.game_state is not GameState.PLAYING:
                return None
            if not room.is_round_active or not room.turn_started:
                return None
            current = room.current_player
            if current is None:
                return None
            remaining = room.timer_for(current.id, full) - 1
            if remaining <= 0:
                logger.info("Room %s: time is up for %s", room.id, current.name)
                self._rotate(room)
                return 0
            room.player_timers[current.id] = remaining
            room.timer = remaining
            return remaining

        return self.store.mutate(room_id, _tick)

    def finish_game(self, room_id: str, player_id: str) -> bool:
        def _finish(room: Room) -> bool | None:
            if room.host_id != player_id or room.game_state is GameState.FINISHED:
                return None
            self._finish(room)
            return True

        return bool(self.store.mutate(room_id, _finish))

    def _rotate(self, room: Room) -> None:
        full = self.turn_duration_sec
        current = room.current_player
        if current is not None:
            room.player_timers[current.id] = full
        room.turn_started = False

        self._pass_turn(room, room.current_player_index + 1)

        nxt = room.current_player
        room.timer = room.timer_for(nxt.id, full) if nxt else full

        if is_round_complete(room):
            self._complete_round(room)
        else:
            self._draw(room)

    def _complete_round(self, room: Room) -> None:
        if room.current_round >= self.total_rounds:
            self._finish(room)
            logger.info("Room %s: final round complete", room.id)
            return

        room.current_round += 1
        room.used_cards = []
        room.deck_order = []
        room.current_team = Team.TEAM1
        room.current_player_index = max(0, first_index_of(room, Team.TEAM1))
        room.is_round_active = False
        room.round_started = False
        room.turn_started = False
        room.current_card = None
        room.player_timers = {}
        room.player_skip_counts = {}
        room.timer = self.turn_duration_sec
        logger.info("Room %s: advancing to round %d", room.id, room.current_round)

    def _finish(self, room: Room) -> None:
        room.game_state = GameState.FINISHED
        room.is_round_active = False
        room.round_started = False
        room.turn_started = False
        room.current_card = None

    # -- read side ---------------------------------------------------------

    def total_team_score(self, room_id: str, team: Team) -> int:
        room = self.store.get_room(room_id)
        if room is None:
            return 0
        return total_team_score(room, Team(team))

    def scoreboard(self, room_id: str) -> dict | None:
        room = self.store.get_room(room_id)
        if room is None:
            return None
        rounds = range(1, self.total_rounds + 1)
        top = winner(room)
        return {
            "roomId": room.id,
            "gameState": room.game_state.value,
            "currentRound": room.current_round,
            "teams": {
                team.value: {
                    "rounds": {
                        str(rnd): {
                            "score": team_round_score(room, team, rnd),
                            "cards": team_card_count(room, team, rnd),
                        }
                        for rnd in rounds
                    },
                    "total": total_team_score(room, team),
                }
                for team in Team
            },
            "winner": top.value if top else None,
        }
