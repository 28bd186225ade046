from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


TOTAL_ROUNDS = 3


def now_ms() -> int:
    return int(time.time() * 1000)


class GameState(str, Enum):
    WAITING = "waiting"
    CARD_SELECTION = "card-selection"
    PLAYING = "playing"
    FINISHED = "finished"

    @property
    def rank(self) -> int:
        return _STATE_ORDER.index(self)


_STATE_ORDER = [
    GameState.WAITING,
    GameState.CARD_SELECTION,
    GameState.PLAYING,
    GameState.FINISHED,
]


class Team(str, Enum):
    TEAM1 = "team1"
    TEAM2 = "team2"

    @property
    def other(self) -> Team:
        return Team.TEAM2 if self is Team.TEAM1 else Team.TEAM1


class DeviceKind(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"


def _team_or_none(raw: Any) -> Team | None:
    if raw in (None, ""):
        return None
    return Team(raw)


@dataclass(frozen=True)
class Card:
    id: str
    text: str
    source_round: int = 1
    description: str = ""
    level: int = 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "sourceRound": self.source_round,
            "description": self.description,
            "level": self.level,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Card:
        text = data.get("text") or data.get("id") or ""
        return cls(
            id=data.get("id") or text,
            text=text,
            source_round=int(data.get("sourceRound", data.get("round", 1)) or 1),
            description=data.get("description", "") or "",
            level=int(data.get("level") or 1),
        )


@dataclass
class Player:
    id: str
    name: str
    is_host: bool = False
    device_kind: DeviceKind = DeviceKind.DESKTOP
    team: Team | None = None
    selected_cards: list[Card] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "isHost": self.is_host,
            "deviceType": self.device_kind.value,
            "team": self.team.value if self.team else None,
            "selectedCards": [c.to_dict() for c in self.selected_cards],
        }

    @classmethod
    def from_dict(cls, data: dict) -> Player:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            is_host=bool(data.get("isHost", False)),
            device_kind=DeviceKind(data.get("deviceType") or DeviceKind.DESKTOP.value),
            team=_team_or_none(data.get("team")),
            selected_cards=[Card.from_dict(c) for c in data.get("selectedCards") or []],
        )


@dataclass
class Settings:
    player_count: int = 4
    cards_per_player: int = 5

    def to_dict(self) -> dict:
        return {"playerCount": self.player_count, "cardsPerPlayer": self.cards_per_player}

    @classmethod
    def from_dict(cls, data: dict) -> Settings:
        return cls(
            player_count=int(data.get("playerCount", data.get("players", 4))),
            cards_per_player=int(data.get("cardsPerPlayer", 5)),
        )


def empty_scores() -> dict[Team, dict[int, list[Card]]]:
    return {Team.TEAM1: {}, Team.TEAM2: {}}


@dataclass
class Room:
    id: str
    host_id: str
    players: list[Player] = field(default_factory=list)
    game_state: GameState = GameState.WAITING
    settings: Settings = field(default_factory=Settings)
    current_round: int = 1
    scores: dict[Team, dict[int, list[Card]]] = field(default_factory=empty_scores)
    current_team: Team = Team.TEAM1
    current_player_index: int = 0
    used_cards: list[str] = field(default_factory=list)
    current_card: Card | None = None
    timer: int = 0
    player_timers: dict[str, int] = field(default_factory=dict)
    player_skip_counts: dict[str, int] = field(default_factory=dict)
    turn_started: bool = False
    is_round_active: bool = False
    round_started: bool = False
    # Draw order of card ids for the current round; skip moves an id to the tail.
    deck_order: list[str] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    def find_player(self, player_id: str) -> Player | None:
        for p in self.players:
            if p.id == player_id:
                return p
        return None

    def index_of(self, player_id: str) -> int:
        for idx, p in enumerate(self.players):
            if p.id == player_id:
                return idx
        return -1

    @property
    def current_player(self) -> Player | None:
        if 0 <= self.current_player_index < len(self.players):
            return self.players[self.current_player_index]
        return None

    def team_members(self, team: Team) -> list[Player]:
        return [p for p in self.players if p.team is team]

    def team_count(self, team: Team) -> int:
        return len(self.team_members(team))

    @property
    def max_team_size(self) -> int:
        return -(-len(self.players) // 2)

    def timer_for(self, player_id: str, default: int) -> int:
        return self.player_timers.get(player_id, default)

    def skips_for(self, player_id: str) -> int:
        return self.player_skip_counts.get(player_id, 0)

    def all_selected_cards(self) -> list[Card]:
        cards: list[Card] = []
        for p in self.players:
            cards.extend(p.selected_cards)
        return cards

    def card_owner(self, card_id: str) -> Player | None:
        for p in self.players:
            if any(c.id == card_id for c in p.selected_cards):
                return p
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "hostId": self.host_id,
            "players": [p.to_dict() for p in self.players],
            "gameState": self.game_state.value,
            "settings": self.settings.to_dict(),
            "currentRound": self.current_round,
            "scores": {
                team.value: {str(rnd): [c.to_dict() for c in cards] for rnd, cards in rounds.items()}
                for team, rounds in self.scores.items()
            },
            "currentTeam": self.current_team.value,
            "currentPlayerIndex": self.current_player_index,
            "usedCards": list(self.used_cards),
            "currentCard": self.current_card.to_dict() if self.current_card else None,
            "timer": self.timer,
            "playerTimers": dict(self.player_timers),
            "playerSkipCounts": dict(self.player_skip_counts),
            "turnStarted": self.turn_started,
            "isRoundActive": self.is_round_active,
            "roundStarted": self.round_started,
            "deckOrder": list(self.deck_order),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Room:
        scores = empty_scores()
        for team_raw, rounds in (data.get("scores") or {}).items():
            scores[Team(team_raw)] = {
                int(rnd): [Card.from_dict(c) for c in cards] for rnd, cards in (rounds or {}).items()
            }
        current = data.get("currentCard")
        return cls(
            id=data["id"],
            host_id=data.get("hostId", ""),
            players=[Player.from_dict(p) for p in data.get("players") or []],
            game_state=GameState(data.get("gameState") or GameState.WAITING.value),
            settings=Settings.from_dict(data.get("settings") or {}),
            current_round=int(data.get("currentRound") or 1),
            scores=scores,
            current_team=Team(data.get("currentTeam") or Team.TEAM1.value),
            current_player_index=int(data.get("currentPlayerIndex") or 0),
            used_cards=list(data.get("usedCards") or []),
            current_card=Card.from_dict(current) if current else None,
            timer=int(data.get("timer") or 0),
            player_timers={k: int(v) for k, v in (data.get("playerTimers") or {}).items()},
            player_skip_counts={k: int(v) for k, v in (data.get("playerSkipCounts") or {}).items()},
            turn_started=bool(data.get("turnStarted", False)),
            is_round_active=bool(data.get("isRoundActive", False)),
            round_started=bool(data.get("roundStarted", False)),
            deck_order=list(data.get("deckOrder") or []),
            created_at=int(data.get("createdAt") or 0),
            updated_at=int(data.get("updatedAt") or 0),
        )
