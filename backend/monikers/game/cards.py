from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .models import Card, Room

logger = logging.getLogger(__name__)

DEFAULT_CARDS_PATH = Path(__file__).resolve().parents[1] / "data" / "cards.json"

LEVELS = (1, 2, 3, 4)


@dataclass(frozen=True)
class CatalogCard:
    word: str
    description: str
    level: int

    def to_dict(self) -> dict:
        return {"word": self.word, "description": self.description, "level": self.level}


class CardCatalog:
    """Read-only word list keyed by word."""

    def __init__(self, entries: list[CatalogCard]):
        self._entries = list(entries)
        self._by_word = {c.word: c for c in self._entries}

    @classmethod
    def from_json(cls, path: str | Path) -> CardCatalog:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        entries = []
        for item in raw:
            word = str(item.get("word", "")).strip()
            if not word:
                continue
            level = int(item.get("level") or 1)
            entries.append(CatalogCard(word=word, description=item.get("description", ""), level=level))
        logger.info("Loaded %d cards from %s", len(entries), path)
        return cls(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CatalogCard]:
        return iter(self._entries)

    def __contains__(self, word: object) -> bool:
        return word in self._by_word

    def get(self, word: str) -> CatalogCard | None:
        return self._by_word.get(word)

    def make_card(self, word: str, source_round: int = 1) -> Card:
        entry = self._by_word.get(word)
        if entry is None:
            return Card(id=word, text=word, source_round=source_round, description=f"Describe: {word}", level=1)
        return Card(
            id=entry.word,
            text=entry.word,
            source_round=source_round,
            description=entry.description,
            level=entry.level,
        )

    def deal_options(self, room: Room, player_id: str, count: int | None = None) -> list[CatalogCard]:
        """Offer a level-balanced, per-player stable set of words nobody holds yet."""
        if count is None:
            count = room.settings.cards_per_player + 2
        taken = {c.text for c in room.all_selected_cards()}
        free = [c for c in self._entries if c.word not in taken]

        rng = random.Random(player_id)
        by_level = {}
        for level in LEVELS:
            bucket = [c for c in free if c.level == level]
            rng.shuffle(bucket)
            by_level[level] = bucket

        result: list[CatalogCard] = []
        longest = max((len(b) for b in by_level.values()), default=0)
        for i in range(longest):
            for level in LEVELS:
                bucket = by_level[level]
                if i < len(bucket):
                    result.append(bucket[i])
        return result[:count]


def load_catalog(path: str | Path | None = None) -> CardCatalog:
    return CardCatalog.from_json(path or DEFAULT_CARDS_PATH)
