from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from .game.cards import CardCatalog
from .game.rules import RoomStateMachine
from .game.store import RoomStore
from .realtime.broadcaster import Broadcaster

EXTENSION_KEY = "monikers"


@dataclass
class Services:
    store: RoomStore
    machine: RoomStateMachine
    catalog: CardCatalog
    broadcaster: Broadcaster
    clock: object | None = None


def current_services() -> Services:
    return current_app.extensions[EXTENSION_KEY]
