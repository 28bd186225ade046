import os
import sys

import pytest

# Ensure the backend root (containing the `monikers` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from monikers.context import EXTENSION_KEY
from monikers.game.cards import load_catalog
from monikers.game.rules import RoomStateMachine
from monikers.game.snapshot import MemorySnapshot
from monikers.game.store import RoomStore
from monikers.realtime.broadcaster import Broadcaster
from monikers.server import create_app


class TestConfig:
    TESTING = True
    SECRET_KEY = 'test-secret'
    CORS_ORIGINS = '*'
    TRUST_PROXY_HEADERS = False
    SOCKETIO_ASYNC_MODE = 'threading'
    SNAPSHOT_PATH = ''
    SNAPSHOT_NAMESPACE = 'monikers_rooms'
    CARDS_PATH = ''
    TURN_DURATION_SEC = 60
    MAX_SKIPS_PER_TURN = 2
    TOTAL_ROUNDS = 3
    CREATE_DEBOUNCE_MS = 300
    TURN_CLOCK_ENABLED = False
    ROOM_IDLE_TTL_SEC = 0
    STREAM_POLL_INTERVAL_SEC = 0.01
    RECONCILE_RELAYED = True
    REJECT_STALE_SNAPSHOTS = False


class FakeClock:
    def __init__(self, start=1_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class RecordingBus:
    def __init__(self):
        self.messages = []
        self.fail = False

    def publish(self, channel, event, data):
        if self.fail:
            raise ConnectionError('bus down')
        self.messages.append((channel, event, data))

    def events(self):
        return [event for _, event, _ in self.messages]

    def clear(self):
        self.messages.clear()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def bus():
    return RecordingBus()


@pytest.fixture()
def store(bus, clock):
    return RoomStore(snapshot=MemorySnapshot(), broadcaster=Broadcaster(bus), now=clock)


@pytest.fixture(scope='session')
def catalog():
    return load_catalog()


@pytest.fixture()
def machine(store, catalog):
    return RoomStateMachine(store, catalog=catalog, turn_duration_sec=3, max_skips=2)


@pytest.fixture()
def lobby(store, machine):
    """Build a waiting room: the host plus joined players, teams assigned in order."""

    def _build(names=('Alice', 'Bob'), teams=None, cards_per_player=1):
        from monikers.game.models import Settings

        room = store.create_room(names[0], settings=Settings(player_count=len(names), cards_per_player=cards_per_player))
        ids = [room.host_id]
        for name in names[1:]:
            ids.append(store.join_room(room.id, name).id)
        for pid, team in zip(ids, teams or ()):
            assert machine.choose_team(room.id, pid, team)
        return room.id, ids

    return _build


@pytest.fixture()
def playing_room(lobby, machine):
    """A room in `playing` with every player's cards confirmed."""

    def _build(hands, teams, names=None):
        names = names or tuple(f'P{i}' for i in range(len(hands)))
        room_id, ids = lobby(names, teams=teams, cards_per_player=len(hands[0]))
        assert machine.start_card_selection(room_id, ids[0])
        for pid, words in zip(ids, hands):
            assert machine.select_cards(room_id, pid, list(words))
        return room_id, ids

    return _build


@pytest.fixture()
def flask_app():
    application, _ = create_app(TestConfig)
    with application.app_context():
        yield application


@pytest.fixture()
def app_socketio(flask_app):
    return flask_app.extensions['socketio']


@pytest.fixture()
def services(flask_app):
    return flask_app.extensions[EXTENSION_KEY]


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app, app_socketio):
    test_client = app_socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
    )
    yield test_client
    try:
        test_client.disconnect()
    except Exception:
        pass
