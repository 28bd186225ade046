from __future__ import annotations

import logging
import os
import sys

from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
from werkzeug.middleware.proxy_fix import ProxyFix

from .config import Config
from .context import EXTENSION_KEY, Services
from .game.cards import load_catalog
from .game.models import Settings
from .game.rules import RoomStateMachine
from .game.snapshot import open_snapshot
from .game.store import RoomStore
from .realtime.broadcaster import Broadcaster, SocketIOBus
from .realtime.handlers import register_socketio_handlers
from .realtime.tasks import RoomSweeper, TurnClock
from .routes.broadcast import bp as broadcast_bp
from .routes.cards import bp as cards_bp
from .routes.events import bp as events_bp
from .routes.health import bp as health_bp
from .routes.rooms import bp as rooms_bp

logger = logging.getLogger(__name__)


def _async_mode() -> str:
    env_async_mode = os.environ.get("SOCKETIO_ASYNC_MODE", "").strip()
    if env_async_mode:
        return env_async_mode
    # eventlet misbehaves on Windows and on Python >= 3.13
    if sys.platform.startswith("win") or sys.version_info >= (3, 13):
        return "threading"
    return "eventlet"


def create_app(config_class=Config) -> tuple[Flask, SocketIO]:
    app = Flask(__name__)
    app.config.from_object(config_class)

    if app.config.get("TRUST_PROXY_HEADERS", False):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    cors_origins = app.config.get("CORS_ORIGINS", "*")
    CORS(app, resources={r"/api/*": {"origins": cors_origins}})

    socketio = SocketIO(
        app,
        cors_allowed_origins=cors_origins,
        async_mode=app.config.get("SOCKETIO_ASYNC_MODE") or _async_mode(),
    )

    broadcaster = Broadcaster(SocketIOBus(socketio))
    store = RoomStore(
        snapshot=open_snapshot(app.config.get("SNAPSHOT_PATH"), app.config.get("SNAPSHOT_NAMESPACE", "monikers_rooms")),
        broadcaster=broadcaster,
        create_debounce_ms=app.config.get("CREATE_DEBOUNCE_MS", 300),
        default_settings=Settings(),
    )
    catalog = load_catalog(app.config.get("CARDS_PATH") or None)
    machine = RoomStateMachine(
        store,
        catalog=catalog,
        turn_duration_sec=app.config.get("TURN_DURATION_SEC", 60),
        max_skips=app.config.get("MAX_SKIPS_PER_TURN", 2),
        total_rounds=app.config.get("TOTAL_ROUNDS", 3),
    )

    clock = TurnClock(socketio, machine, store) if app.config.get("TURN_CLOCK_ENABLED", True) else None
    app.extensions[EXTENSION_KEY] = Services(
        store=store,
        machine=machine,
        catalog=catalog,
        broadcaster=broadcaster,
        clock=clock,
    )

    app.register_blueprint(health_bp, url_prefix="/api")
    app.register_blueprint(rooms_bp, url_prefix="/api")
    app.register_blueprint(cards_bp, url_prefix="/api")
    app.register_blueprint(broadcast_bp, url_prefix="/api")
    app.register_blueprint(events_bp, url_prefix="/api")

    register_socketio_handlers(socketio)

    RoomSweeper(socketio, store, app.config.get("ROOM_IDLE_TTL_SEC", 0)).start()

    logger.info("Monikers coordinator ready (%d cards, snapshot %s)", len(catalog), app.config.get("SNAPSHOT_PATH") or "memory")
    return app, socketio
