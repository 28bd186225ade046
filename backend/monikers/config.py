import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev")

    # CORS
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")

    # Reverse proxy headers
    TRUST_PROXY_HEADERS = os.environ.get("TRUST_PROXY_HEADERS", "1") == "1"

    # Storage (empty path keeps the snapshot in memory)
    SNAPSHOT_PATH = os.environ.get("SNAPSHOT_PATH", "")
    SNAPSHOT_NAMESPACE = os.environ.get("SNAPSHOT_NAMESPACE", "monikers_rooms")
    CARDS_PATH = os.environ.get("CARDS_PATH", "")

    # Game
    TURN_DURATION_SEC = int(os.environ.get("TURN_DURATION_SEC", "60"))
    MAX_SKIPS_PER_TURN = int(os.environ.get("MAX_SKIPS_PER_TURN", "2"))
    TOTAL_ROUNDS = int(os.environ.get("TOTAL_ROUNDS", "3"))
    CREATE_DEBOUNCE_MS = int(os.environ.get("CREATE_DEBOUNCE_MS", "300"))
    TURN_CLOCK_ENABLED = os.environ.get("TURN_CLOCK_ENABLED", "1") == "1"
    ROOM_IDLE_TTL_SEC = int(os.environ.get("ROOM_IDLE_TTL_SEC", "0"))

    # Realtime
    STREAM_POLL_INTERVAL_SEC = float(os.environ.get("STREAM_POLL_INTERVAL_SEC", "1"))
    RECONNECT_DELAY_SEC = float(os.environ.get("RECONNECT_DELAY_SEC", "2"))
    POLL_INTERVAL_SEC = float(os.environ.get("POLL_INTERVAL_SEC", "1"))
    ROOM_OBSERVER = os.environ.get("ROOM_OBSERVER", "push")
    REJECT_STALE_SNAPSHOTS = os.environ.get("REJECT_STALE_SNAPSHOTS", "0") == "1"
    RECONCILE_RELAYED = os.environ.get("RECONCILE_RELAYED", "1") == "1"
    SERVER_URL = os.environ.get("SERVER_URL", "http://localhost:5000")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
