"""
backend/pitchside/config.py

Purpose:
    Central settings loading for backend services.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str
    MONGO_DB: str = "pitchside"
    JWT_SECRET: str
    JWT_SECRET_OLD: str = ""  # Set during rotation; cleared once old sessions expired
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"
    COOKIE_SECURE: bool = False  # Set True in production (HTTPS)

    # Sessions
    SESSION_EXPIRE_HOURS: int = 12

    # Match lifecycle
    MVP_VOTING_WINDOW_HOURS: int = 24
    EVENT_MINUTE_GRACE: int = 30  # extra minutes allowed past regulation time
    SLOT_DEFAULT_OPENING_HOUR: int = 8
    SLOT_DEFAULT_CLOSING_HOUR: int = 23

    # Stale challenge sweeper
    CHALLENGE_SWEEPER_ENABLED: bool = True
    CHALLENGE_SWEEPER_INTERVAL_MINUTES: int = 30

    # Event bus (in-process)
    EVENT_BUS_ENABLED: bool = True
    EVENT_BUS_INGRESS_QUEUE_MAXSIZE: int = 10000
    EVENT_BUS_HANDLER_QUEUE_MAXSIZE: int = 2000
    EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY: int = 1
    EVENT_BUS_ERROR_BUFFER_SIZE: int = 200
    EVENT_HANDLER_WS_BROADCAST_ENABLED: bool = True

    # WebSocket realtime stream
    WS_EVENTS_ENABLED: bool = True
    WS_HEARTBEAT_SECONDS: int = 30
    WS_MAX_CONNECTIONS: int = 500

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
