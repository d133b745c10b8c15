# app/settings.py
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel
import os


class Settings(BaseModel):
    APP_NAME: str = "partyroom-server"

    # Room store: "memory" (single process) or "redis"
    ROOM_STORE: Literal["memory", "redis"] = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    ROOM_TTL_SEC: int = 1800
    REAP_INTERVAL_SEC: int = 60

    # Rooms
    AUTO_CREATE_ON_JOIN: bool = True
    DEFAULT_GAME: str = "MARBLE"

    # Engine / fan-out
    TICK_INTERVAL_SEC: float = 1.0
    SUBSCRIBER_QUEUE_SIZE: int = 256

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Dev
    LOG_LEVEL: str = "INFO"

    # WebSocket origin policy (comma-separated)
    WS_ALLOWED_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000,null"
    # Dev helper: allow any private LAN IP on port 3000
    WS_ALLOW_LAN_ORIGINS: bool = True


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "y", "on")


def get_settings() -> Settings:
    return Settings(
        APP_NAME=os.getenv("APP_NAME", "partyroom-server"),
        ROOM_STORE=os.getenv("ROOM_STORE", "memory"),
        REDIS_URL=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        ROOM_TTL_SEC=int(os.getenv("ROOM_TTL_SEC", "1800")),
        REAP_INTERVAL_SEC=int(os.getenv("REAP_INTERVAL_SEC", "60")),
        AUTO_CREATE_ON_JOIN=_flag("AUTO_CREATE_ON_JOIN", "true"),
        DEFAULT_GAME=os.getenv("DEFAULT_GAME", "MARBLE"),
        TICK_INTERVAL_SEC=float(os.getenv("TICK_INTERVAL_SEC", "1.0")),
        SUBSCRIBER_QUEUE_SIZE=int(os.getenv("SUBSCRIBER_QUEUE_SIZE", "256")),
        HOST=os.getenv("HOST", "0.0.0.0"),
        PORT=int(os.getenv("PORT", "8000")),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        WS_ALLOWED_ORIGINS=os.getenv(
            "WS_ALLOWED_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000,null",
        ),
        WS_ALLOW_LAN_ORIGINS=_flag("WS_ALLOW_LAN_ORIGINS", "true"),
    )
