# app/main.py
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from app.domain.engine import GameSessionStateMachine
from app.settings import Settings, get_settings
from app.store.memory_repo import MemoryRepo
from app.store.redis_repo import RedisRepo
from app.store.registry import RoomRegistry
from app.transport.admin import router as admin_router
from app.transport.channel import EventChannel
from app.transport.rooms import router as rooms_router
from app.transport.ws import router as ws_router

logger = logging.getLogger(__name__)


async def _reap_forever(engine: GameSessionStateMachine, settings: Settings) -> None:
    while True:
        await asyncio.sleep(settings.REAP_INTERVAL_SEC)
        try:
            closed = await engine.reap_idle(settings.ROOM_TTL_SEC)
        except Exception:
            logger.exception("Idle room sweep failed")
            continue
        if closed:
            logger.info(f"Reaped idle rooms: {', '.join(closed)}")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title=settings.APP_NAME)
    allowed_origins = [o.strip() for o in settings.WS_ALLOWED_ORIGINS.split(",") if o.strip()]
    if "null" not in allowed_origins:
        allowed_origins.append("null")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def _startup() -> None:
        app.state.redis = None
        if settings.ROOM_STORE == "redis":
            r = Redis.from_url(settings.REDIS_URL, decode_responses=False)
            await r.ping()
            app.state.redis = r
            repo = RedisRepo(r, room_ttl_sec=settings.ROOM_TTL_SEC)
        else:
            repo = MemoryRepo()

        app.state.repo = repo
        app.state.registry = RoomRegistry(repo)
        app.state.channel = EventChannel(queue_size=settings.SUBSCRIBER_QUEUE_SIZE)
        app.state.engine = GameSessionStateMachine(
            registry=app.state.registry,
            channel=app.state.channel,
            tick_interval=settings.TICK_INTERVAL_SEC,
            auto_create=settings.AUTO_CREATE_ON_JOIN,
            default_game=settings.DEFAULT_GAME,
        )
        app.state.reaper = asyncio.create_task(_reap_forever(app.state.engine, settings))
        logger.info(f"{settings.APP_NAME} started with {settings.ROOM_STORE} room store")

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        app.state.reaper.cancel()
        await app.state.engine.shutdown()
        r: Optional[Redis] = app.state.redis
        if r is not None:
            await r.close()

    @app.get("/health")
    async def health():
        r: Optional[Redis] = app.state.redis
        if r is None:
            return {"ok": True, "store": "memory"}
        pong = await r.ping()
        return {"ok": True, "store": "redis", "redis": str(pong)}

    app.include_router(ws_router)
    app.include_router(rooms_router)
    app.include_router(admin_router)
    return app


app = create_app()
