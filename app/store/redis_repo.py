# app/store/redis_repo.py
from __future__ import annotations

from typing import Optional

from redis.asyncio import Redis

from app.store.redis_keys import RK, ROOMS_INDEX
from app.store.models import RoomStore


class RedisRepo:
    """
    Room documents in Redis. Each room is one JSON string that expires
    after room_ttl_sec without a save, which is how idle rooms are reaped.
    """

    def __init__(self, r: Redis, room_ttl_sec: int = 1800):
        self.r = r
        self.room_ttl_sec = room_ttl_sec

    def _dec(self, x):
        """Decode redis bytes -> str; pass through str/None safely."""
        if x is None:
            return None
        if isinstance(x, bytes):
            return x.decode("utf-8")
        return x

    # ----------------------------
    # Helpers
    # ----------------------------
    async def room_exists(self, room_code: str) -> bool:
        return bool(await self.r.exists(RK(room_code).room()))

    # ----------------------------
    # Rooms
    # ----------------------------
    async def load(self, room_code: str) -> Optional[RoomStore]:
        raw = await self.r.get(RK(room_code).room())
        if not raw:
            return None
        return RoomStore.model_validate_json(self._dec(raw))

    async def save(self, room: RoomStore) -> None:
        pipe = self.r.pipeline()
        pipe.set(RK(room.room_code).room(), room.model_dump_json(), ex=self.room_ttl_sec)
        pipe.sadd(ROOMS_INDEX, room.room_code)
        await pipe.execute()

    async def delete(self, room_code: str) -> None:
        pipe = self.r.pipeline()
        pipe.delete(*RK(room_code).all_room_keys())
        pipe.srem(ROOMS_INDEX, room_code)
        await pipe.execute()

    async def list_codes(self) -> list[str]:
        members = await self.r.smembers(ROOMS_INDEX)
        codes = sorted(self._dec(m) for m in members)
        live: list[str] = []
        for code in codes:
            if await self.room_exists(code):
                live.append(code)
            else:
                # expired by TTL; drop from index
                await self.r.srem(ROOMS_INDEX, code)
        return live
