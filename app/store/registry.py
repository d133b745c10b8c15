# app/store/registry.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple

from app.domain.common.errors import PlayerNotFound, RoomNotFound
from app.store.models import PlayerStore, RoomStore
from app.util.timeutil import now_ts

logger = logging.getLogger(__name__)


def upsert_player(room: RoomStore, client_id: str, nickname: str, ts: int) -> Tuple[PlayerStore, bool]:
    """
    Add a player, or refresh the existing entry for a re-joining client id.
    Returns (player, is_new).
    """
    existing = room.players.get(client_id)
    if existing is not None:
        existing.nickname = nickname
        existing.connected = True
        existing.last_seen = ts
        return existing, False

    player = PlayerStore(client_id=client_id, nickname=nickname, joined_at=ts, last_seen=ts)
    room.players[client_id] = player
    return player, True


def drop_player(room: RoomStore, client_id: str) -> PlayerStore:
    player = room.players.pop(client_id, None)
    if player is None:
        raise PlayerNotFound(client_id)
    for members in room.teams.values():
        if client_id in members:
            members.remove(client_id)
    return player


class RoomRegistry:
    """
    Owns room_code -> room state.

    Each room has its own asyncio.Lock; every mutation goes through
    session(), which serializes work per room while leaving other rooms free.
    """

    def __init__(self, repo) -> None:
        self.repo = repo
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _locked(self, room_code: str) -> AsyncIterator[None]:
        """Hold the room's lock. The lock is dropped once nobody holds or waits for it."""
        lock = self._locks.setdefault(room_code, asyncio.Lock())
        self._lock_users[room_code] = self._lock_users.get(room_code, 0) + 1
        try:
            async with lock:
                yield
        finally:
            left = self._lock_users[room_code] - 1
            if left:
                self._lock_users[room_code] = left
            else:
                del self._lock_users[room_code]
                del self._locks[room_code]

    @asynccontextmanager
    async def session(self, room_code: str) -> AsyncIterator[RoomStore]:
        """
        Lock the room and yield a private copy of it. The copy is written
        back only when the block exits without raising.
        """
        async with self._locked(room_code):
            room = await self.repo.load(room_code)
            if room is None:
                raise RoomNotFound(room_code)
            yield room
            room.last_activity = now_ts()
            await self.repo.save(room)

    # ----------------------------
    # Rooms
    # ----------------------------
    async def create_room(
        self,
        room_code: str,
        game_type: str,
        initial_phase: str,
        host_id: Optional[str] = None,
    ) -> Tuple[RoomStore, bool]:
        """No-op when the room already exists. Returns (room, created)."""
        async with self._locked(room_code):
            existing = await self.repo.load(room_code)
            if existing is not None:
                return existing, False

            ts = now_ts()
            room = RoomStore(
                room_code=room_code,
                game_type=game_type,
                phase=initial_phase,
                host_id=host_id,
                created_at=ts,
                last_activity=ts,
            )
            await self.repo.save(room)
            logger.info(f"Created room {room_code} ({game_type})")
            return room, True

    async def get_room(self, room_code: str) -> RoomStore:
        room = await self.repo.load(room_code)
        if room is None:
            raise RoomNotFound(room_code)
        return room

    async def room_exists(self, room_code: str) -> bool:
        return await self.repo.room_exists(room_code)

    async def delete_room(self, room_code: str) -> None:
        async with self._locked(room_code):
            if not await self.repo.room_exists(room_code):
                raise RoomNotFound(room_code)
            await self.repo.delete(room_code)
        logger.info(f"Deleted room {room_code}")

    async def list_rooms(self) -> List[RoomStore]:
        rooms: List[RoomStore] = []
        for code in await self.repo.list_codes():
            room = await self.repo.load(code)
            if room is not None:
                rooms.append(room)
        return rooms

    async def idle_rooms(self, now: int, ttl_sec: int) -> List[str]:
        return [r.room_code for r in await self.list_rooms() if now - r.last_activity >= ttl_sec]

    # ----------------------------
    # Players
    # ----------------------------
    async def add_player(self, room_code: str, client_id: str, nickname: str) -> Tuple[PlayerStore, bool]:
        async with self.session(room_code) as room:
            return upsert_player(room, client_id, nickname, now_ts())

    async def remove_player(self, room_code: str, client_id: str) -> PlayerStore:
        async with self.session(room_code) as room:
            return drop_player(room, client_id)
