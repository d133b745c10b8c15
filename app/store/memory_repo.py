# app/store/memory_repo.py
from __future__ import annotations

from typing import Dict, Optional

from app.store.models import RoomStore


class MemoryRepo:
    """
    In-process room store. load() hands out a deep copy so a caller's
    uncommitted changes never leak into the stored room.
    """

    def __init__(self) -> None:
        self._rooms: Dict[str, RoomStore] = {}

    async def room_exists(self, room_code: str) -> bool:
        return room_code in self._rooms

    async def load(self, room_code: str) -> Optional[RoomStore]:
        room = self._rooms.get(room_code)
        if room is None:
            return None
        return room.model_copy(deep=True)

    async def save(self, room: RoomStore) -> None:
        self._rooms[room.room_code] = room.model_copy(deep=True)

    async def delete(self, room_code: str) -> None:
        self._rooms.pop(room_code, None)

    async def list_codes(self) -> list[str]:
        return sorted(self._rooms.keys())
