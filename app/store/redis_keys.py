# app/store/redis_keys.py
from __future__ import annotations

from dataclasses import dataclass

ROOMS_INDEX = "rooms"  # SET room_code


@dataclass(frozen=True)
class RK:
    """
    Redis key builder for room-scoped keys.
    """
    room_code: str

    def room(self) -> str:
        return f"room:{self.room_code}"  # STRING (RoomStore JSON)

    def all_room_keys(self) -> list[str]:
        """Keys that share the room TTL policy."""
        return [self.room()]
