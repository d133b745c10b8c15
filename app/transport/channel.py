# app/transport/channel.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

logger = logging.getLogger(__name__)

SubKey = Tuple[str, str]  # (client_id, role)


@dataclass
class Subscription:
    """
    One live feed for (room_code, role, client_id).
    Iterate it to receive event dicts; iteration ends when the feed is closed.
    """
    room_code: str
    role: str
    client_id: str
    queue: asyncio.Queue
    dropped: int = 0
    closed: bool = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        if self.closed and self.queue.empty():
            raise StopAsyncIteration
        event = await self.queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def _close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # wake a pending reader; a full queue means the reader is not waiting
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass


@dataclass
class ChannelStats:
    published: int = 0
    delivered: int = 0
    dropped: int = 0
    rooms: Dict[str, int] = field(default_factory=dict)  # room_code -> subscriber count


class EventChannel:
    """
    In-memory per-room fan-out.
    - room_code -> (client_id, role) -> Subscription
    publish() never awaits: slow subscribers lose events instead of stalling the room.
    Delivery is at-most-once with no replay; a reconnecting client re-subscribes
    and pulls a snapshot.
    """

    def __init__(self, queue_size: int = 256) -> None:
        self.queue_size = queue_size
        self._rooms: Dict[str, Dict[SubKey, Subscription]] = {}
        self._published = 0
        self._delivered = 0
        self._dropped = 0

    def subscribe(self, room_code: str, role: str, client_id: str) -> Subscription:
        room = self._rooms.setdefault(room_code, {})
        key = (client_id, role)

        old = room.get(key)
        if old is not None:
            # same client reconnected; the stale feed is ended
            old._close()
            logger.info(f"Superseded subscription {room_code}/{role}/{client_id}")

        sub = Subscription(
            room_code=room_code,
            role=role,
            client_id=client_id,
            queue=asyncio.Queue(maxsize=self.queue_size),
        )
        room[key] = sub
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        room = self._rooms.get(sub.room_code)
        if not room:
            return
        key = (sub.client_id, sub.role)
        # a superseded feed must not evict its replacement
        if room.get(key) is sub:
            room.pop(key, None)
        sub._close()
        if not room:
            self._rooms.pop(sub.room_code, None)

    def publish(self, room_code: str, name: str, payload: Optional[Dict[str, Any]] = None) -> int:
        """
        Append one named event to every feed of the room.
        Returns how many feeds accepted it.
        """
        event = {"type": name, **(payload or {})}
        self._published += 1

        delivered = 0
        for sub in list(self._rooms.get(room_code, {}).values()):
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                sub.dropped += 1
                self._dropped += 1
                logger.warning(
                    f"Dropped {name} for {room_code}/{sub.role}/{sub.client_id} (queue full)"
                )
                continue
            delivered += 1

        self._delivered += delivered
        return delivered

    def publish_event(self, room_code: str, event: BaseModel) -> int:
        data = event.model_dump()
        name = data.pop("type")
        return self.publish(room_code, name, data)

    def close_room(self, room_code: str) -> None:
        room = self._rooms.pop(room_code, None)
        if not room:
            return
        for sub in room.values():
            sub._close()

    def subscribers(self, room_code: str) -> List[Subscription]:
        return list(self._rooms.get(room_code, {}).values())

    def stats(self) -> ChannelStats:
        return ChannelStats(
            published=self._published,
            delivered=self._delivered,
            dropped=self._dropped,
            rooms={code: len(subs) for code, subs in self._rooms.items()},
        )
