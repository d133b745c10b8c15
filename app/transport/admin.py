# app/transport/admin.py
from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, HTTPException, Request

from app.domain.common.errors import RoomNotFound
from app.store.models import RoomSummary

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/rooms")
async def list_rooms(request: Request):
    """
    List all active rooms (debug/admin).
    """
    registry = request.app.state.registry

    rooms = []
    for room in await registry.list_rooms():
        players = list(room.players.values())
        rooms.append(
            RoomSummary(
                room_code=room.room_code,
                game_type=room.game_type,
                phase=room.phase,
                started=room.started,
                players=len(players),
                connected=sum(1 for p in players if p.connected),
                created_at=room.created_at,
                last_activity=room.last_activity,
            ).model_dump()
        )

    return {"rooms": rooms}


@router.get("/channel")
async def channel_stats(request: Request):
    """
    Fan-out counters: events published, deliveries, and drops on full queues.
    """
    return asdict(request.app.state.channel.stats())


@router.post("/rooms/{room_code}/close")
async def close_room(room_code: str, request: Request):
    """
    Force close a room (debug/admin). Ends every feed and deletes the room.
    """
    engine = request.app.state.engine
    try:
        await engine.close_room(room_code, reason="admin_close")
    except RoomNotFound:
        raise HTTPException(status_code=404, detail="Room not found")

    return {"ok": True, "room_code": room_code}
