# app/transport/ws.py
from __future__ import annotations

import asyncio
import ipaddress
import json
import logging
import uuid
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.domain.common.errors import GameError, RoomNotFound
from app.settings import get_settings
from app.transport.dispatcher import dispatch_message, error_event
from app.transport.protocols import InDisconnect, OutError, OutHello

logger = logging.getLogger(__name__)

router = APIRouter()

ROLES = ("host", "player")


def _is_private_ip(host: str) -> bool:
    """Return True if host is a private IP (192.168.x.x, 10.x.x.x, 172.16-31.x.x)."""
    try:
        ip = ipaddress.ip_address(host)
        return ip.is_private
    except ValueError:
        return False


async def _check_origin_or_close(websocket: WebSocket) -> bool:
    settings = get_settings()
    allowed = {o.strip() for o in settings.WS_ALLOWED_ORIGINS.split(",") if o.strip()}

    origin = websocket.headers.get("origin")
    if origin is None or origin in allowed:
        return True
    if settings.WS_ALLOW_LAN_ORIGINS:
        o = urlparse(origin)
        if _is_private_ip(o.hostname or "") and o.port == 3000:
            return True
    logger.warning(f"Rejected websocket origin {origin}")
    await websocket.close(code=1008)
    return False


@router.websocket("/ws/{room_code}")
async def ws_room(websocket: WebSocket, room_code: str):
    """
    One long-lived feed per (room_code, role, client_id).

    Frames in: action messages {"type": ..., ...}.
    Frames out: hello, a room_snapshot, then every room event plus replies.
    A client that reconnects opens a new socket with the same client_id and
    resynchronizes from the snapshot.
    """
    if not await _check_origin_or_close(websocket):
        return

    role = websocket.query_params.get("role", "player")
    client_id = websocket.query_params.get("client_id") or uuid.uuid4().hex[:10]

    await websocket.accept()

    if role not in ROLES:
        await websocket.send_json(OutError(code="BAD_ROLE", message=f"role must be one of {ROLES}").model_dump())
        await websocket.close(code=1008)
        return

    app = websocket.app
    engine = app.state.engine
    channel = app.state.channel

    try:
        if role == "host":
            await engine.claim_host(room_code, client_id)
        elif not await engine.registry.room_exists(room_code):
            if not engine.auto_create:
                raise RoomNotFound(room_code)
            await engine.create_room(room_code, engine.default_game)
    except GameError as e:
        await websocket.send_json(error_event(e))
        await websocket.close(code=1008)
        return

    sub = channel.subscribe(room_code, role, client_id)
    send_lock = asyncio.Lock()

    async def send(event: Dict[str, Any]) -> None:
        async with send_lock:
            await websocket.send_json(event)

    async def pump() -> None:
        async for event in sub:
            await send(event)

    sender: Optional[asyncio.Task] = None
    try:
        await send(OutHello(room_code=room_code, client_id=client_id, role=role).model_dump())
        await send((await engine.snapshot(room_code)).model_dump())
        sender = asyncio.create_task(pump())

        while True:
            text = await websocket.receive_text()
            try:
                raw = json.loads(text)
            except json.JSONDecodeError as e:
                logger.warning(f"Malformed frame in room {room_code} from {client_id}: {e}")
                await send(OutError(code="BAD_MESSAGE", message="Frame is not valid JSON").model_dump())
                continue
            if not isinstance(raw, dict):
                await send(OutError(code="BAD_MESSAGE", message="Frame must be a JSON object").model_dump())
                continue

            to_sender, _ = await dispatch_message(app=app, room_code=room_code, client_id=client_id, raw=raw)
            for e in to_sender:
                await send(e)

    except WebSocketDisconnect:
        logger.info(f"{role} {client_id} disconnected from room {room_code}")
    except GameError as e:
        # room vanished between subscribe and snapshot
        logger.info(f"Closing feed for {client_id} in room {room_code}: {e.code}")
    finally:
        if sender is not None:
            sender.cancel()
        superseded = sub.closed
        channel.unsubscribe(sub)
        if role == "player" and not superseded:
            await _mark_disconnected(engine, room_code, client_id)


async def _mark_disconnected(engine, room_code: str, client_id: str) -> None:
    try:
        await engine.apply(room_code, InDisconnect(), client_id=client_id)
    except GameError as e:
        # never joined, already left, or room closed
        logger.debug(f"Disconnect for {client_id} in room {room_code} ignored: {e.code}")
