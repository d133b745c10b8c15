# app/transport/dispatcher.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from app.domain.common.errors import GameError
from app.transport.protocols import OutError, parse_incoming

logger = logging.getLogger(__name__)

DispatchResult = Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]
# (to_sender_events, published_room_events), each event is a JSON dict


def error_event(err: GameError) -> Dict[str, Any]:
    return OutError(code=err.code, message=err.message).model_dump()


async def dispatch_message(
    *,
    app,
    room_code: str,
    client_id: Optional[str],
    raw: Dict[str, Any],
) -> DispatchResult:
    """
    Transport layer calls this.
    - Parses + validates raw JSON
    - Hands the action to the session engine
    - Returns (to_sender, room_events) as JSON dicts

    Room events have already been published to every subscriber by the
    engine; they are returned for callers that answer synchronously (REST).
    """
    try:
        msg = parse_incoming(raw)
    except ValueError as e:
        logger.warning(f"Bad message in room {room_code} from {client_id}: {e}")
        err = OutError(code="BAD_MESSAGE", message=str(e)).model_dump()
        return [err], []

    return await dispatch_action(app=app, room_code=room_code, client_id=client_id, msg=msg)


async def dispatch_action(
    *,
    app,
    room_code: str,
    client_id: Optional[str],
    msg: BaseModel,
) -> DispatchResult:
    engine = app.state.engine
    try:
        applied = await engine.apply(room_code, msg, client_id=client_id)
    except GameError as e:
        logger.info(f"Rejected {msg.type} in room {room_code} from {client_id}: {e.code}")
        return [error_event(e)], []

    return _dump(applied.replies), _dump(applied.events)


def _dump(events: List[BaseModel]) -> List[Dict[str, Any]]:
    """
    Convert pydantic events -> JSON dicts.
    """
    return [e.model_dump() for e in events]
