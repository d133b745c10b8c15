# app/transport/rooms.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field

from app.domain.common.errors import (
    GameError,
    InvalidAction,
    InvalidTransition,
    LimitExceeded,
    NotPermitted,
    PlayerNotFound,
    RoomNotFound,
    StalePhaseAction,
)
from app.domain.common.types import GameType
from app.transport.dispatcher import error_event
from app.transport.protocols import (
    InChangePhase,
    InJoin,
    InLeave,
    parse_incoming,
)

router = APIRouter(prefix="/rooms", tags=["rooms"])

_STATUS_BY_ERROR = {
    RoomNotFound: status.HTTP_404_NOT_FOUND,
    PlayerNotFound: status.HTTP_404_NOT_FOUND,
    NotPermitted: status.HTTP_403_FORBIDDEN,
    InvalidTransition: status.HTTP_409_CONFLICT,
    StalePhaseAction: status.HTTP_409_CONFLICT,
    LimitExceeded: status.HTTP_409_CONFLICT,
    InvalidAction: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


class RoomCreateRequest(BaseModel):
    game_type: GameType
    room_code: Optional[str] = Field(default=None, min_length=1, max_length=12)
    host_id: Optional[str] = None


class JoinRequest(BaseModel):
    client_id: str = Field(min_length=1, max_length=64)
    nickname: str = Field(min_length=1, max_length=24)


class LeaveRequest(BaseModel):
    client_id: str = Field(min_length=1, max_length=64)


class PhaseRequest(BaseModel):
    client_id: str
    phase: str
    epoch: Optional[int] = None


class ActionRequest(BaseModel):
    """Generic typed action: `action` is any client message, e.g. {"type": "roll"}."""
    client_id: str
    action: Dict[str, Any]


class ActionResponse(BaseModel):
    phase: str
    epoch: int
    replies: List[Dict[str, Any]] = Field(default_factory=list)
    events: List[Dict[str, Any]] = Field(default_factory=list)


def _http_error(err: GameError) -> HTTPException:
    code = next(
        (s for cls, s in _STATUS_BY_ERROR.items() if isinstance(err, cls)),
        status.HTTP_400_BAD_REQUEST,
    )
    return HTTPException(status_code=code, detail=error_event(err))


async def _apply(request: Request, room_code: str, msg, client_id: Optional[str]) -> ActionResponse:
    engine = request.app.state.engine
    try:
        applied = await engine.apply(room_code, msg, client_id=client_id)
    except GameError as e:
        raise _http_error(e) from e
    return ActionResponse(
        phase=applied.phase,
        epoch=applied.epoch,
        replies=[e.model_dump() for e in applied.replies],
        events=[e.model_dump() for e in applied.events],
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_room(payload: RoomCreateRequest, request: Request):
    engine = request.app.state.engine
    try:
        room, created = await engine.create_room(payload.room_code, payload.game_type, host_id=payload.host_id)
    except GameError as e:
        raise _http_error(e) from e
    return {"room_code": room.room_code, "game_type": room.game_type, "phase": room.phase, "created": created}


@router.get("/{room_code}")
async def get_room(room_code: str, request: Request):
    """Snapshot pull: phase, roster and public game state."""
    engine = request.app.state.engine
    try:
        snap = await engine.snapshot(room_code)
    except GameError as e:
        raise _http_error(e) from e
    return snap.model_dump()


@router.get("/{room_code}/role")
async def get_role(room_code: str, client_id: str, request: Request):
    engine = request.app.state.engine
    try:
        info = await engine.role_info(room_code, client_id)
    except GameError as e:
        raise _http_error(e) from e
    return info.model_dump()


@router.post("/{room_code}/join", response_model=ActionResponse)
async def join_room(room_code: str, payload: JoinRequest, request: Request):
    return await _apply(request, room_code, InJoin(nickname=payload.nickname), payload.client_id)


@router.post("/{room_code}/leave", response_model=ActionResponse)
async def leave_room(room_code: str, payload: LeaveRequest, request: Request):
    return await _apply(request, room_code, InLeave(), payload.client_id)


@router.post("/{room_code}/phase", response_model=ActionResponse)
async def change_phase(room_code: str, payload: PhaseRequest, request: Request):
    msg = InChangePhase(phase=payload.phase, epoch=payload.epoch)
    return await _apply(request, room_code, msg, payload.client_id)


@router.post("/{room_code}/actions", response_model=ActionResponse)
async def post_action(room_code: str, payload: ActionRequest, request: Request):
    try:
        msg = parse_incoming(payload.action)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"type": "error", "code": "BAD_MESSAGE", "message": str(e)},
        ) from e
    return await _apply(request, room_code, msg, payload.client_id)
