# app/domain/common/errors.py
"""
Game/session error taxonomy.

Every error is local and recoverable: it is reported back to the caller as an
OutError(code, message) and never leaves a room partially mutated.
"""
from __future__ import annotations

from typing import Optional


class GameError(Exception):
    """Base class for all room/session errors."""

    code = "GAME_ERROR"

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class RoomNotFound(GameError):
    code = "ROOM_NOT_FOUND"

    def __init__(self, room_code: str):
        self.room_code = room_code
        super().__init__(f"Room {room_code} not found")


class PlayerNotFound(GameError):
    code = "PLAYER_NOT_FOUND"

    def __init__(self, client_id: Optional[str]):
        self.client_id = client_id
        super().__init__(f"Player {client_id} not found")


class InvalidTransition(GameError):
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str, reason: str = ""):
        self.current = current
        self.target = target
        msg = f"Cannot move from {current} to {target}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class LimitExceeded(GameError):
    code = "LIMIT_EXCEEDED"

    def __init__(self, cap: int):
        self.cap = cap
        super().__init__(f"Submission limit of {cap} reached")


class StalePhaseAction(GameError):
    code = "STALE_PHASE"

    def __init__(self, action: str, phase: str):
        self.action = action
        self.phase = phase
        super().__init__(f"{action} is not allowed in phase {phase}")


class InvalidAction(GameError):
    """Well-formed action that the current room state cannot accept."""

    code = "INVALID_ACTION"

    def __init__(self, message: str, code: Optional[str] = None):
        if code:
            self.code = code
        super().__init__(message)


class NotPermitted(GameError):
    code = "NOT_HOST"
