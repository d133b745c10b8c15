# app/store/models.py
from __future__ import annotations

from typing import Optional, Any, Dict, List
from pydantic import BaseModel, Field

from app.domain.common.types import GameType


class PlayerStore(BaseModel):
    client_id: str
    nickname: str
    connected: bool = True
    joined_at: int
    last_seen: int
    submitted_count: int = 0
    is_vote_finished: bool = False
    alive: bool = True
    team: Optional[str] = None
    role: Optional[str] = None           # "MAFIA" | "DOCTOR" | ... | "LIAR" | "ANSWERER"
    position: int = 0                    # board tile (Marble)


class ItemStore(BaseModel):
    """
    A submitted penalty/question. voters keeps insertion order and never
    holds the same client id twice.
    """
    id: str
    author_id: str
    author: str
    text: str
    votes: int = 0
    voters: List[str] = Field(default_factory=list)


class TurnOrderStore(BaseModel):
    sequence: List[str] = Field(default_factory=list)   # client ids, or team tokens in team mode
    cursor: int = 0
    groups: Dict[str, List[str]] = Field(default_factory=dict)  # token -> members (team mode)


class PhaseTimer(BaseModel):
    epoch: int
    remaining: int


class RoomStore(BaseModel):
    room_code: str
    game_type: GameType
    phase: str
    phase_epoch: int = 0
    timer: Optional[PhaseTimer] = None
    players: Dict[str, PlayerStore] = Field(default_factory=dict)
    items: List[ItemStore] = Field(default_factory=list)
    turn: Optional[TurnOrderStore] = None
    teams: Dict[str, List[str]] = Field(default_factory=dict)
    game: Dict[str, Any] = Field(default_factory=dict)  # per-game payload (roles, ballots, scores...)
    host_id: Optional[str] = None
    started: bool = False
    round_no: int = 0
    created_at: int
    last_activity: int

    def player_list(self) -> List[PlayerStore]:
        # stable order: joined_at
        return sorted(self.players.values(), key=lambda p: p.joined_at)


class RoomSummary(BaseModel):
    room_code: str
    game_type: GameType
    phase: str
    started: bool
    players: int
    connected: int
    created_at: int
    last_activity: int
