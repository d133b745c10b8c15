# app/transport/protocols.py
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field

from app.domain.common.types import GameType, MafiaNightAction, MarbleMode, ReactionKind, TeamMethod


# =========================
# Incoming (Client -> Server)
# =========================

class InBase(BaseModel):
    type: str


# ---- Room / session ----

class InJoin(InBase):
    type: Literal["join"] = "join"
    nickname: str = Field(min_length=1, max_length=24)


class InLeave(InBase):
    type: Literal["leave"] = "leave"


class InSnapshot(InBase):
    type: Literal["snapshot"] = "snapshot"


class InGetRole(InBase):
    type: Literal["get_role"] = "get_role"


class InStartGame(InBase):
    type: Literal["start_game"] = "start_game"


class InChangePhase(InBase):
    type: Literal["change_phase"] = "change_phase"
    phase: str = Field(min_length=1, max_length=32)
    # phase_epoch the sender saw; a mismatch means the click is stale
    epoch: Optional[int] = None


class InNextPhase(InBase):
    """Take the first declared edge whose guard passes."""
    type: Literal["next_phase"] = "next_phase"
    epoch: Optional[int] = None


class InCloseRoom(InBase):
    type: Literal["close_room"] = "close_room"


class InReaction(InBase):
    """Audience reaction, shown on the shared display. Not stored."""
    type: Literal["reaction"] = "reaction"
    kind: ReactionKind


# ---- Server-internal (never parsed from clients) ----

class InTimerTick(InBase):
    type: Literal["timer_tick"] = "timer_tick"
    epoch: int


class InDisconnect(InBase):
    type: Literal["disconnect"] = "disconnect"


# ---- Submission / voting (Marble, Truth) ----

class InSubmitItem(InBase):
    type: Literal["submit_item"] = "submit_item"
    text: str = Field(min_length=1, max_length=120)


class InToggleVote(InBase):
    type: Literal["toggle_vote"] = "toggle_vote"
    item_id: str


class InMarkVoteDone(InBase):
    type: Literal["mark_vote_done"] = "mark_vote_done"


# ---- Marble ----

class InSelectMode(InBase):
    type: Literal["select_mode"] = "select_mode"
    mode: MarbleMode
    team_count: int = Field(default=2, ge=2, le=5)


class InDivideTeams(InBase):
    type: Literal["divide_teams"] = "divide_teams"
    method: TeamMethod = "RANDOM"
    team_count: int = Field(default=2, ge=2, le=5)


class InSelectTeam(InBase):
    type: Literal["select_team"] = "select_team"
    team: str = Field(min_length=1, max_length=8)


class InResetTeams(InBase):
    type: Literal["reset_teams"] = "reset_teams"


class InRoll(InBase):
    type: Literal["roll"] = "roll"


# ---- Mafia ----

class InRoleAction(InBase):
    type: Literal["role_action"] = "role_action"
    target: str
    action: MafiaNightAction


class InCastVote(InBase):
    type: Literal["cast_vote"] = "cast_vote"
    target: str


class InFinalVote(InBase):
    type: Literal["final_vote"] = "final_vote"
    agree: bool


class InMafiaChat(InBase):
    type: Literal["mafia_chat"] = "mafia_chat"
    message: str = Field(min_length=1, max_length=200)


# ---- Truth ----

class InSelectAnswerer(InBase):
    type: Literal["select_answerer"] = "select_answerer"
    target: Optional[str] = None  # random when omitted


class InSelectQuestion(InBase):
    type: Literal["select_question"] = "select_question"
    item_id: Optional[str] = None  # random when omitted


class InConfirmQuestion(InBase):
    type: Literal["confirm_question"] = "confirm_question"


class InStressScore(InBase):
    """Reading from the external stress scorer for the current answerer."""
    type: Literal["stress_score"] = "stress_score"
    level: float = Field(ge=0, le=100)


class InFinishAnswering(InBase):
    type: Literal["finish_answering"] = "finish_answering"


# ---- Quiz ----

class InStartRound(InBase):
    type: Literal["start_round"] = "start_round"
    # Word list comes from the caller's content table.
    words: List[str] = Field(min_length=1, max_length=100)
    category: str = ""


class InQuizCorrect(InBase):
    type: Literal["quiz_correct"] = "quiz_correct"


class InQuizPass(InBase):
    type: Literal["quiz_pass"] = "quiz_pass"


# ---- Liar ----

class InLiarInit(InBase):
    type: Literal["liar_init"] = "liar_init"
    category: str = Field(min_length=1, max_length=40)
    # Must NOT be broadcast; only non-liars see it via get_role.
    keyword: str = Field(min_length=1, max_length=40)


class InExplainDone(InBase):
    type: Literal["explain_done"] = "explain_done"
    epoch: Optional[int] = None


class InVoteMore(InBase):
    type: Literal["vote_more"] = "vote_more"
    want_more: bool


class InPoint(InBase):
    type: Literal["point"] = "point"
    target: str


IncomingMessage = Union[
    InJoin,
    InLeave,
    InSnapshot,
    InGetRole,
    InStartGame,
    InChangePhase,
    InNextPhase,
    InCloseRoom,
    InReaction,
    InTimerTick,
    InDisconnect,
    InSubmitItem,
    InToggleVote,
    InMarkVoteDone,
    InSelectMode,
    InDivideTeams,
    InSelectTeam,
    InResetTeams,
    InRoll,
    InRoleAction,
    InCastVote,
    InFinalVote,
    InMafiaChat,
    InSelectAnswerer,
    InSelectQuestion,
    InConfirmQuestion,
    InStressScore,
    InFinishAnswering,
    InStartRound,
    InQuizCorrect,
    InQuizPass,
    InLiarInit,
    InExplainDone,
    InVoteMore,
    InPoint,
]


# =========================
# Outgoing (Server -> Client)
# =========================

class OutBase(BaseModel):
    type: str


class OutError(OutBase):
    type: Literal["error"] = "error"
    code: str
    message: str


class OutHello(OutBase):
    """First frame on every subscription."""
    type: Literal["hello"] = "hello"
    room_code: str
    client_id: str
    role: str


class OutJoined(OutBase):
    """Acknowledgement to the joining client only."""
    type: Literal["joined"] = "joined"
    room_code: str
    client_id: str
    is_new: bool


class OutRoomSnapshot(OutBase):
    type: Literal["room_snapshot"] = "room_snapshot"
    room_code: str
    game_type: GameType
    phase: str
    phase_epoch: int
    started: bool
    round_no: int
    host_id: Optional[str] = None
    remaining: Optional[int] = None
    players: List[Dict[str, Any]]
    teams: Dict[str, List[str]] = Field(default_factory=dict)
    turn: Optional[Dict[str, Any]] = None
    state: Dict[str, Any] = Field(default_factory=dict)


class OutRoleInfo(OutBase):
    type: Literal["role_info"] = "role_info"
    client_id: str
    role: Optional[str] = None
    view: Dict[str, Any] = Field(default_factory=dict)


class OutPhaseChanged(OutBase):
    type: Literal["phase_changed"] = "phase_changed"
    phase: str
    previous: str
    epoch: int
    remaining: Optional[int] = None


class OutPlayerJoined(OutBase):
    type: Literal["player_joined"] = "player_joined"
    client_id: str
    nickname: str
    rejoined: bool = False


class OutPlayerLeft(OutBase):
    type: Literal["player_left"] = "player_left"
    client_id: str
    nickname: str
    reason: Literal["leave", "disconnect"] = "leave"


class OutGameStarted(OutBase):
    type: Literal["game_started"] = "game_started"
    game_type: GameType
    round_no: int


class OutItemSubmitted(OutBase):
    type: Literal["item_submitted"] = "item_submitted"
    total_count: int
    expected_count: int
    author_id: str


class OutVoteProgress(OutBase):
    """
    Toggle voting sends counts (item_id -> votes);
    ballot votes send done_count/total_voters and optional tallies.
    """
    type: Literal["vote_progress"] = "vote_progress"
    counts: Dict[str, int] = Field(default_factory=dict)
    done_count: Optional[int] = None
    total_voters: Optional[int] = None


class OutTurnChanged(OutBase):
    type: Literal["turn_changed"] = "turn_changed"
    current_client_id: Optional[str] = None
    members: List[str] = Field(default_factory=list)
    index: int = 0


class OutRoundResult(OutBase):
    type: Literal["round_result"] = "round_result"
    kind: str
    result: Dict[str, Any] = Field(default_factory=dict)


class OutTimerTick(OutBase):
    type: Literal["timer_tick"] = "timer_tick"
    seconds_remaining: int


class OutTeamsUpdated(OutBase):
    type: Literal["teams_updated"] = "teams_updated"
    teams: Dict[str, List[str]]  # {"A":[client_id...], "B":[...]}
    method: Optional[str] = None


class OutDiceRolled(OutBase):
    type: Literal["dice_rolled"] = "dice_rolled"
    client_id: str
    token: str
    value: int
    position: int
    moved: List[str]
    landing: Dict[str, Any]


class OutAnswererSelected(OutBase):
    type: Literal["answerer_selected"] = "answerer_selected"
    client_id: str
    nickname: str


class OutQuestionSelected(OutBase):
    type: Literal["question_selected"] = "question_selected"
    item_id: str
    text: str
    confirmed: bool = False


class OutStressUpdate(OutBase):
    type: Literal["stress_update"] = "stress_update"
    client_id: str
    level: float


class OutQuizProgress(OutBase):
    type: Literal["quiz_progress"] = "quiz_progress"
    team: str
    score: int
    word_index: int
    words_left: int
    outcome: Literal["correct", "pass", "start"]


class OutInvestigationResult(OutBase):
    """Police-only reply; never broadcast."""
    type: Literal["investigation_result"] = "investigation_result"
    target: str
    is_mafia: bool


class OutReaction(OutBase):
    type: Literal["reaction"] = "reaction"
    client_id: str
    kind: ReactionKind


class OutMafiaChat(OutBase):
    """Mafia-only reply carrying the night chat log; never broadcast."""
    type: Literal["mafia_chat"] = "mafia_chat"
    messages: List[Dict[str, Any]]


class OutRoomClosed(OutBase):
    type: Literal["room_closed"] = "room_closed"
    reason: str


OutgoingEvent = Union[
    OutError,
    OutHello,
    OutJoined,
    OutRoomSnapshot,
    OutRoleInfo,
    OutPhaseChanged,
    OutPlayerJoined,
    OutPlayerLeft,
    OutGameStarted,
    OutItemSubmitted,
    OutVoteProgress,
    OutTurnChanged,
    OutRoundResult,
    OutTimerTick,
    OutTeamsUpdated,
    OutDiceRolled,
    OutAnswererSelected,
    OutQuestionSelected,
    OutStressUpdate,
    OutQuizProgress,
    OutInvestigationResult,
    OutReaction,
    OutMafiaChat,
    OutRoomClosed,
]


# =========================
# Parser helpers
# =========================

# Client-facing types only; timer_tick and disconnect are raised by the server itself.
_INCOMING_BY_TYPE = {
    "join": InJoin,
    "leave": InLeave,
    "snapshot": InSnapshot,
    "get_role": InGetRole,
    "start_game": InStartGame,
    "change_phase": InChangePhase,
    "next_phase": InNextPhase,
    "close_room": InCloseRoom,
    "reaction": InReaction,
    "submit_item": InSubmitItem,
    "toggle_vote": InToggleVote,
    "mark_vote_done": InMarkVoteDone,
    "select_mode": InSelectMode,
    "divide_teams": InDivideTeams,
    "select_team": InSelectTeam,
    "reset_teams": InResetTeams,
    "roll": InRoll,
    "role_action": InRoleAction,
    "cast_vote": InCastVote,
    "final_vote": InFinalVote,
    "mafia_chat": InMafiaChat,
    "select_answerer": InSelectAnswerer,
    "select_question": InSelectQuestion,
    "confirm_question": InConfirmQuestion,
    "stress_score": InStressScore,
    "finish_answering": InFinishAnswering,
    "start_round": InStartRound,
    "quiz_correct": InQuizCorrect,
    "quiz_pass": InQuizPass,
    "liar_init": InLiarInit,
    "explain_done": InExplainDone,
    "vote_more": InVoteMore,
    "point": InPoint,
}


def parse_incoming(payload: Dict[str, Any]) -> IncomingMessage:
    """
    Convert raw dict -> validated message model.
    Raises ValueError (pydantic ValidationError is one) if invalid.
    """
    t = payload.get("type")
    if not isinstance(t, str):
        raise ValueError("Missing/invalid type")

    cls = _INCOMING_BY_TYPE.get(t)
    if cls is None:
        raise ValueError(f"Unknown message type: {t}")

    return cls.model_validate(payload)
