# app/domain/games/truth.py
"""
Truth game: one answerer per round, everyone else submits a question, the
host picks one, and an external stress scorer judges the answer.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from app.domain.common.errors import InvalidAction, PlayerNotFound
from app.domain.common.fsm import ActionRule, GameModule, PhaseSpec
from app.domain.helpers import voting
from app.store.models import RoomStore
from app.transport.protocols import (
    OutAnswererSelected,
    OutItemSubmitted,
    OutQuestionSelected,
    OutRoundResult,
    OutStressUpdate,
)

SUBMIT_CAP = 1
ANSWER_SEC = 30
LIE_THRESHOLD = 55


def _answerer(room: RoomStore) -> Optional[str]:
    return room.game.get("answerer")


def _question(room: RoomStore):
    qid = room.game.get("question_id")
    return next((i for i in room.items if i.id == qid), None)


def _askers(room: RoomStore) -> int:
    return voting.expected_count(room, exclude=[_answerer(room)] if _answerer(room) else [])


# ----------------------------
# Guards / completion checks
# ----------------------------

def _has_answerer(room: RoomStore) -> Optional[str]:
    return None if _answerer(room) else "Pick an answerer first"


def _has_questions(room: RoomStore) -> Optional[str]:
    return None if room.items else "No questions submitted"


def _has_question(room: RoomStore) -> Optional[str]:
    return None if _question(room) is not None else "Pick a question first"


def _all_asked(room: RoomStore) -> Optional[str]:
    if room.items and len(room.items) >= _askers(room):
        return "SELECT_QUESTION"
    return None


# ----------------------------
# Phase entry
# ----------------------------

def _enter_select_answerer(ctx, previous: str) -> None:
    room = ctx.room
    voting.reset_round(room)
    for p in room.players.values():
        p.role = None
    room.game["answerer"] = None
    room.game["question_id"] = None
    room.game["stress"] = None
    room.game.setdefault("rounds", [])


def _enter_answering(ctx, previous: str) -> None:
    ctx.room.game["stress"] = {"last": None, "peak": 0.0, "samples": 0}


def _enter_result(ctx, previous: str) -> None:
    room = ctx.room
    stress = room.game.get("stress") or {}
    level = float(stress.get("peak") or 0.0)
    question = _question(room)
    answerer = room.players.get(_answerer(room))

    verdict = {
        "client_id": _answerer(room),
        "nickname": answerer.nickname if answerer else None,
        "question": question.text if question else None,
        "stress_level": level,
        "samples": stress.get("samples", 0),
        "is_lie": level >= LIE_THRESHOLD,
    }
    room.game.setdefault("rounds", []).append(verdict)
    ctx.emit(OutRoundResult(kind="verdict", result=verdict))


def _enter_end(ctx, previous: str) -> None:
    rounds = ctx.room.game.get("rounds", [])
    ctx.emit(
        OutRoundResult(
            kind="summary",
            result={"rounds": rounds, "lies": sum(1 for r in rounds if r.get("is_lie"))},
        )
    )


# ----------------------------
# Actions
# ----------------------------

def handle_select_answerer(ctx, msg) -> None:
    room = ctx.room
    if msg.target is not None:
        player = room.players.get(msg.target)
        if player is None:
            raise PlayerNotFound(msg.target)
    else:
        candidates = [p for p in room.player_list() if p.connected] or room.player_list()
        if not candidates:
            raise InvalidAction("Nobody to pick", code="NOT_ENOUGH_PLAYERS")
        player = ctx.rng.choice(candidates)

    player.role = "ANSWERER"
    room.game["answerer"] = player.client_id
    ctx.emit(OutAnswererSelected(client_id=player.client_id, nickname=player.nickname))
    ctx.transition("SUBMIT_QUESTIONS")


def handle_submit_question(ctx, msg) -> None:
    room = ctx.room
    if ctx.client_id == _answerer(room):
        raise InvalidAction("The answerer does not ask questions", code="ANSWERER_CANNOT_SUBMIT")
    voting.submit(room, ctx.client_id, msg.text.strip(), SUBMIT_CAP)
    ctx.emit(
        OutItemSubmitted(
            total_count=voting.submitted_total(room),
            expected_count=_askers(room),
            author_id=ctx.client_id,
        )
    )
    ctx.auto_advance()


def handle_select_question(ctx, msg) -> None:
    room = ctx.room
    if not room.items:
        raise InvalidAction("No questions submitted", code="NO_QUESTIONS")
    if msg.item_id is not None:
        item = next((i for i in room.items if i.id == msg.item_id), None)
        if item is None:
            raise InvalidAction(f"Unknown item: {msg.item_id}", code="ITEM_NOT_FOUND")
    else:
        item = ctx.rng.choice(room.items)

    room.game["question_id"] = item.id
    ctx.emit(OutQuestionSelected(item_id=item.id, text=item.text, confirmed=False))


def handle_confirm_question(ctx, msg) -> None:
    ctx.transition("ANSWERING")
    question = _question(ctx.room)
    ctx.emit(OutQuestionSelected(item_id=question.id, text=question.text, confirmed=True))


def handle_stress_score(ctx, msg) -> None:
    room = ctx.room
    stress = room.game.get("stress") or {"last": None, "peak": 0.0, "samples": 0}
    stress["last"] = msg.level
    stress["peak"] = max(float(stress.get("peak") or 0.0), msg.level)
    stress["samples"] = int(stress.get("samples", 0)) + 1
    room.game["stress"] = stress
    ctx.emit(OutStressUpdate(client_id=_answerer(room), level=msg.level))


def handle_finish_answering(ctx, msg) -> None:
    ctx.transition("RESULT")


# ----------------------------
# Views
# ----------------------------

def public_state(room: RoomStore) -> Dict[str, Any]:
    question = _question(room)
    stress = room.game.get("stress") or {}
    return {
        "answerer": _answerer(room),
        "question_count": len(room.items),
        "question": {"id": question.id, "text": question.text} if question else None,
        "stress_level": stress.get("last"),
        "rounds": list(room.game.get("rounds", [])),
    }


def private_view(room: RoomStore, client_id: str) -> Dict[str, Any]:
    return {
        "is_answerer": client_id == _answerer(room),
        "my_questions": [i.text for i in room.items if i.author_id == client_id],
    }


TRUTH = GameModule(
    game_type="TRUTH",
    initial_phase="SELECT_ANSWERER",
    min_players=2,
    phases={
        "SELECT_ANSWERER": PhaseSpec(next=("SUBMIT_QUESTIONS",)),
        "SUBMIT_QUESTIONS": PhaseSpec(next=("SELECT_QUESTION",)),
        "SELECT_QUESTION": PhaseSpec(next=("ANSWERING",)),
        "ANSWERING": PhaseSpec(next=("RESULT",), timer_sec=ANSWER_SEC, on_timeout="RESULT"),
        "RESULT": PhaseSpec(next=("SELECT_ANSWERER", "END")),
        "END": PhaseSpec(),
    },
    guards={
        ("SELECT_ANSWERER", "SUBMIT_QUESTIONS"): _has_answerer,
        ("SUBMIT_QUESTIONS", "SELECT_QUESTION"): _has_questions,
        ("SELECT_QUESTION", "ANSWERING"): _has_question,
    },
    on_enter={
        "SELECT_ANSWERER": _enter_select_answerer,
        "ANSWERING": _enter_answering,
        "RESULT": _enter_result,
        "END": _enter_end,
    },
    auto_next={
        "SUBMIT_QUESTIONS": _all_asked,
    },
    actions={
        "select_answerer": ActionRule(phases=("SELECT_ANSWERER",), handler=handle_select_answerer, host_only=True),
        "submit_item": ActionRule(phases=("SUBMIT_QUESTIONS",), handler=handle_submit_question),
        "select_question": ActionRule(phases=("SELECT_QUESTION",), handler=handle_select_question, host_only=True),
        "confirm_question": ActionRule(phases=("SELECT_QUESTION",), handler=handle_confirm_question, host_only=True),
        "stress_score": ActionRule(phases=("ANSWERING",), handler=handle_stress_score, host_only=True),
        "finish_answering": ActionRule(phases=("ANSWERING",), handler=handle_finish_answering, host_only=True),
    },
    public_state=public_state,
    private_view=private_view,
)
