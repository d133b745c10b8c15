# app/domain/games/quiz.py
"""
Team speed quiz. Teams play in shuffled order; each round the host loads a
word list and marks words correct or passed until the list or the clock
runs out.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from app.domain.common.errors import InvalidAction
from app.domain.common.fsm import ActionRule, GameModule, PhaseSpec
from app.domain.helpers import teams, turn_order
from app.store.models import RoomStore
from app.transport.protocols import OutQuizProgress, OutRoundResult, OutTeamsUpdated, OutTurnChanged

ROUND_SEC = 60


def _current_team(room: RoomStore) -> Optional[str]:
    return turn_order.current(room.turn)


def _words(room: RoomStore) -> List[str]:
    return room.game.get("words") or []


def ranking(room: RoomStore) -> List[Dict[str, Any]]:
    scores: Dict[str, int] = room.game.get("scores", {})
    ordered = sorted(scores.items(), key=lambda kv: -kv[1])
    return [{"team": team, "score": score} for team, score in ordered]


# ----------------------------
# Guards
# ----------------------------

def _teams_assigned(room: RoomStore) -> Optional[str]:
    return None if room.turn is not None and room.turn.sequence else "Divide teams first"


def _words_loaded(room: RoomStore) -> Optional[str]:
    return None if _words(room) else "Load a word list first"


def _teams_remaining(room: RoomStore) -> Optional[str]:
    played = room.game.get("played", [])
    if room.turn is None or len(played) >= len(room.turn.sequence):
        return "Every team has played"
    return None


# ----------------------------
# Phase entry
# ----------------------------

def _enter_waiting(ctx, previous: str) -> None:
    room = ctx.room
    if previous == "ROUND_END":
        played = set(room.game.get("played", []))
        # skip teams that already had their round
        for _ in range(len(room.turn.sequence)):
            turn_order.advance(room.turn)
            if _current_team(room) not in played:
                break
    room.game["words"] = []
    room.game["word_index"] = 0
    room.game["round_score"] = 0

    token = _current_team(room)
    ctx.emit(
        OutTurnChanged(
            current_client_id=token,
            members=turn_order.members(room.turn, token) if token else [],
            index=room.turn.cursor,
        )
    )


def _enter_playing(ctx, previous: str) -> None:
    room = ctx.room
    ctx.emit(
        OutQuizProgress(
            team=_current_team(room),
            score=0,
            word_index=0,
            words_left=len(_words(room)),
            outcome="start",
        )
    )


def _enter_round_end(ctx, previous: str) -> None:
    room = ctx.room
    team = _current_team(room)
    score = int(room.game.get("round_score", 0))
    scores = room.game.setdefault("scores", {})
    scores[team] = scores.get(team, 0) + score
    played = room.game.setdefault("played", [])
    if team not in played:
        played.append(team)
    ctx.emit(
        OutRoundResult(
            kind="quiz_round",
            result={
                "team": team,
                "score": score,
                "words_played": room.game.get("word_index", 0),
                "category": room.game.get("category", ""),
            },
        )
    )


def _enter_finished(ctx, previous: str) -> None:
    ctx.emit(OutRoundResult(kind="ranking", result={"ranking": ranking(ctx.room)}))


# ----------------------------
# Actions
# ----------------------------

def handle_divide_teams(ctx, msg) -> None:
    room = ctx.room
    ids = [p.client_id for p in room.player_list()]
    if msg.method == "LADDER":
        result = teams.divide_ladder(ids, msg.team_count, ctx.rng)
    else:
        result = teams.divide_random(ids, msg.team_count, ctx.rng)
    teams.apply_teams(room, result)
    room.turn = turn_order.build_team_order(room.teams, ctx.rng)
    room.game["scores"] = {name: 0 for name in room.turn.sequence}
    room.game["played"] = []
    ctx.emit(OutTeamsUpdated(teams=room.teams, method=msg.method))
    ctx.transition("WAITING")


def handle_start_round(ctx, msg) -> None:
    room = ctx.room
    words = [w.strip() for w in msg.words if w.strip()]
    if not words:
        raise InvalidAction("Word list is empty", code="NO_WORDS")
    room.game["words"] = words
    room.game["category"] = msg.category
    room.game["word_index"] = 0
    room.game["round_score"] = 0
    ctx.transition("PLAYING")


def _next_word(ctx, correct: bool) -> None:
    room = ctx.room
    if correct:
        room.game["round_score"] = int(room.game.get("round_score", 0)) + 1
    room.game["word_index"] = int(room.game.get("word_index", 0)) + 1

    left = max(0, len(_words(room)) - room.game["word_index"])
    ctx.emit(
        OutQuizProgress(
            team=_current_team(room),
            score=room.game["round_score"],
            word_index=room.game["word_index"],
            words_left=left,
            outcome="correct" if correct else "pass",
        )
    )
    if left == 0:
        ctx.transition("ROUND_END")


def handle_quiz_correct(ctx, msg) -> None:
    _next_word(ctx, correct=True)


def handle_quiz_pass(ctx, msg) -> None:
    _next_word(ctx, correct=False)


# ----------------------------
# Views
# ----------------------------

def public_state(room: RoomStore) -> Dict[str, Any]:
    return {
        "current_team": _current_team(room),
        "scores": dict(room.game.get("scores", {})),
        "played": list(room.game.get("played", [])),
        "round_score": room.game.get("round_score", 0),
        "word_index": room.game.get("word_index", 0),
        "words_total": len(_words(room)),
        "category": room.game.get("category", ""),
    }


def private_view(room: RoomStore, client_id: str) -> Dict[str, Any]:
    """The host sees the current word; players only see their own team."""
    if client_id == room.host_id:
        words = _words(room)
        idx = room.game.get("word_index", 0)
        return {"word": words[idx] if room.phase == "PLAYING" and idx < len(words) else None}
    player = room.players.get(client_id)
    return {"team": player.team if player else None}


QUIZ = GameModule(
    game_type="QUIZ",
    initial_phase="TEAM_SETUP",
    min_players=2,
    phases={
        "TEAM_SETUP": PhaseSpec(next=("WAITING",)),
        "WAITING": PhaseSpec(next=("PLAYING",)),
        "PLAYING": PhaseSpec(next=("ROUND_END",), timer_sec=ROUND_SEC, on_timeout="ROUND_END"),
        "ROUND_END": PhaseSpec(next=("WAITING", "FINISHED")),
        "FINISHED": PhaseSpec(),
    },
    guards={
        ("TEAM_SETUP", "WAITING"): _teams_assigned,
        ("WAITING", "PLAYING"): _words_loaded,
        ("ROUND_END", "WAITING"): _teams_remaining,
    },
    on_enter={
        "WAITING": _enter_waiting,
        "PLAYING": _enter_playing,
        "ROUND_END": _enter_round_end,
        "FINISHED": _enter_finished,
    },
    actions={
        "divide_teams": ActionRule(phases=("TEAM_SETUP",), handler=handle_divide_teams, host_only=True),
        "start_round": ActionRule(phases=("WAITING",), handler=handle_start_round, host_only=True),
        "quiz_correct": ActionRule(phases=("PLAYING",), handler=handle_quiz_correct, host_only=True),
        "quiz_pass": ActionRule(phases=("PLAYING",), handler=handle_quiz_pass, host_only=True),
    },
    public_state=public_state,
    private_view=private_view,
)
