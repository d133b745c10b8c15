# app/domain/games/liar.py
"""
Liar game.

LOBBY -> ROLE_REVEAL -> EXPLANATION (one per player) -> VOTE_MORE_ROUND
      -> EXPLANATION again on a "more" majority, else POINTING -> GAME_END
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from app.domain.common.errors import InvalidAction
from app.domain.common.fsm import ActionRule, GameModule, PhaseSpec
from app.domain.helpers import turn_order, voting
from app.store.models import RoomStore
from app.transport.protocols import OutRoundResult, OutTurnChanged, OutVoteProgress

MIN_PLAYERS = 3
REVEAL_SEC = 30
EXPLAIN_SEC = 20
VOTE_MORE_SEC = 15


def _more_counts(room: RoomStore) -> Dict[str, int]:
    votes = room.game.get("more_votes", {})
    more = sum(1 for v in votes.values() if v)
    return {"more": more, "stop": len(votes) - more}


def _turns_left(room: RoomStore) -> bool:
    order = room.turn
    return order is not None and order.cursor < len(order.sequence) - 1


def after_explanation(room: RoomStore) -> str:
    return "EXPLANATION" if _turns_left(room) else "VOTE_MORE_ROUND"


def after_more_vote(room: RoomStore) -> str:
    counts = _more_counts(room)
    return "EXPLANATION" if counts["more"] > counts["stop"] else "POINTING"


# ----------------------------
# Guards / completion checks
# ----------------------------

def _liar_chosen(room: RoomStore) -> Optional[str]:
    return None if room.game.get("liar") else "Start the round with liar_init"


def _explainer_remaining(room: RoomStore) -> Optional[str]:
    return None if _turns_left(room) else "Everyone has explained"


def _more_majority(room: RoomStore) -> Optional[str]:
    return None if after_more_vote(room) == "EXPLANATION" else "Majority did not ask for another round"


def _all_more_votes(room: RoomStore) -> Optional[str]:
    if len(room.game.get("more_votes", {})) >= voting.expected_count(room):
        return after_more_vote(room)
    return None


def _all_pointed(room: RoomStore) -> Optional[str]:
    if len(room.game.get("pointing", {})) >= voting.expected_count(room):
        return "GAME_END"
    return None


# ----------------------------
# Phase entry
# ----------------------------

def _enter_explanation(ctx, previous: str) -> None:
    room = ctx.room
    if previous == "EXPLANATION":
        turn_order.advance(room.turn)
    else:
        room.turn.cursor = 0
        if previous == "VOTE_MORE_ROUND":
            room.game["explain_round"] = room.game.get("explain_round", 1) + 1

    token = turn_order.current(room.turn)
    ctx.emit(OutTurnChanged(current_client_id=token, members=[token] if token else [], index=room.turn.cursor))


def _enter_vote_more(ctx, previous: str) -> None:
    room = ctx.room
    room.game["more_votes"] = {}
    ctx.emit(OutVoteProgress(counts={"more": 0, "stop": 0}, done_count=0, total_voters=voting.expected_count(room)))


def _enter_pointing(ctx, previous: str) -> None:
    room = ctx.room
    room.game["pointing"] = {}
    ctx.emit(OutVoteProgress(done_count=0, total_voters=voting.expected_count(room)))


def _enter_game_end(ctx, previous: str) -> None:
    room = ctx.room
    pointing = room.game.get("pointing", {})
    accused = voting.plurality(pointing)
    liar_id = room.game.get("liar")
    liar = room.players.get(liar_id)
    ctx.emit(
        OutRoundResult(
            kind="liar_result",
            result={
                "liar_id": liar_id,
                "liar_nickname": liar.nickname if liar else None,
                "category": room.game.get("category"),
                "keyword": room.game.get("keyword"),
                "accused": accused,
                "caught": accused is not None and accused == liar_id,
                "tally": [{"client_id": cid, "votes": n} for cid, n in voting.tally(pointing)],
            },
        )
    )


# ----------------------------
# Actions
# ----------------------------

def handle_liar_init(ctx, msg) -> None:
    room = ctx.room
    players = room.player_list()
    if len(players) < MIN_PLAYERS:
        raise InvalidAction(f"Liar needs at least {MIN_PLAYERS} players", code="NOT_ENOUGH_PLAYERS")

    liar = ctx.rng.choice(players)
    for p in players:
        p.role = "LIAR" if p.client_id == liar.client_id else "CITIZEN"

    room.turn = turn_order.build_solo_order([p.client_id for p in players], ctx.rng)
    room.game = {
        "category": msg.category,
        "keyword": msg.keyword,
        "liar": liar.client_id,
        "explain_round": 1,
        "more_votes": {},
        "pointing": {},
    }
    ctx.transition("ROLE_REVEAL")


def handle_explain_done(ctx, msg) -> None:
    room = ctx.room
    if not ctx.is_host and turn_order.current(room.turn) != ctx.client_id:
        raise InvalidAction("Not your turn to explain", code="NOT_YOUR_TURN")
    ctx.transition(after_explanation(room))


def handle_vote_more(ctx, msg) -> None:
    room = ctx.room
    player = ctx.player()
    votes = room.game.setdefault("more_votes", {})
    votes[player.client_id] = msg.want_more
    ctx.emit(
        OutVoteProgress(
            counts=_more_counts(room),
            done_count=len(votes),
            total_voters=voting.expected_count(room),
        )
    )
    ctx.auto_advance()


def handle_point(ctx, msg) -> None:
    room = ctx.room
    player = ctx.player()
    if msg.target not in room.players:
        raise InvalidAction("Point at a player in this room", code="BAD_TARGET")
    if msg.target == player.client_id:
        raise InvalidAction("You cannot point at yourself", code="BAD_TARGET")
    pointing = room.game.setdefault("pointing", {})
    voting.cast_ballot(pointing, player.client_id, msg.target)
    ctx.emit(
        OutVoteProgress(
            counts=dict(voting.tally(pointing)),
            done_count=len(pointing),
            total_voters=voting.expected_count(room),
        )
    )
    ctx.auto_advance()


# ----------------------------
# Views
# ----------------------------

def public_state(room: RoomStore) -> Dict[str, Any]:
    state: Dict[str, Any] = {
        "category": room.game.get("category"),
        "explain_round": room.game.get("explain_round", 0),
        "explainer": turn_order.current(room.turn),
        "more": _more_counts(room),
        "pointed": len(room.game.get("pointing", {})),
    }
    if room.phase == "GAME_END":
        state["liar"] = room.game.get("liar")
        state["keyword"] = room.game.get("keyword")
    return state


def private_view(room: RoomStore, client_id: str) -> Dict[str, Any]:
    """Citizens get the keyword, the liar only the category."""
    view: Dict[str, Any] = {"category": room.game.get("category")}
    player = room.players.get(client_id)
    if player is not None and player.role == "CITIZEN":
        view["keyword"] = room.game.get("keyword")
    return view


LIAR = GameModule(
    game_type="LIAR",
    initial_phase="LOBBY",
    min_players=MIN_PLAYERS,
    phases={
        "LOBBY": PhaseSpec(next=("ROLE_REVEAL",)),
        "ROLE_REVEAL": PhaseSpec(next=("EXPLANATION",), timer_sec=REVEAL_SEC, on_timeout="EXPLANATION"),
        "EXPLANATION": PhaseSpec(
            next=("EXPLANATION", "VOTE_MORE_ROUND"),
            timer_sec=EXPLAIN_SEC,
            on_timeout=after_explanation,
        ),
        "VOTE_MORE_ROUND": PhaseSpec(
            next=("EXPLANATION", "POINTING"),
            timer_sec=VOTE_MORE_SEC,
            on_timeout=after_more_vote,
        ),
        "POINTING": PhaseSpec(next=("GAME_END",)),
        "GAME_END": PhaseSpec(),
    },
    guards={
        ("LOBBY", "ROLE_REVEAL"): _liar_chosen,
        ("EXPLANATION", "EXPLANATION"): _explainer_remaining,
        ("VOTE_MORE_ROUND", "EXPLANATION"): _more_majority,
    },
    on_enter={
        "EXPLANATION": _enter_explanation,
        "VOTE_MORE_ROUND": _enter_vote_more,
        "POINTING": _enter_pointing,
        "GAME_END": _enter_game_end,
    },
    auto_next={
        "VOTE_MORE_ROUND": _all_more_votes,
        "POINTING": _all_pointed,
    },
    actions={
        "liar_init": ActionRule(phases=("LOBBY",), handler=handle_liar_init, host_only=True),
        "explain_done": ActionRule(phases=("EXPLANATION",), handler=handle_explain_done),
        "vote_more": ActionRule(phases=("VOTE_MORE_ROUND",), handler=handle_vote_more),
        "point": ActionRule(phases=("POINTING",), handler=handle_point),
    },
    public_state=public_state,
    private_view=private_view,
)
