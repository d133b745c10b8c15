# app/domain/games/marble.py
"""
Marble (drinking board game).

LOBBY -> SUBMIT -> VOTE -> MODE_SELECT -> (TEAM ->)* GAME

Players submit penalties, vote the best ones onto the 28-tile board, then
roll dice in solo or team order. A team moves as one piece.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from app.domain.common.errors import InvalidAction
from app.domain.common.fsm import ActionRule, GameModule, PhaseSpec
from app.domain.helpers import teams, turn_order, voting
from app.store.models import RoomStore
from app.transport.protocols import (
    OutDiceRolled,
    OutItemSubmitted,
    OutRoundResult,
    OutTeamsUpdated,
    OutTurnChanged,
    OutVoteProgress,
)

SUBMIT_CAP = 2
BOARD_ITEMS = 26


# ----------------------------
# Completion checks / guards
# ----------------------------

def _all_submitted(room: RoomStore) -> Optional[str]:
    if room.players and all(p.submitted_count >= SUBMIT_CAP for p in room.players.values()):
        return "VOTE"
    return None


def _all_voted(room: RoomStore) -> Optional[str]:
    if room.players and voting.done_count(room) >= voting.expected_count(room):
        return "MODE_SELECT"
    return None


def _has_items(room: RoomStore) -> Optional[str]:
    return None if room.items else "No penalties submitted"


def _solo_mode(room: RoomStore) -> Optional[str]:
    if room.game.get("mode") == "TEAM":
        return "Team mode needs team setup first"
    return None


def _teams_ready(room: RoomStore) -> Optional[str]:
    filled = [name for name, members in room.teams.items() if members]
    if len(filled) < 2:
        return "At least two teams need players"
    if any(p.team is None for p in room.players.values()):
        return "Every player needs a team"
    return None


# ----------------------------
# Phase entry
# ----------------------------

def _enter_vote(ctx, previous: str) -> None:
    for p in ctx.room.players.values():
        p.is_vote_finished = False
    ctx.emit(
        OutVoteProgress(
            counts=voting.tally_map(ctx.room.items),
            done_count=0,
            total_voters=voting.expected_count(ctx.room),
        )
    )


def _enter_mode_select(ctx, previous: str) -> None:
    room = ctx.room
    room.items = voting.rank(room.items, top_n=BOARD_ITEMS)
    ctx.emit(
        OutRoundResult(
            kind="ranking",
            result={"items": [{"id": i.id, "text": i.text, "author": i.author, "votes": i.votes} for i in room.items]},
        )
    )


def _enter_team(ctx, previous: str) -> None:
    room = ctx.room
    room.game["mode"] = "TEAM"
    if previous == "MODE_SELECT":
        teams.open_teams(room, room.game.get("team_count", 2))
        ctx.emit(OutTeamsUpdated(teams=room.teams, method="MANUAL"))


def _enter_game(ctx, previous: str) -> None:
    room = ctx.room
    mode = room.game.setdefault("mode", "SOLO")
    if mode == "TEAM":
        room.turn = turn_order.build_team_order(room.teams, ctx.rng)
    else:
        ids = [p.client_id for p in room.player_list()]
        room.turn = turn_order.build_solo_order(ids, ctx.rng)

    room.game["positions"] = {token: 0 for token in room.turn.sequence}
    room.game["laps"] = {token: 0 for token in room.turn.sequence}
    for p in room.players.values():
        p.position = 0
    _emit_turn(ctx)


def _emit_turn(ctx) -> None:
    order = ctx.room.turn
    token = turn_order.current(order)
    ctx.emit(
        OutTurnChanged(
            current_client_id=token,
            members=turn_order.members(order, token) if token else [],
            index=order.cursor,
        )
    )


# ----------------------------
# Actions
# ----------------------------

def handle_submit_item(ctx, msg) -> None:
    room = ctx.room
    voting.submit(room, ctx.client_id, msg.text.strip(), SUBMIT_CAP)
    ctx.emit(
        OutItemSubmitted(
            total_count=voting.submitted_total(room),
            expected_count=voting.expected_count(room) * SUBMIT_CAP,
            author_id=ctx.client_id,
        )
    )
    ctx.auto_advance()


def handle_toggle_vote(ctx, msg) -> None:
    room = ctx.room
    voting.toggle(room, msg.item_id, ctx.client_id)
    ctx.emit(
        OutVoteProgress(
            counts=voting.tally_map(room.items),
            done_count=voting.done_count(room),
            total_voters=voting.expected_count(room),
        )
    )


def handle_mark_vote_done(ctx, msg) -> None:
    room = ctx.room
    voting.mark_done(room, ctx.client_id)
    ctx.emit(
        OutVoteProgress(
            counts=voting.tally_map(room.items),
            done_count=voting.done_count(room),
            total_voters=voting.expected_count(room),
        )
    )
    ctx.auto_advance()


def handle_select_mode(ctx, msg) -> None:
    room = ctx.room
    room.game["mode"] = msg.mode
    room.game["team_count"] = msg.team_count
    ctx.transition("TEAM" if msg.mode == "TEAM" else "GAME")


def handle_divide_teams(ctx, msg) -> None:
    room = ctx.room
    ids = [p.client_id for p in room.player_list()]
    if msg.method == "LADDER":
        result = teams.divide_ladder(ids, msg.team_count, ctx.rng)
    else:
        result = teams.divide_random(ids, msg.team_count, ctx.rng)
    teams.apply_teams(room, result)
    room.game["team_count"] = msg.team_count
    ctx.emit(OutTeamsUpdated(teams=room.teams, method=msg.method))
    ctx.transition("TEAM")


def handle_select_team(ctx, msg) -> None:
    room = ctx.room
    if not room.teams:
        raise InvalidAction("Teams are not open yet", code="NO_TEAMS")
    teams.select_team(room, ctx.client_id, msg.team)
    ctx.emit(OutTeamsUpdated(teams=room.teams, method="MANUAL"))


def handle_reset_teams(ctx, msg) -> None:
    room = ctx.room
    teams.open_teams(room, room.game.get("team_count", 2))
    ctx.emit(OutTeamsUpdated(teams=room.teams, method="MANUAL"))
    ctx.transition("TEAM")


def handle_roll(ctx, msg) -> None:
    room = ctx.room
    order = room.turn
    token = turn_order.current(order)
    if token is None:
        raise InvalidAction("Nobody left to roll", code="NO_TURN")
    if not ctx.is_host and not turn_order.is_actor(order, ctx.client_id):
        raise InvalidAction("Not your turn", code="NOT_YOUR_TURN")

    value = ctx.rng.randint(1, 6)
    positions: Dict[str, int] = room.game.setdefault("positions", {})
    laps: Dict[str, int] = room.game.setdefault("laps", {})
    start = positions.get(token, 0)
    moved_to = start + value
    if moved_to >= turn_order.BOARD_SIZE:
        laps[token] = laps.get(token, 0) + 1
    position = moved_to % turn_order.BOARD_SIZE
    positions[token] = position

    movers = turn_order.members(order, token)
    for cid in movers:
        if cid in room.players:
            room.players[cid].position = position

    ctx.emit(
        OutDiceRolled(
            client_id=ctx.client_id or token,
            token=token,
            value=value,
            position=position,
            moved=movers,
            landing=turn_order.resolve_landing(position, room.items),
        )
    )
    turn_order.advance(order)
    _emit_turn(ctx)


# ----------------------------
# Views
# ----------------------------

def public_state(room: RoomStore) -> Dict[str, Any]:
    return {
        "items": [{"id": i.id, "text": i.text, "author": i.author, "votes": i.votes} for i in room.items],
        "submitted": voting.submitted_total(room),
        "done_count": voting.done_count(room),
        "mode": room.game.get("mode"),
        "positions": dict(room.game.get("positions", {})),
        "laps": dict(room.game.get("laps", {})),
    }


def private_view(room: RoomStore, client_id: str) -> Dict[str, Any]:
    player = room.players.get(client_id)
    if player is None:
        return {}
    return {
        "team": player.team,
        "position": player.position,
        "submitted_count": player.submitted_count,
        "voted_items": [i.id for i in room.items if client_id in i.voters],
    }


MARBLE = GameModule(
    game_type="MARBLE",
    initial_phase="LOBBY",
    min_players=2,
    phases={
        "LOBBY": PhaseSpec(next=("SUBMIT",)),
        "SUBMIT": PhaseSpec(next=("VOTE",)),
        "VOTE": PhaseSpec(next=("MODE_SELECT",)),
        "MODE_SELECT": PhaseSpec(next=("GAME", "TEAM")),
        "TEAM": PhaseSpec(next=("GAME", "TEAM")),
        "GAME": PhaseSpec(),
    },
    guards={
        ("SUBMIT", "VOTE"): _has_items,
        ("MODE_SELECT", "GAME"): _solo_mode,
        ("TEAM", "GAME"): _teams_ready,
    },
    on_enter={
        "VOTE": _enter_vote,
        "MODE_SELECT": _enter_mode_select,
        "TEAM": _enter_team,
        "GAME": _enter_game,
    },
    auto_next={
        "SUBMIT": _all_submitted,
        "VOTE": _all_voted,
    },
    actions={
        "submit_item": ActionRule(phases=("SUBMIT",), handler=handle_submit_item),
        "toggle_vote": ActionRule(phases=("VOTE",), handler=handle_toggle_vote),
        "mark_vote_done": ActionRule(phases=("VOTE",), handler=handle_mark_vote_done),
        "select_mode": ActionRule(phases=("MODE_SELECT",), handler=handle_select_mode, host_only=True),
        "divide_teams": ActionRule(phases=("TEAM",), handler=handle_divide_teams, host_only=True),
        "select_team": ActionRule(phases=("TEAM",), handler=handle_select_team),
        "reset_teams": ActionRule(phases=("TEAM",), handler=handle_reset_teams, host_only=True),
        "roll": ActionRule(phases=("GAME",), handler=handle_roll),
    },
    public_state=public_state,
    private_view=private_view,
)
