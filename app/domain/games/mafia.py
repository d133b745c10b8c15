# app/domain/games/mafia.py
"""
Mafia.

NIGHT -> DAY_ANNOUNCEMENT -> VOTE -> VOTE_RESULT -> FINAL_DEFENSE -> FINAL_VOTE
      -> FINAL_VOTE_RESULT -> NIGHT ...

The night kill lands on DAY_ANNOUNCEMENT and an execution on
FINAL_VOTE_RESULT. Once either decides the game the room goes straight
to END.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from app.domain.common.errors import InvalidAction
from app.domain.common.fsm import ActionRule, GameModule, PhaseSpec
from app.domain.helpers import voting
from app.store.models import PlayerStore, RoomStore
from app.transport.protocols import OutInvestigationResult, OutMafiaChat, OutRoundResult, OutVoteProgress

MIN_PLAYERS = 4
NIGHT_SEC = 30
VOTE_SEC = 30

ROLE_FOR_ACTION = {"KILL": "MAFIA", "SAVE": "DOCTOR", "INVESTIGATE": "POLICE"}
ACTION_FOR_ROLE = {role: action for action, role in ROLE_FOR_ACTION.items()}


def _living(room: RoomStore) -> List[PlayerStore]:
    return [p for p in room.player_list() if p.alive and p.role is not None]


def _living_with(room: RoomStore, role: str) -> List[PlayerStore]:
    return [p for p in _living(room) if p.role == role]


def winner_of(room: RoomStore) -> Optional[str]:
    mafia = len(_living_with(room, "MAFIA"))
    others = len(_living(room)) - mafia
    if mafia == 0:
        return "CITIZEN"
    if mafia >= others:
        return "MAFIA"
    return None


def mafia_count(n_players: int) -> int:
    return 1 if n_players < 6 else 2


# ----------------------------
# Setup
# ----------------------------

def setup(ctx) -> None:
    room = ctx.room
    players = room.player_list()
    shuffled = list(players)
    ctx.rng.shuffle(shuffled)

    roles = ["MAFIA"] * mafia_count(len(players)) + ["DOCTOR", "POLICE"]
    roles += ["CIVILIAN"] * (len(players) - len(roles))
    for p, role in zip(shuffled, roles):
        p.role = role
        p.alive = True

    room.game = {
        "day": 0,
        "night": {},
        "ballots": {},
        "nominee": None,
        "final": {},
        "winner": None,
        "log": [],
        "chat": [],
    }


# ----------------------------
# Guards / completion checks
# ----------------------------

def _game_over(room: RoomStore) -> Optional[str]:
    return "The game is already decided" if room.game.get("winner") else None


def _not_over(room: RoomStore) -> Optional[str]:
    return None if room.game.get("winner") else "Nobody has won yet"


def _has_nominee(room: RoomStore) -> Optional[str]:
    return None if room.game.get("nominee") else "Nobody was nominated"


def _no_nominee(room: RoomStore) -> Optional[str]:
    return "A player was nominated" if room.game.get("nominee") else None


def _night_done(room: RoomStore) -> Optional[str]:
    night = room.game.get("night", {})
    for role, action in ACTION_FOR_ROLE.items():
        acted = night.get(action, {})
        if any(p.client_id not in acted for p in _living_with(room, role)):
            return None
    return "DAY_ANNOUNCEMENT"


def _day_vote_done(room: RoomStore) -> Optional[str]:
    ballots = room.game.get("ballots", {})
    if all(p.client_id in ballots for p in _living(room)):
        return "VOTE_RESULT"
    return None


def _final_voters(room: RoomStore) -> List[PlayerStore]:
    nominee = room.game.get("nominee")
    return [p for p in _living(room) if p.client_id != nominee]


def _final_vote_done(room: RoomStore) -> Optional[str]:
    final = room.game.get("final", {})
    if all(p.client_id in final for p in _final_voters(room)):
        return "FINAL_VOTE_RESULT"
    return None


# ----------------------------
# Phase entry
# ----------------------------

def _enter_night(ctx, previous: str) -> None:
    room = ctx.room
    room.game["night"] = {}
    room.game["nominee"] = None
    room.game["day"] = room.game.get("day", 0) + 1


def _enter_day(ctx, previous: str) -> None:
    room = ctx.room
    night = room.game.get("night", {})
    kill_votes = night.get("KILL", {})
    saves = set(night.get("SAVE", {}).values())

    ranked = voting.tally(kill_votes)
    target = ranked[0][0] if ranked else None
    saved = target is not None and target in saves

    killed: Optional[PlayerStore] = None
    if target is not None and not saved:
        killed = room.players.get(target)
        if killed is not None:
            killed.alive = False

    room.game["winner"] = winner_of(room)
    entry = {
        "day": room.game.get("day", 0),
        "killed": killed.client_id if killed else None,
        "nickname": killed.nickname if killed else None,
        "saved": saved,
    }
    room.game.setdefault("log", []).append({"kind": "night", **entry})
    ctx.emit(OutRoundResult(kind="night", result={**entry, "winner": room.game["winner"]}))
    if room.game["winner"]:
        ctx.try_advance("END")


def _enter_vote(ctx, previous: str) -> None:
    room = ctx.room
    room.game["ballots"] = {}
    ctx.emit(OutVoteProgress(done_count=0, total_voters=len(_living(room))))


def _enter_vote_result(ctx, previous: str) -> None:
    room = ctx.room
    ballots = room.game.get("ballots", {})
    nominee = voting.plurality(ballots)
    room.game["nominee"] = nominee
    ctx.emit(
        OutRoundResult(
            kind="vote",
            result={
                "nominee": nominee,
                "nickname": room.players[nominee].nickname if nominee in room.players else None,
                "tally": [{"client_id": cid, "votes": n} for cid, n in voting.tally(ballots)],
            },
        )
    )


def _enter_final_vote(ctx, previous: str) -> None:
    room = ctx.room
    room.game["final"] = {}
    ctx.emit(OutVoteProgress(counts={"agree": 0, "disagree": 0}, done_count=0, total_voters=len(_final_voters(room))))


def _enter_final_result(ctx, previous: str) -> None:
    room = ctx.room
    final = room.game.get("final", {})
    agree = sum(1 for v in final.values() if v)
    disagree = len(final) - agree
    nominee = room.game.get("nominee")

    executed = False
    target = room.players.get(nominee) if nominee else None
    if target is not None and agree > disagree:
        target.alive = False
        executed = True

    room.game["winner"] = winner_of(room)
    entry = {
        "day": room.game.get("day", 0),
        "target": nominee,
        "nickname": target.nickname if target else None,
        "agree": agree,
        "disagree": disagree,
        "executed": executed,
    }
    room.game.setdefault("log", []).append({"kind": "execution", **entry})
    ctx.emit(OutRoundResult(kind="execution", result={**entry, "winner": room.game["winner"]}))
    if room.game["winner"]:
        ctx.try_advance("END")


def _enter_end(ctx, previous: str) -> None:
    room = ctx.room
    ctx.emit(
        OutRoundResult(
            kind="game_over",
            result={
                "winner": room.game.get("winner"),
                "roles": {p.client_id: p.role for p in room.player_list() if p.role},
            },
        )
    )


# ----------------------------
# Actions
# ----------------------------

def _living_target(room: RoomStore, client_id: str) -> PlayerStore:
    target = room.players.get(client_id)
    if target is None or target.role is None or not target.alive:
        raise InvalidAction("Target must be a living player", code="BAD_TARGET")
    return target


def _living_actor(ctx) -> PlayerStore:
    actor = ctx.player()
    if actor.role is None or not actor.alive:
        raise InvalidAction("Dead players cannot act", code="NOT_ALIVE")
    return actor


def handle_role_action(ctx, msg) -> None:
    room = ctx.room
    actor = _living_actor(ctx)
    if actor.role != ROLE_FOR_ACTION[msg.action]:
        raise InvalidAction(f"{actor.role} cannot {msg.action}", code="WRONG_ROLE")
    target = _living_target(room, msg.target)

    night: Dict[str, Dict[str, str]] = room.game.setdefault("night", {})
    voting.cast_ballot(night.setdefault(msg.action, {}), actor.client_id, target.client_id)

    if msg.action == "INVESTIGATE":
        ctx.reply(OutInvestigationResult(target=target.client_id, is_mafia=target.role == "MAFIA"))
    ctx.auto_advance()


def handle_mafia_chat(ctx, msg) -> None:
    room = ctx.room
    actor = _living_actor(ctx)
    if actor.role != "MAFIA":
        raise InvalidAction("Only the mafia can use the night chat", code="WRONG_ROLE")
    chat = room.game.setdefault("chat", [])
    chat.append(
        {
            "day": room.game.get("day", 0),
            "client_id": actor.client_id,
            "nickname": actor.nickname,
            "message": msg.message,
        }
    )
    # mafia teammates pull the log through get_role
    ctx.reply(OutMafiaChat(messages=list(chat)))


def handle_cast_vote(ctx, msg) -> None:
    room = ctx.room
    voter = _living_actor(ctx)
    target = _living_target(room, msg.target)
    ballots = room.game.setdefault("ballots", {})
    voting.cast_ballot(ballots, voter.client_id, target.client_id)
    ctx.emit(
        OutVoteProgress(
            counts=dict(voting.tally(ballots)),
            done_count=len(ballots),
            total_voters=len(_living(room)),
        )
    )
    ctx.auto_advance()


def handle_final_vote(ctx, msg) -> None:
    room = ctx.room
    voter = _living_actor(ctx)
    if voter.client_id == room.game.get("nominee"):
        raise InvalidAction("The nominee does not vote", code="NOMINEE_CANNOT_VOTE")
    final = room.game.setdefault("final", {})
    final[voter.client_id] = msg.agree
    agree = sum(1 for v in final.values() if v)
    ctx.emit(
        OutVoteProgress(
            counts={"agree": agree, "disagree": len(final) - agree},
            done_count=len(final),
            total_voters=len(_final_voters(room)),
        )
    )
    ctx.auto_advance()


# ----------------------------
# Views
# ----------------------------

def public_state(room: RoomStore) -> Dict[str, Any]:
    return {
        "day": room.game.get("day", 0),
        "alive": {p.client_id: p.alive for p in room.player_list() if p.role},
        "nominee": room.game.get("nominee"),
        "winner": room.game.get("winner"),
        "log": list(room.game.get("log", [])),
    }


def private_view(room: RoomStore, client_id: str) -> Dict[str, Any]:
    player = room.players.get(client_id)
    if player is None or player.role is None:
        return {}
    view: Dict[str, Any] = {"alive": player.alive}
    if player.role == "MAFIA":
        view["mafia"] = [p.client_id for p in room.player_list() if p.role == "MAFIA"]
        view["chat"] = list(room.game.get("chat", []))
    return view


MAFIA = GameModule(
    game_type="MAFIA",
    initial_phase="NIGHT",
    min_players=MIN_PLAYERS,
    setup=setup,
    phases={
        "NIGHT": PhaseSpec(next=("DAY_ANNOUNCEMENT",), timer_sec=NIGHT_SEC, on_timeout="DAY_ANNOUNCEMENT"),
        "DAY_ANNOUNCEMENT": PhaseSpec(next=("VOTE", "END")),
        "VOTE": PhaseSpec(next=("VOTE_RESULT",), timer_sec=VOTE_SEC, on_timeout="VOTE_RESULT"),
        "VOTE_RESULT": PhaseSpec(next=("FINAL_DEFENSE", "NIGHT")),
        "FINAL_DEFENSE": PhaseSpec(next=("FINAL_VOTE",)),
        "FINAL_VOTE": PhaseSpec(next=("FINAL_VOTE_RESULT",)),
        "FINAL_VOTE_RESULT": PhaseSpec(next=("NIGHT", "END")),
        "END": PhaseSpec(),
    },
    guards={
        ("DAY_ANNOUNCEMENT", "VOTE"): _game_over,
        ("DAY_ANNOUNCEMENT", "END"): _not_over,
        ("VOTE_RESULT", "FINAL_DEFENSE"): _has_nominee,
        ("VOTE_RESULT", "NIGHT"): _no_nominee,
        ("FINAL_VOTE_RESULT", "NIGHT"): _game_over,
        ("FINAL_VOTE_RESULT", "END"): _not_over,
    },
    on_enter={
        "NIGHT": _enter_night,
        "DAY_ANNOUNCEMENT": _enter_day,
        "VOTE": _enter_vote,
        "VOTE_RESULT": _enter_vote_result,
        "FINAL_VOTE": _enter_final_vote,
        "FINAL_VOTE_RESULT": _enter_final_result,
        "END": _enter_end,
    },
    auto_next={
        "NIGHT": _night_done,
        "VOTE": _day_vote_done,
        "FINAL_VOTE": _final_vote_done,
    },
    actions={
        "role_action": ActionRule(phases=("NIGHT",), handler=handle_role_action),
        "mafia_chat": ActionRule(phases=("NIGHT",), handler=handle_mafia_chat),
        "cast_vote": ActionRule(phases=("VOTE",), handler=handle_cast_vote),
        "final_vote": ActionRule(phases=("FINAL_VOTE",), handler=handle_final_vote),
    },
    public_state=public_state,
    private_view=private_view,
)
