import asyncio
import random

import pytest

from app.domain.common.errors import InvalidAction, StalePhaseAction
from app.domain.engine import GameSessionStateMachine
from app.store.memory_repo import MemoryRepo
from app.store.registry import RoomRegistry
from app.transport.channel import EventChannel
from app.transport.protocols import (
    InExplainDone,
    InJoin,
    InLiarInit,
    InNextPhase,
    InPoint,
    InStartGame,
    InVoteMore,
)

PLAYERS = ("p1", "p2", "p3")


def _engine(tick=60.0):
    return GameSessionStateMachine(
        registry=RoomRegistry(MemoryRepo()),
        channel=EventChannel(),
        tick_interval=tick,
        rng=random.Random(5),
    )


def _event(applied, type_):
    return next(e for e in applied.events if e.type == type_)


async def _revealed(engine, code="L1"):
    await engine.create_room(code, "LIAR", host_id="h")
    for cid in PLAYERS:
        await engine.apply(code, InJoin(nickname=cid), client_id=cid)
    await engine.apply(code, InStartGame(), client_id="h")
    applied = await engine.apply(code, InLiarInit(category="fruit", keyword="mango"), client_id="h")
    assert applied.phase == "ROLE_REVEAL"
    # the keyword never goes out on the shared feed
    assert "mango" not in str([e.model_dump() for e in applied.events])

    room = await engine.registry.get_room(code)
    return room.game["liar"]


async def _explain_all(engine, code="L1"):
    applied = await engine.apply(code, InNextPhase(), client_id="h")
    assert applied.phase == "EXPLANATION"
    for _ in PLAYERS:
        explainer = _event(applied, "turn_changed").current_client_id
        applied = await engine.apply(code, InExplainDone(), client_id=explainer)
    return applied


@pytest.mark.asyncio
async def test_only_citizens_see_keyword():
    engine = _engine()
    liar = await _revealed(engine)

    for cid in PLAYERS:
        info = await engine.role_info("L1", cid)
        assert info.view["category"] == "fruit"
        if cid == liar:
            assert info.role == "LIAR"
            assert "keyword" not in info.view
        else:
            assert info.role == "CITIZEN"
            assert info.view["keyword"] == "mango"
    await engine.shutdown()


@pytest.mark.asyncio
async def test_liar_caught_after_one_round():
    engine = _engine()
    liar = await _revealed(engine)

    applied = await engine.apply("L1", InNextPhase(), client_id="h")
    explainer = _event(applied, "turn_changed").current_client_id
    bystander = next(c for c in PLAYERS if c != explainer)
    with pytest.raises(InvalidAction) as e:
        await engine.apply("L1", InExplainDone(), client_id=bystander)
    assert e.value.code == "NOT_YOUR_TURN"

    applied = await engine.apply("L1", InExplainDone(), client_id=explainer)
    assert applied.phase == "EXPLANATION"
    assert _event(applied, "turn_changed").index == 1
    # host may skip a stalled explainer
    await engine.apply("L1", InExplainDone(), client_id="h")
    applied = await engine.apply("L1", InExplainDone(), client_id="h")
    assert applied.phase == "VOTE_MORE_ROUND"

    for cid in PLAYERS:
        applied = await engine.apply("L1", InVoteMore(want_more=False), client_id=cid)
    assert applied.phase == "POINTING"

    citizens = [c for c in PLAYERS if c != liar]
    with pytest.raises(InvalidAction) as e:
        await engine.apply("L1", InPoint(target=liar), client_id=liar)
    assert e.value.code == "BAD_TARGET"

    await engine.apply("L1", InPoint(target=citizens[0]), client_id=liar)
    await engine.apply("L1", InPoint(target=liar), client_id=citizens[0])
    applied = await engine.apply("L1", InPoint(target=liar), client_id=citizens[1])
    assert applied.phase == "GAME_END"
    result = _event(applied, "round_result").result
    assert result["caught"] is True
    assert result["liar_id"] == liar
    assert result["keyword"] == "mango"

    snap = await engine.snapshot("L1")
    assert snap.state["liar"] == liar


@pytest.mark.asyncio
async def test_more_votes_majority_restarts_explanations():
    engine = _engine()
    await _revealed(engine)
    applied = await _explain_all(engine)
    assert applied.phase == "VOTE_MORE_ROUND"

    await engine.apply("L1", InVoteMore(want_more=True), client_id="p1")
    await engine.apply("L1", InVoteMore(want_more=False), client_id="p2")
    applied = await engine.apply("L1", InVoteMore(want_more=True), client_id="p3")
    assert applied.phase == "EXPLANATION"
    assert _event(applied, "turn_changed").index == 0

    room = await engine.registry.get_room("L1")
    assert room.game["explain_round"] == 2
    await engine.shutdown()


@pytest.mark.asyncio
async def test_tied_pointing_lets_liar_escape():
    engine = _engine()
    liar = await _revealed(engine)
    await _explain_all(engine)
    for cid in PLAYERS:
        await engine.apply("L1", InVoteMore(want_more=False), client_id=cid)

    a, b = [c for c in PLAYERS if c != liar]
    await engine.apply("L1", InPoint(target=a), client_id=liar)
    await engine.apply("L1", InPoint(target=b), client_id=a)
    applied = await engine.apply("L1", InPoint(target=liar), client_id=b)
    result = _event(applied, "round_result").result
    assert result["accused"] is None
    assert result["caught"] is False
    assert len(result["tally"]) == 3


@pytest.mark.asyncio
async def test_timers_drive_the_round_to_pointing():
    engine = _engine(tick=0.002)
    await _revealed(engine)

    for _ in range(500):
        await asyncio.sleep(0.01)
        room = await engine.registry.get_room("L1")
        if room.phase == "POINTING":
            break
    assert room.phase == "POINTING"
    assert room.timer is None
    await engine.shutdown()


@pytest.mark.asyncio
async def test_liar_init_needs_three_players():
    engine = _engine()
    await engine.create_room("L2", "LIAR", host_id="h")
    for cid in ("a", "b"):
        await engine.apply("L2", InJoin(nickname=cid), client_id=cid)
    with pytest.raises(InvalidAction) as e:
        await engine.apply("L2", InStartGame(), client_id="h")
    assert e.value.code == "NOT_ENOUGH_PLAYERS"


@pytest.mark.asyncio
async def test_host_skip_sent_twice_skips_one_explainer():
    engine = _engine()
    await _revealed(engine)
    applied = await engine.apply("L1", InNextPhase(), client_id="h")
    first = _event(applied, "turn_changed").current_client_id

    skipped = await engine.apply("L1", InExplainDone(epoch=applied.epoch), client_id="h")
    assert skipped.phase == "EXPLANATION"
    with pytest.raises(StalePhaseAction):
        await engine.apply("L1", InExplainDone(epoch=applied.epoch), client_id="h")

    room = await engine.registry.get_room("L1")
    assert room.turn.cursor == 1
    assert _event(skipped, "turn_changed").current_client_id != first
    await engine.shutdown()
