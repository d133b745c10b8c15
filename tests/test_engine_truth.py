import asyncio
import random

import pytest

from app.domain.common.errors import InvalidAction, NotPermitted
from app.domain.engine import GameSessionStateMachine
from app.domain.games.truth import LIE_THRESHOLD
from app.store.memory_repo import MemoryRepo
from app.store.registry import RoomRegistry
from app.transport.channel import EventChannel
from app.transport.protocols import (
    InChangePhase,
    InConfirmQuestion,
    InFinishAnswering,
    InJoin,
    InNextPhase,
    InSelectAnswerer,
    InSelectQuestion,
    InStartGame,
    InStressScore,
    InSubmitItem,
)


def _engine(tick=60.0):
    return GameSessionStateMachine(
        registry=RoomRegistry(MemoryRepo()),
        channel=EventChannel(),
        tick_interval=tick,
        rng=random.Random(3),
    )


def _event(applied, type_):
    return next(e for e in applied.events if e.type == type_)


async def _questions_in(engine, code="T1"):
    await engine.create_room(code, "TRUTH", host_id="h")
    for cid in ("p1", "p2", "p3"):
        await engine.apply(code, InJoin(nickname=cid.upper()), client_id=cid)
    applied = await engine.apply(code, InStartGame(), client_id="h")
    assert applied.phase == "SELECT_ANSWERER"

    applied = await engine.apply(code, InSelectAnswerer(target="p1"), client_id="h")
    assert applied.phase == "SUBMIT_QUESTIONS"
    assert _event(applied, "answerer_selected").client_id == "p1"

    with pytest.raises(InvalidAction) as e:
        await engine.apply(code, InSubmitItem(text="why?"), client_id="p1")
    assert e.value.code == "ANSWERER_CANNOT_SUBMIT"

    applied = await engine.apply(code, InSubmitItem(text="Ever lied to a friend?"), client_id="p2")
    assert _event(applied, "item_submitted").expected_count == 2
    applied = await engine.apply(code, InSubmitItem(text="Favourite person here?"), client_id="p3")
    assert applied.phase == "SELECT_QUESTION"


@pytest.mark.asyncio
async def test_truth_round_uses_peak_stress():
    engine = _engine()
    await _questions_in(engine)

    room = await engine.registry.get_room("T1")
    chosen = room.items[1]
    applied = await engine.apply("T1", InSelectQuestion(item_id=chosen.id), client_id="h")
    picked = _event(applied, "question_selected")
    assert picked.text == chosen.text
    assert picked.confirmed is False

    applied = await engine.apply("T1", InConfirmQuestion(), client_id="h")
    assert applied.phase == "ANSWERING"
    assert _event(applied, "phase_changed").remaining == 30
    assert _event(applied, "question_selected").confirmed is True

    with pytest.raises(NotPermitted):
        await engine.apply("T1", InStressScore(level=10), client_id="p2")

    for level in (40, LIE_THRESHOLD + 15, 20):
        applied = await engine.apply("T1", InStressScore(level=level), client_id="h")
    assert _event(applied, "stress_update").level == 20

    applied = await engine.apply("T1", InFinishAnswering(), client_id="h")
    assert applied.phase == "RESULT"
    verdict = _event(applied, "round_result").result
    assert verdict["client_id"] == "p1"
    assert verdict["question"] == chosen.text
    assert verdict["stress_level"] == LIE_THRESHOLD + 15
    assert verdict["is_lie"] is True

    applied = await engine.apply("T1", InNextPhase(), client_id="h")
    assert applied.phase == "SELECT_ANSWERER"
    room = await engine.registry.get_room("T1")
    assert room.items == []
    assert room.players["p1"].role is None

    # random answerer among connected players
    applied = await engine.apply("T1", InSelectAnswerer(), client_id="h")
    answerer = _event(applied, "answerer_selected").client_id
    assert answerer in ("p1", "p2", "p3")

    asker = next(c for c in ("p1", "p2", "p3") if c != answerer)
    applied = await engine.apply("T1", InSubmitItem(text="q"), client_id=asker)
    assert applied.phase == "SUBMIT_QUESTIONS"


@pytest.mark.asyncio
async def test_truth_end_summarizes_rounds():
    engine = _engine()
    await _questions_in(engine)
    await engine.apply("T1", InSelectQuestion(), client_id="h")
    await engine.apply("T1", InConfirmQuestion(), client_id="h")
    await engine.apply("T1", InStressScore(level=10), client_id="h")
    await engine.apply("T1", InFinishAnswering(), client_id="h")

    applied = await engine.apply("T1", InChangePhase(phase="END"), client_id="h")
    summary = _event(applied, "round_result")
    assert summary.kind == "summary"
    assert summary.result["lies"] == 0
    assert len(summary.result["rounds"]) == 1


@pytest.mark.asyncio
async def test_answering_times_out_into_result():
    engine = _engine(tick=0.005)
    await _questions_in(engine)
    await engine.apply("T1", InSelectQuestion(), client_id="h")
    await engine.apply("T1", InConfirmQuestion(), client_id="h")

    for _ in range(400):
        await asyncio.sleep(0.01)
        room = await engine.registry.get_room("T1")
        if room.phase == "RESULT":
            break
    assert room.phase == "RESULT"
    assert room.timer is None
    assert room.game["rounds"][0]["is_lie"] is False
    await engine.shutdown()


@pytest.mark.asyncio
async def test_confirm_requires_selected_question():
    from app.domain.common.errors import InvalidTransition

    engine = _engine()
    await _questions_in(engine)
    with pytest.raises(InvalidTransition):
        await engine.apply("T1", InConfirmQuestion(), client_id="h")
