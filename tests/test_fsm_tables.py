import random

import pytest

from app.domain.common.errors import InvalidAction, InvalidTransition
from app.domain.common.fsm import ActionRule, GameModule, PhaseSpec
from app.domain.common.types import GAME_TYPES
from app.domain.engine import GameSessionStateMachine
from app.domain.games import MODULES, get_module
from app.store.memory_repo import MemoryRepo
from app.store.registry import RoomRegistry
from app.transport.channel import EventChannel
from app.transport.protocols import InChangePhase, InJoin, InNextPhase, InStartGame, InSubmitItem


def test_all_games_registered():
    assert sorted(MODULES) == sorted(GAME_TYPES)
    with pytest.raises(InvalidAction) as e:
        get_module("CHESS")
    assert e.value.code == "UNKNOWN_GAME"


@pytest.mark.parametrize("game_type", sorted(MODULES))
def test_tables_are_consistent(game_type):
    module = MODULES[game_type]
    module.validate()

    # every phase is reachable from the initial one
    seen, todo = set(), [module.initial_phase]
    while todo:
        phase = todo.pop()
        if phase in seen:
            continue
        seen.add(phase)
        todo.extend(module.phases[phase].next)
    assert seen == set(module.phases)

    # every game has somewhere to end
    assert any(module.is_terminal(p) for p in module.phases)


def test_validate_rejects_undeclared_edges():
    with pytest.raises(ValueError):
        GameModule(game_type="X", initial_phase="A", phases={"A": PhaseSpec(next=("B",))})
    with pytest.raises(ValueError):
        GameModule(game_type="X", initial_phase="A", phases={"A": PhaseSpec(next=("A",), timer_sec=5)})
    with pytest.raises(ValueError):
        GameModule(
            game_type="X",
            initial_phase="A",
            phases={"A": PhaseSpec(next=("B",)), "B": PhaseSpec()},
            guards={("B", "A"): lambda room: None},
        )
    with pytest.raises(ValueError):
        GameModule(
            game_type="X",
            initial_phase="A",
            phases={"A": PhaseSpec()},
            actions={"go": ActionRule(phases=("Z",), handler=lambda ctx, msg: None)},
        )


@pytest.mark.asyncio
async def test_phase_changes_follow_declared_edges():
    engine = GameSessionStateMachine(
        registry=RoomRegistry(MemoryRepo()),
        channel=EventChannel(),
        tick_interval=60.0,
        rng=random.Random(1),
    )
    module = get_module("MARBLE")
    await engine.create_room("E1", "MARBLE", host_id="h")
    for cid in ("a", "b"):
        await engine.apply("E1", InJoin(nickname=cid), client_id=cid)
    await engine.apply("E1", InStartGame(), client_id="h")

    changes = []
    for step in (InNextPhase(), InSubmitItem(text="x"), InNextPhase(), InNextPhase(), InNextPhase()):
        applied = await engine.apply("E1", step, client_id="a" if step.type == "submit_item" else "h")
        changes += [e for e in applied.events if e.type == "phase_changed"]

    assert [c.phase for c in changes] == ["SUBMIT", "VOTE", "MODE_SELECT", "GAME"]
    for c in changes:
        assert module.can_transition(c.previous, c.phase)
    epochs = [c.epoch for c in changes]
    assert epochs == sorted(epochs)
    assert len(set(epochs)) == len(epochs)


@pytest.mark.asyncio
async def test_rejected_transition_leaves_room_untouched():
    engine = GameSessionStateMachine(registry=RoomRegistry(MemoryRepo()), channel=EventChannel())
    await engine.create_room("E2", "MARBLE", host_id="h")
    for cid in ("a", "b"):
        await engine.apply("E2", InJoin(nickname=cid), client_id=cid)
    await engine.apply("E2", InStartGame(), client_id="h")
    before = await engine.registry.get_room("E2")

    sub = engine.channel.subscribe("E2", "host", "h")
    with pytest.raises(InvalidTransition):
        await engine.apply("E2", InChangePhase(phase="GAME"), client_id="h")
    with pytest.raises(InvalidTransition):
        await engine.apply("E2", InChangePhase(phase="NOWHERE"), client_id="h")

    after = await engine.registry.get_room("E2")
    assert after.phase == before.phase == "LOBBY"
    assert after.phase_epoch == before.phase_epoch
    assert sub.queue.empty()
