import random

import pytest

from app.domain.engine import GameSessionStateMachine
from app.store.memory_repo import MemoryRepo
from app.store.registry import RoomRegistry
from app.transport.channel import EventChannel
from app.transport.protocols import (
    InChangePhase,
    InDisconnect,
    InJoin,
    InNextPhase,
    InSnapshot,
    InStartGame,
    InSubmitItem,
    InToggleVote,
)


def _engine():
    return GameSessionStateMachine(
        registry=RoomRegistry(MemoryRepo()),
        channel=EventChannel(),
        tick_interval=60.0,
        rng=random.Random(9),
    )


async def _room_in_vote(engine, code="1234"):
    await engine.create_room(code, "MARBLE", host_id="h")
    for cid in ("p1", "p2", "p3"):
        await engine.apply(code, InJoin(nickname=cid), client_id=cid)
    await engine.apply(code, InStartGame(), client_id="h")
    await engine.apply(code, InNextPhase(), client_id="h")
    await engine.apply(code, InSubmitItem(text="push-ups"), client_id="p1")
    await engine.apply(code, InSubmitItem(text="sing"), client_id="p2")
    await engine.apply(code, InChangePhase(phase="VOTE"), client_id="h")
    return await engine.registry.get_room(code)


@pytest.mark.asyncio
async def test_reconnecting_player_sees_same_state_as_connected_one():
    engine = _engine()
    room = await _room_in_vote(engine)
    first, second = room.items[0].id, room.items[1].id

    stayer = engine.channel.subscribe("1234", "player", "p1")
    dropper = engine.channel.subscribe("1234", "player", "p2")

    await engine.apply("1234", InToggleVote(item_id=first), client_id="p2")

    # p2's socket drops
    engine.channel.unsubscribe(dropper)
    applied = await engine.apply("1234", InDisconnect(), client_id="p2")
    assert applied.events[0].reason == "disconnect"

    await engine.apply("1234", InToggleVote(item_id=first), client_id="p1")
    await engine.apply("1234", InToggleVote(item_id=second), client_id="p3")

    # p2 comes back with the same client id and pulls a snapshot
    engine.channel.subscribe("1234", "player", "p2")
    rejoin = await engine.apply("1234", InJoin(nickname="p2"), client_id="p2")
    assert rejoin.replies[0].is_new is False
    resync = (await engine.apply("1234", InSnapshot(), client_id="p2")).replies[0]

    live = await engine.snapshot("1234")
    assert resync.phase == live.phase == "VOTE"
    assert resync.phase_epoch == live.phase_epoch
    assert resync.state["items"] == live.state["items"]
    assert {i["id"]: i["votes"] for i in resync.state["items"]} == {first: 2, second: 1}
    assert [p["client_id"] for p in resync.players] == ["p1", "p2", "p3"]
    assert all(p["connected"] for p in resync.players)

    # the connected client saw every vote change as it happened
    seen = []
    while not stayer.queue.empty():
        seen.append(stayer.queue.get_nowait())
    assert [e["type"] for e in seen].count("vote_progress") == 3


@pytest.mark.asyncio
async def test_snapshot_hides_private_fields():
    engine = _engine()
    await _room_in_vote(engine)
    snap = await engine.snapshot("1234")
    for p in snap.players:
        assert "role" not in p
        assert "joined_at" not in p
    assert snap.host_id == "h"
    assert snap.started is True
