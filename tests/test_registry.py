import asyncio

import pytest

from app.domain.common.errors import PlayerNotFound, RoomNotFound
from app.store.memory_repo import MemoryRepo
from app.store.registry import RoomRegistry, drop_player, upsert_player


@pytest.mark.asyncio
async def test_create_room_is_idempotent():
    reg = RoomRegistry(MemoryRepo())
    room, created = await reg.create_room("1234", "MARBLE", "LOBBY", host_id="h")
    assert created is True
    assert room.phase == "LOBBY"

    again, created = await reg.create_room("1234", "MAFIA", "NIGHT")
    assert created is False
    assert again.game_type == "MARBLE"
    assert again.host_id == "h"


@pytest.mark.asyncio
async def test_session_commits_on_success():
    reg = RoomRegistry(MemoryRepo())
    await reg.create_room("R1", "MARBLE", "LOBBY")

    async with reg.session("R1") as room:
        room.phase = "SUBMIT"

    assert (await reg.get_room("R1")).phase == "SUBMIT"


@pytest.mark.asyncio
async def test_session_discards_changes_on_error():
    reg = RoomRegistry(MemoryRepo())
    await reg.create_room("R1", "MARBLE", "LOBBY")

    with pytest.raises(PlayerNotFound):
        async with reg.session("R1") as room:
            room.phase = "SUBMIT"
            drop_player(room, "ghost")

    assert (await reg.get_room("R1")).phase == "LOBBY"


@pytest.mark.asyncio
async def test_missing_room_raises():
    reg = RoomRegistry(MemoryRepo())
    with pytest.raises(RoomNotFound):
        await reg.get_room("nope")
    with pytest.raises(RoomNotFound):
        async with reg.session("nope"):
            pass
    with pytest.raises(RoomNotFound):
        await reg.delete_room("nope")


@pytest.mark.asyncio
async def test_add_player_rejoin_keeps_join_order():
    reg = RoomRegistry(MemoryRepo())
    await reg.create_room("R1", "MARBLE", "LOBBY")

    p, is_new = await reg.add_player("R1", "a", "Ann")
    assert is_new is True
    await reg.add_player("R1", "b", "Ben")

    async with reg.session("R1") as room:
        room.players["a"].connected = False

    p, is_new = await reg.add_player("R1", "a", "Annie")
    assert is_new is False
    room = await reg.get_room("R1")
    assert room.players["a"].nickname == "Annie"
    assert room.players["a"].connected is True
    assert len(room.players) == 2


@pytest.mark.asyncio
async def test_remove_player_clears_team_membership():
    reg = RoomRegistry(MemoryRepo())
    await reg.create_room("R1", "MARBLE", "LOBBY")
    await reg.add_player("R1", "a", "Ann")

    async with reg.session("R1") as room:
        room.teams = {"A": ["a"], "B": []}

    removed = await reg.remove_player("R1", "a")
    assert removed.client_id == "a"
    room = await reg.get_room("R1")
    assert room.players == {}
    assert room.teams == {"A": [], "B": []}

    with pytest.raises(PlayerNotFound):
        await reg.remove_player("R1", "a")


@pytest.mark.asyncio
async def test_idle_rooms_and_delete():
    reg = RoomRegistry(MemoryRepo())
    await reg.create_room("R1", "MARBLE", "LOBBY")
    await reg.create_room("R2", "QUIZ", "TEAM_SETUP")

    room = await reg.get_room("R1")
    idle = await reg.idle_rooms(room.last_activity + 100, ttl_sec=60)
    assert sorted(idle) == ["R1", "R2"]
    assert await reg.idle_rooms(room.last_activity, ttl_sec=60) == []

    await reg.delete_room("R1")
    assert await reg.room_exists("R1") is False
    assert [r.room_code for r in await reg.list_rooms()] == ["R2"]


def test_upsert_player_returns_is_new():
    from app.store.models import RoomStore

    room = RoomStore(room_code="R", game_type="LIAR", phase="LOBBY", created_at=0, last_activity=0)
    p, is_new = upsert_player(room, "x", "Xi", 5)
    assert is_new is True
    assert p.joined_at == 5
    _, is_new = upsert_player(room, "x", "Xi", 9)
    assert is_new is False
    assert room.players["x"].joined_at == 5
    assert room.players["x"].last_seen == 9


@pytest.mark.asyncio
async def test_locks_do_not_outlive_their_users():
    repo = MemoryRepo()
    reg = RoomRegistry(repo)
    for i in range(50):
        with pytest.raises(RoomNotFound):
            async with reg.session(f"nope{i}"):
                pass
    assert reg._locks == {}

    await reg.create_room("R1", "MARBLE", "LOBBY")
    # expired behind the registry's back, as a Redis TTL would
    await repo.delete("R1")
    with pytest.raises(RoomNotFound):
        async with reg.session("R1"):
            pass
    assert reg._locks == {}


@pytest.mark.asyncio
async def test_waiting_sessions_share_one_lock():
    reg = RoomRegistry(MemoryRepo())
    await reg.create_room("R1", "MARBLE", "LOBBY")

    async def add(cid):
        async with reg.session("R1") as room:
            await asyncio.sleep(0)
            upsert_player(room, cid, cid, 1)

    await asyncio.gather(*(add(f"p{i}") for i in range(10)))
    assert len((await reg.get_room("R1")).players) == 10
    assert reg._locks == {}
