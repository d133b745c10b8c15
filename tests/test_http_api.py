import pytest
from fastapi.testclient import TestClient

from app.main import create_app


@pytest.fixture
def client():
    with TestClient(create_app()) as c:
        yield c


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"ok": True, "store": "memory"}


def test_room_lifecycle_over_rest(client):
    res = client.post("/rooms", json={"game_type": "MARBLE", "room_code": "5555", "host_id": "h"})
    assert res.status_code == 201
    assert res.json()["phase"] == "LOBBY"

    for cid in ("p1", "p2"):
        res = client.post("/rooms/5555/join", json={"client_id": cid, "nickname": cid.upper()})
        assert res.status_code == 200
        body = res.json()
        assert body["replies"][0]["type"] == "joined"
        assert body["events"][0]["type"] == "player_joined"

    res = client.post("/rooms/5555/actions", json={"client_id": "p1", "action": {"type": "start_game"}})
    assert res.status_code == 403
    assert res.json()["detail"]["code"] == "NOT_HOST"

    res = client.post("/rooms/5555/actions", json={"client_id": "h", "action": {"type": "start_game"}})
    assert res.status_code == 200
    res = client.post("/rooms/5555/phase", json={"client_id": "h", "phase": "SUBMIT"})
    assert res.json()["phase"] == "SUBMIT"

    res = client.post("/rooms/5555/phase", json={"client_id": "h", "phase": "VOTE", "epoch": res.json()["epoch"] - 1})
    assert res.status_code == 409
    assert res.json()["detail"]["code"] == "STALE_PHASE"

    res = client.post("/rooms/5555/phase", json={"client_id": "h", "phase": "GAME"})
    assert res.status_code == 409
    assert res.json()["detail"]["code"] == "INVALID_TRANSITION"

    res = client.post("/rooms/5555/actions", json={"client_id": "p1", "action": {"type": "fly"}})
    assert res.status_code == 422
    assert res.json()["detail"]["code"] == "BAD_MESSAGE"

    for _ in range(2):
        client.post("/rooms/5555/actions", json={"client_id": "p1", "action": {"type": "submit_item", "text": "sing"}})
    res = client.post("/rooms/5555/actions", json={"client_id": "p1", "action": {"type": "submit_item", "text": "more"}})
    assert res.status_code == 409
    assert res.json()["detail"]["code"] == "LIMIT_EXCEEDED"

    snap = client.get("/rooms/5555").json()
    assert snap["type"] == "room_snapshot"
    assert snap["state"]["submitted"] == 2

    role = client.get("/rooms/5555/role", params={"client_id": "h"}).json()
    assert role["role"] == "HOST"

    res = client.post("/rooms/5555/leave", json={"client_id": "p2"})
    assert res.json()["events"][0]["reason"] == "leave"


def test_unknown_room_is_404(client):
    assert client.get("/rooms/0000").status_code == 404
    res = client.post("/rooms/0000/phase", json={"client_id": "h", "phase": "VOTE"})
    assert res.status_code == 404
    assert res.json()["detail"]["code"] == "ROOM_NOT_FOUND"


def test_admin_list_and_close(client):
    client.post("/rooms", json={"game_type": "QUIZ", "room_code": "7000"})
    rooms = client.get("/admin/rooms").json()["rooms"]
    assert [r["room_code"] for r in rooms] == ["7000"]
    assert rooms[0]["game_type"] == "QUIZ"

    assert client.post("/admin/rooms/7000/close").json() == {"ok": True, "room_code": "7000"}
    assert client.get("/rooms/7000").status_code == 404
    assert client.post("/admin/rooms/7000/close").status_code == 404
    assert client.get("/admin/channel").json()["published"] >= 1


def test_websocket_feed(client):
    with client.websocket_connect("/ws/4321?role=player&client_id=p1") as ws:
        hello = ws.receive_json()
        assert hello == {"type": "hello", "room_code": "4321", "client_id": "p1", "role": "player"}
        snap = ws.receive_json()
        assert snap["type"] == "room_snapshot"
        assert snap["game_type"] == "MARBLE"

        ws.send_text("not json")
        assert ws.receive_json()["code"] == "BAD_MESSAGE"

        ws.send_json({"type": "join", "nickname": "Ann"})
        got = {ws.receive_json()["type"], ws.receive_json()["type"]}
        assert got == {"joined", "player_joined"}

        ws.send_json({"type": "roll"})
        err = ws.receive_json()
        assert err["type"] == "error"
        assert err["code"] == "NOT_STARTED"


def test_second_host_is_refused(client):
    with client.websocket_connect("/ws/4322?role=host&client_id=h1") as ws:
        assert ws.receive_json()["type"] == "hello"
        with client.websocket_connect("/ws/4322?role=host&client_id=h2") as other:
            assert other.receive_json()["code"] == "NOT_HOST"
