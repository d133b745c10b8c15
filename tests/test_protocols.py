import pytest
from pydantic import ValidationError

from app.transport.protocols import parse_incoming


def test_parse_incoming_join():
    msg = parse_incoming({"type": "join", "nickname": "Mina"})
    assert msg.type == "join"
    assert msg.nickname == "Mina"


def test_parse_incoming_select_mode_bounds():
    msg = parse_incoming({"type": "select_mode", "mode": "TEAM", "team_count": 3})
    assert msg.mode == "TEAM"
    assert msg.team_count == 3

    with pytest.raises(ValidationError):
        parse_incoming({"type": "select_mode", "mode": "TEAM", "team_count": 6})

    with pytest.raises(ValidationError):
        parse_incoming({"type": "select_mode", "mode": "DUO"})


def test_parse_incoming_role_action():
    msg = parse_incoming({"type": "role_action", "target": "p2", "action": "KILL"})
    assert msg.action == "KILL"

    with pytest.raises(ValidationError):
        parse_incoming({"type": "role_action", "target": "p2", "action": "POISON"})


def test_parse_incoming_stress_score_range():
    assert parse_incoming({"type": "stress_score", "level": 72.5}).level == 72.5
    with pytest.raises(ValidationError):
        parse_incoming({"type": "stress_score", "level": 101})


def test_parse_incoming_optional_targets():
    assert parse_incoming({"type": "select_answerer"}).target is None
    assert parse_incoming({"type": "select_question", "item_id": "abc"}).item_id == "abc"


def test_parse_incoming_empty_submission_rejected():
    with pytest.raises(ValidationError):
        parse_incoming({"type": "submit_item", "text": ""})


def test_parse_incoming_unknown_type():
    with pytest.raises(ValueError):
        parse_incoming({"type": "does_not_exist"})


def test_parse_incoming_missing_type():
    with pytest.raises(ValueError):
        parse_incoming({"nickname": "x"})


def test_server_internal_types_not_parseable():
    with pytest.raises(ValueError):
        parse_incoming({"type": "timer_tick", "epoch": 3})
    with pytest.raises(ValueError):
        parse_incoming({"type": "disconnect"})


def test_parse_incoming_phase_epoch_is_optional():
    assert parse_incoming({"type": "next_phase"}).epoch is None
    assert parse_incoming({"type": "change_phase", "phase": "VOTE", "epoch": 4}).epoch == 4
    assert parse_incoming({"type": "explain_done", "epoch": 2}).epoch == 2


def test_parse_incoming_reaction_kinds():
    assert parse_incoming({"type": "reaction", "kind": "BOO"}).kind == "BOO"
    with pytest.raises(ValidationError):
        parse_incoming({"type": "reaction", "kind": "CONFETTI"})
