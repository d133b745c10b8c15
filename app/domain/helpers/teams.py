from __future__ import annotations

import random
import string
from typing import Dict, List, Optional, Sequence

from app.domain.common.errors import InvalidAction, PlayerNotFound
from app.store.models import RoomStore

MIN_TEAMS = 2
MAX_TEAMS = 5


def team_names(count: int) -> List[str]:
    return [string.ascii_uppercase[i] for i in range(count)]


def _check_count(team_count: int, player_count: int) -> None:
    if not MIN_TEAMS <= team_count <= MAX_TEAMS:
        raise InvalidAction(f"team_count must be between {MIN_TEAMS} and {MAX_TEAMS}", code="BAD_TEAM_COUNT")
    if player_count < team_count:
        raise InvalidAction("Not enough players for that many teams", code="NOT_ENOUGH_PLAYERS")


def divide_random(client_ids: Sequence[str], team_count: int, rng: Optional[random.Random] = None) -> Dict[str, List[str]]:
    """Shuffle and deal players round-robin, so team sizes differ by at most one."""
    _check_count(team_count, len(client_ids))
    rng = rng or random.Random()
    pool = list(client_ids)
    rng.shuffle(pool)

    teams = {name: [] for name in team_names(team_count)}
    names = list(teams.keys())
    for i, cid in enumerate(pool):
        teams[names[i % team_count]].append(cid)
    return teams


def divide_ladder(client_ids: Sequence[str], team_count: int, rng: Optional[random.Random] = None) -> Dict[str, List[str]]:
    """
    Ladder draw: players stand on lanes in join order and each lane ends on a
    randomly permuted slot; slot i belongs to team i % team_count.
    """
    _check_count(team_count, len(client_ids))
    rng = rng or random.Random()
    slots = list(range(len(client_ids)))
    rng.shuffle(slots)

    teams = {name: [] for name in team_names(team_count)}
    names = list(teams.keys())
    by_slot = sorted(zip(slots, client_ids))
    for slot, cid in by_slot:
        teams[names[slot % team_count]].append(cid)
    return teams


def apply_teams(room: RoomStore, teams: Dict[str, List[str]]) -> None:
    room.teams = {name: list(members) for name, members in teams.items()}
    for p in room.players.values():
        p.team = None
    for name, members in room.teams.items():
        for cid in members:
            if cid in room.players:
                room.players[cid].team = name


def select_team(room: RoomStore, client_id: str, team: str) -> None:
    """Manual pick: move one player into an existing team."""
    player = room.players.get(client_id)
    if player is None:
        raise PlayerNotFound(client_id)
    if team not in room.teams:
        raise InvalidAction(f"Unknown team: {team}", code="TEAM_NOT_FOUND")

    for members in room.teams.values():
        if client_id in members:
            members.remove(client_id)
    room.teams[team].append(client_id)
    player.team = team


def open_teams(room: RoomStore, team_count: int) -> None:
    """Empty teams for manual selection."""
    if not MIN_TEAMS <= team_count <= MAX_TEAMS:
        raise InvalidAction(f"team_count must be between {MIN_TEAMS} and {MAX_TEAMS}", code="BAD_TEAM_COUNT")
    apply_teams(room, {name: [] for name in team_names(team_count)})


def reset_teams(room: RoomStore) -> None:
    room.teams = {}
    for p in room.players.values():
        p.team = None
