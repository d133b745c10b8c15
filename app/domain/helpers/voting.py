from __future__ import annotations

import uuid
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from app.domain.common.errors import InvalidAction, LimitExceeded, PlayerNotFound
from app.store.models import ItemStore, RoomStore


def submit(room: RoomStore, author_id: str, text: str, cap: int) -> ItemStore:
    """
    Append a submission for author_id.
    - Raises LimitExceeded once the author already holds `cap` items.
    - Item ids are short random hex strings.
    """
    player = room.players.get(author_id)
    if player is None:
        raise PlayerNotFound(author_id)
    if player.submitted_count >= cap:
        raise LimitExceeded(cap)

    item = ItemStore(
        id=uuid.uuid4().hex[:10],
        author_id=author_id,
        author=player.nickname,
        text=text,
    )
    room.items.append(item)
    player.submitted_count += 1
    return item


def toggle(room: RoomStore, item_id: str, voter_id: str) -> ItemStore:
    """
    Flip voter_id's vote on one item. Two toggles cancel out.
    """
    item = next((i for i in room.items if i.id == item_id), None)
    if item is None:
        raise InvalidAction(f"Unknown item: {item_id}", code="ITEM_NOT_FOUND")

    if voter_id in item.voters:
        item.voters.remove(voter_id)
    else:
        item.voters.append(voter_id)
    item.votes = len(item.voters)
    return item


def mark_done(room: RoomStore, voter_id: str) -> None:
    player = room.players.get(voter_id)
    if player is None:
        raise PlayerNotFound(voter_id)
    player.is_vote_finished = True


def done_count(room: RoomStore) -> int:
    return sum(1 for p in room.players.values() if p.is_vote_finished)


def expected_count(room: RoomStore, exclude: Iterable[str] = ()) -> int:
    """Players expected to act, minus excluded client ids (e.g. the answerer)."""
    skip = set(exclude)
    return sum(1 for cid in room.players if cid not in skip)


def submitted_total(room: RoomStore) -> int:
    return len(room.items)


def tally_map(items: Sequence[ItemStore]) -> Dict[str, int]:
    return {i.id: i.votes for i in items}


def rank(items: Sequence[ItemStore], top_n: Optional[int] = None) -> List[ItemStore]:
    """
    Vote count descending; equal counts keep submission order.
    """
    ranked = sorted(items, key=lambda i: -i.votes)
    if top_n is not None:
        ranked = ranked[:top_n]
    return ranked


def reset_round(room: RoomStore) -> None:
    """Discard the round's items and per-player counters."""
    room.items = []
    for p in room.players.values():
        p.submitted_count = 0
        p.is_vote_finished = False


# ----------------------------
# Single-choice ballots (Mafia day vote, Liar pointing)
# ----------------------------

def cast_ballot(ballots: Dict[str, str], voter_id: str, choice: str) -> None:
    """One ballot per voter; a later ballot replaces the earlier one and counts as cast now."""
    ballots.pop(voter_id, None)
    ballots[voter_id] = choice


def tally(ballots: Dict[str, str]) -> List[Tuple[str, int]]:
    """
    (choice, count) pairs, most votes first.
    Ties go to the choice holding the oldest standing ballot.
    """
    counts: Dict[str, int] = {}
    for choice in ballots.values():
        counts[choice] = counts.get(choice, 0) + 1
    return sorted(counts.items(), key=lambda kv: -kv[1])


def plurality(ballots: Dict[str, str]) -> Optional[str]:
    """The unique top choice, or None on a tie or an empty ballot box."""
    ranked = tally(ballots)
    if not ranked:
        return None
    if len(ranked) > 1 and ranked[0][1] == ranked[1][1]:
        return None
    return ranked[0][0]
