# app/domain/helpers/turn_order.py
from __future__ import annotations

import random
from typing import Dict, List, Optional, Sequence

from app.store.models import ItemStore, TurnOrderStore

BOARD_SIZE = 28
START_TILE = 0
LOYALTY_FILL_TILE = 7
LOYALTY_DRINK_TILE = 21

SPECIAL_TILES: Dict[int, str] = {
    START_TILE: "START",
    LOYALTY_FILL_TILE: "LOYALTY_FILL",
    LOYALTY_DRINK_TILE: "LOYALTY_DRINK",
}


def build_solo_order(client_ids: Sequence[str], rng: Optional[random.Random] = None) -> TurnOrderStore:
    """Independent-player shuffle; every client acts for itself."""
    rng = rng or random.Random()
    seq = list(client_ids)
    rng.shuffle(seq)
    return TurnOrderStore(sequence=seq, cursor=0)


def build_team_order(teams: Dict[str, List[str]], rng: Optional[random.Random] = None) -> TurnOrderStore:
    """
    One token per non-empty team, shuffled. Members of the token's team
    move together when it is their turn.
    """
    rng = rng or random.Random()
    tokens = [name for name, members in teams.items() if members]
    rng.shuffle(tokens)
    groups = {name: list(teams[name]) for name in tokens}
    return TurnOrderStore(sequence=tokens, cursor=0, groups=groups)


def current(order: Optional[TurnOrderStore]) -> Optional[str]:
    if order is None or not order.sequence:
        return None
    return order.sequence[order.cursor]


def advance(order: TurnOrderStore) -> Optional[str]:
    if not order.sequence:
        order.cursor = 0
        return None
    order.cursor = (order.cursor + 1) % len(order.sequence)
    return order.sequence[order.cursor]


def members(order: TurnOrderStore, token: str) -> List[str]:
    """Clients that act for a token: the team in team mode, else the client itself."""
    if order.groups:
        return list(order.groups.get(token, []))
    return [token]


def is_actor(order: Optional[TurnOrderStore], client_id: str) -> bool:
    token = current(order)
    if token is None:
        return False
    return client_id in members(order, token)


def remove_client(order: TurnOrderStore, client_id: str) -> None:
    """
    Drop a client from the order, keeping the cursor on a valid index.
    In team mode a team token is removed once its last member leaves.
    """
    if order.groups:
        removed_tokens = []
        for token, group in order.groups.items():
            if client_id in group:
                group.remove(client_id)
                if not group:
                    removed_tokens.append(token)
        for token in removed_tokens:
            order.groups.pop(token, None)
            _remove_token(order, token)
        return

    if client_id in order.sequence:
        _remove_token(order, client_id)


def _remove_token(order: TurnOrderStore, token: str) -> None:
    idx = order.sequence.index(token)
    order.sequence.pop(idx)
    if not order.sequence:
        order.cursor = 0
        return
    # removing an earlier slot shifts the current actor left by one;
    # removing the current actor hands the turn to whoever followed it
    if idx < order.cursor:
        order.cursor -= 1
    order.cursor %= len(order.sequence)


def resolve_landing(position: int, items: Sequence[ItemStore]) -> Dict[str, object]:
    """
    Board tile content for a position on the 28-tile board.
    Fixed tiles win; every other tile cycles through the submitted items,
    so the same tile can show different text from game to game.
    """
    tile = position % BOARD_SIZE
    special = SPECIAL_TILES.get(tile)
    if special is not None:
        return {"tile": tile, "kind": special, "text": None}
    if not items:
        return {"tile": tile, "kind": "EMPTY", "text": None}
    item = items[tile % len(items)]
    return {"tile": tile, "kind": "ITEM", "text": item.text, "item_id": item.id}
