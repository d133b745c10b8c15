from __future__ import annotations

from . import teams, turn_order, voting

__all__ = [
    "teams",
    "turn_order",
    "voting",
]
