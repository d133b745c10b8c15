from __future__ import annotations

from typing import Dict

from app.domain.common.errors import InvalidAction
from app.domain.common.fsm import GameModule
from app.domain.games.liar import LIAR
from app.domain.games.mafia import MAFIA
from app.domain.games.marble import MARBLE
from app.domain.games.quiz import QUIZ
from app.domain.games.truth import TRUTH

MODULES: Dict[str, GameModule] = {m.game_type: m for m in (MARBLE, MAFIA, TRUTH, QUIZ, LIAR)}


def get_module(game_type: str) -> GameModule:
    module = MODULES.get(game_type)
    if module is None:
        raise InvalidAction(f"Unknown game type: {game_type}", code="UNKNOWN_GAME")
    return module
