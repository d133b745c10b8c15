# app/domain/common/types.py
from __future__ import annotations

from typing import Literal

GameType = Literal["MARBLE", "MAFIA", "TRUTH", "QUIZ", "LIAR"]
GAME_TYPES: tuple[str, ...] = ("MARBLE", "MAFIA", "TRUTH", "QUIZ", "LIAR")

MarbleMode = Literal["SOLO", "TEAM"]
TeamMethod = Literal["RANDOM", "LADDER"]

MafiaNightAction = Literal["KILL", "SAVE", "INVESTIGATE"]

ReactionKind = Literal["FIREWORK", "BOO", "ANGRY"]
