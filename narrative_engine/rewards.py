"""Token reward formulas for predictions.

Two multiplier tables coexist on purpose: ``vote_reward`` pays out correct
votes at resolution time, ``estimated_reward`` is the figure shown when a
prediction is generated. They are kept separate rather than unified.
"""
from __future__ import annotations

import math
from typing import Dict, Optional

from .models import Difficulty

VOTE_MULTIPLIERS: Dict[str, float] = {
    "easy": 1.2,
    "medium": 1.5,
    "hard": 2.0,
    "extreme": 3.0,
}

ESTIMATE_MULTIPLIERS: Dict[str, float] = {
    "easy": 1.0,
    "medium": 2.0,
    "hard": 5.0,
    "extreme": 10.0,
}

DEFAULT_VOTE_MULTIPLIER = 1.5
DEFAULT_ESTIMATE_MULTIPLIER = 2.0


def _difficulty_key(difficulty: Difficulty | str) -> str:
    return difficulty.value if isinstance(difficulty, Difficulty) else str(difficulty)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def vote_reward(
    amount: int,
    difficulty: Difficulty | str,
    multipliers: Optional[Dict[str, float]] = None,
) -> int:
    """Reward for one correct vote: ``round(amount * multiplier)``."""

    if amount <= 0:
        return 0
    table = multipliers or VOTE_MULTIPLIERS
    multiplier = table.get(_difficulty_key(difficulty), DEFAULT_VOTE_MULTIPLIER)
    return max(0, _round_half_up(amount * multiplier))


def estimated_reward(
    stake: int,
    difficulty: Difficulty | str,
    confidence: int,
    accuracy: float = 1.0,
    multipliers: Optional[Dict[str, float]] = None,
) -> int:
    if stake <= 0 or confidence <= 0:
        return 0
    table = multipliers or ESTIMATE_MULTIPLIERS
    multiplier = table.get(_difficulty_key(difficulty), DEFAULT_ESTIMATE_MULTIPLIER)
    accuracy = max(0.0, min(1.0, float(accuracy)))
    base = stake * 2 + stake * (multiplier - 1)
    return max(0, int(math.floor(base * (confidence / 50) * accuracy)))


__all__ = [
    "VOTE_MULTIPLIERS",
    "ESTIMATE_MULTIPLIERS",
    "vote_reward",
    "estimated_reward",
]
