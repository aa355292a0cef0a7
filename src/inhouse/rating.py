"""
Shared MMR helpers used by the allocator and the bracket engine.
"""
import random
from typing import List, Optional, Sequence

MAX_MEANINGFUL_MMR_DIFF = 3000
MIN_INFERRED_SYNERGY = 0.1


def ensure_numeric_rating(value) -> int:
    """Coerce a raw rating to a non-negative int (non-numeric becomes 0)."""
    if isinstance(value, bool):
        return 0
    try:
        rating = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(rating, 0)


def total_rating(players) -> int:
    return sum(p.rating for p in players)


def average_rating(players) -> int:
    """Rounded mean rating, 0 for an empty roster."""
    players = list(players)
    if not players:
        return 0
    return round(total_rating(players) / len(players))


def sort_by_rating(players) -> list:
    """Rating descending, ties by name ascending."""
    return sorted(players, key=lambda p: (-p.rating, p.name))


def shuffled(items: Sequence, rng: Optional[random.Random] = None) -> List:
    """Return a Fisher-Yates shuffled copy; the input is left untouched."""
    rng = rng or random
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result


def inferred_synergy(rating_a: int, rating_b: int) -> float:
    """Estimate synergy from rating proximity when nothing is recorded."""
    diff = abs(rating_a - rating_b)
    return max(MIN_INFERRED_SYNERGY, 1 - diff / MAX_MEANINGFUL_MMR_DIFF)
