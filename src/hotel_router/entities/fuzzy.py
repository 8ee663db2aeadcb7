"""Edit-distance spelling correction against the entity dictionary."""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

from rapidfuzz.distance import Levenshtein

from hotel_router.config import FuzzyConfig


@dataclass(frozen=True, slots=True)
class FuzzyMatch:
    corrected: str
    distance: int


class FuzzyMatcher:
    """Maps a misspelled word to the closest dictionary entry.

    A match is accepted when its Levenshtein distance is within
    `max(min_distance, floor(tolerance_ratio * len(word)))`. Ties go to the
    first entry in iteration order.
    """

    def __init__(self, config: FuzzyConfig | None = None) -> None:
        self.config = config or FuzzyConfig()

    def threshold(self, word: str) -> int:
        return max(
            self.config.min_distance,
            math.floor(self.config.tolerance_ratio * len(word)),
        )

    def correct(self, word: str, dictionary: Iterable[str]) -> FuzzyMatch | None:
        needle = word.lower()
        if not needle:
            return None
        limit = self.threshold(needle)

        best: FuzzyMatch | None = None
        for entry in dictionary:
            candidate = entry.lower()
            # Length difference is a lower bound on the edit distance.
            if abs(len(candidate) - len(needle)) > limit:
                continue
            distance = Levenshtein.distance(needle, candidate, score_cutoff=limit)
            if distance > limit:
                continue
            if best is None or distance < best.distance:
                best = FuzzyMatch(corrected=entry, distance=distance)
                if distance == 0:
                    break
        return best


def edit_distance(a: str, b: str) -> int:
    return Levenshtein.distance(a.lower(), b.lower())
