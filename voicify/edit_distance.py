"""
Case-insensitive Levenshtein distance used to match spoken phrases against
recorded command names.
"""

from __future__ import annotations


def _normalize(value: str) -> str:
    return (value or "").strip().casefold()


def distance(a: str, b: str) -> int:
    """
    Return the unit-cost edit distance between two phrases.

    Both inputs are trimmed and case-folded first, so ``distance("Lights ",
    "light")`` is 1.
    """
    s1 = _normalize(a)
    s2 = _normalize(b)

    if s1 == s2:
        return 0
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    # Two rolling rows of the DP table
    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i] + [0] * len(s2)
        for j, c2 in enumerate(s2, start=1):
            current[j] = min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (0 if c1 == c2 else 1),
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Normalised similarity in [0, 1] derived from ``distance``. Display only."""
    longest = max(len(_normalize(a)), len(_normalize(b)))
    if longest == 0:
        return 1.0
    return 1.0 - distance(a, b) / longest
