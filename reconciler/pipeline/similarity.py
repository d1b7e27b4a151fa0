"""
String similarity based on normalized Levenshtein distance.
"""

from rapidfuzz.distance import Levenshtein


def similarity(a: str, b: str) -> float:
    """
    Return ``1 - lev(a, b) / max(len(a), len(b))``.

    Symmetric and reflexive; two empty strings score 1.0. Callers pass
    already-normalized strings.

    >>> similarity("tortuga", "tortuga")
    1.0
    >>> round(similarity("kings pub", "king pub"), 3)
    0.889
    """
    if not a and not b:
        return 1.0
    return float(Levenshtein.normalized_similarity(a, b))
