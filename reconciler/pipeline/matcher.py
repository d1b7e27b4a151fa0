"""
Resolution Matching

Maps an operator-supplied venue name onto one candidate of a catalog.

Rules, applied in order:
    1. An empty catalog or a name that normalizes to "" is NOT_FOUND.
    2. The first candidate, in catalog order, that carries an external id
       and whose normalized display name equals the normalized input is an
       EXACT match with score 1.0.
    3. Otherwise the candidate with the highest similarity wins (the first
       one on ties). At or above the threshold it is a FUZZY match,
       below it the input is NOT_FOUND.

Candidates without an external id cannot be extracted from, so they never
match.
"""

import logging
from typing import Iterable, Sequence

from reconciler.pipeline.normalize import normalize
from reconciler.pipeline.similarity import similarity
from reconciler.pipeline.types import CandidateRecord, MatchResult, MatchType

logger = logging.getLogger(__name__)


class ResolutionMatcher:
    """
    Exact-then-fuzzy resolver.

    Example:
        >>> matcher = ResolutionMatcher(threshold=0.85)
        >>> result = matcher.resolve("Trabuxu Bistro", candidates)
        >>> result.match_type
        <MatchType.EXACT: 'exact'>
    """

    def __init__(self, threshold: float = 0.85):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be within [0, 1]")
        self.threshold = threshold

    def resolve(
        self,
        input_name: str,
        catalog: Sequence[CandidateRecord],
    ) -> MatchResult:
        wanted = normalize(input_name)
        if not wanted or not catalog:
            return MatchResult.not_found(input_name)

        candidates = [
            (candidate, normalize(candidate.display_name))
            for candidate in catalog
            if candidate.external_id
        ]

        for candidate, name in candidates:
            if name == wanted:
                return MatchResult(
                    input_name=input_name,
                    matched_record=candidate,
                    score=1.0,
                    match_type=MatchType.EXACT,
                )

        best = None
        best_score = -1.0
        for candidate, name in candidates:
            score = similarity(wanted, name)
            if score > best_score:
                best, best_score = candidate, score

        if best is not None and best_score >= self.threshold:
            logger.debug(
                f"Fuzzy match: '{input_name}' -> '{best.display_name}' ({best_score:.2f})"
            )
            return MatchResult(
                input_name=input_name,
                matched_record=best,
                score=best_score,
                match_type=MatchType.FUZZY,
            )

        if best is not None:
            logger.debug(
                f"No match for '{input_name}' (best '{best.display_name}' at {best_score:.2f})"
            )
        return MatchResult.not_found(input_name)

    def resolve_many(
        self,
        names: Iterable[str],
        catalog: Sequence[CandidateRecord],
    ) -> list[MatchResult]:
        """Resolve every name against one pre-fetched catalog."""
        return [self.resolve(name, catalog) for name in names]
