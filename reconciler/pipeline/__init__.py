"""
Reconciliation pipeline: normalization, scoring, matching, extraction,
duplicate detection and the runner that drives them.
"""

from reconciler.pipeline.duplicates import DedupThresholds, DuplicateDetector
from reconciler.pipeline.matcher import ResolutionMatcher
from reconciler.pipeline.normalize import normalize, normalize_address, normalize_for_dedup
from reconciler.pipeline.similarity import similarity
from reconciler.pipeline.types import (
    MatchResult,
    MatchType,
    OutcomeStatus,
    RunConfig,
    RunMode,
    RunOutcome,
    RunReport,
    RunStatus,
    RunSummary,
)

__all__ = [
    "DedupThresholds",
    "DuplicateDetector",
    "ResolutionMatcher",
    "normalize",
    "normalize_address",
    "normalize_for_dedup",
    "similarity",
    "MatchResult",
    "MatchType",
    "OutcomeStatus",
    "RunConfig",
    "RunMode",
    "RunOutcome",
    "RunReport",
    "RunStatus",
    "RunSummary",
]
