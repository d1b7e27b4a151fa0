"""
Duplicate Detection

Groups stored establishments that describe the same venue.

Each pair is checked against three criteria in priority order; the first
that holds decides the pair:
    1. Both records carry the same non-empty external id.
    2. Dedup-normalized names are more than 90% similar AND addresses are
       more than 80% similar.
    3. Dedup-normalized names are identical AND addresses are more than
       60% similar.

An empty address on either side fails criteria 2 and 3, so two records
without external id and without address are never merged on name alone.

Grouping is a single pass over the records in the order given (callers
pass oldest first, so the oldest record becomes canonical). A record that
has joined a group never starts another one and is never added to a second
group, which keeps groups disjoint. The pass is O(n²) in the number of
records; it runs over a bounded catalog, not a hot path.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from reconciler.pipeline.normalize import (
    DEFAULT_ADDRESS_STOPWORDS,
    DEFAULT_GENERIC_WORDS,
    normalize_address,
    normalize_for_dedup,
)
from reconciler.pipeline.similarity import similarity
from reconciler.pipeline.types import DuplicateGroup, StoredEstablishment

logger = logging.getLogger(__name__)

SAME_EXTERNAL_ID = "same external id"
EXACT_NAME_SIMILAR_ADDRESS = "exact name, similar address"


@dataclass(frozen=True)
class DedupThresholds:
    """Similarity thresholds; each must be strictly exceeded."""
    name: float = 0.9
    address: float = 0.8
    exact_name_address: float = 0.6


class DuplicateDetector:
    """
    Multi-criteria pairwise duplicate detector.

    Example:
        >>> detector = DuplicateDetector()
        >>> groups = detector.find_duplicates(records)
        >>> for group in groups:
        ...     print(group.canonical_id, group.member_ids, group.reason)
    """

    def __init__(
        self,
        thresholds: Optional[DedupThresholds] = None,
        generic_words: Iterable[str] = DEFAULT_GENERIC_WORDS,
        address_stopwords: Iterable[str] = DEFAULT_ADDRESS_STOPWORDS,
    ):
        self.thresholds = thresholds or DedupThresholds()
        self.generic_words = tuple(generic_words)
        self.address_stopwords = tuple(address_stopwords)

    @classmethod
    def from_settings(cls, settings) -> "DuplicateDetector":
        return cls(
            thresholds=DedupThresholds(
                name=settings.dedup_name_threshold,
                address=settings.dedup_address_threshold,
                exact_name_address=settings.dedup_exact_name_address_threshold,
            ),
            generic_words=settings.dedup_generic_words_list,
            address_stopwords=settings.dedup_address_stopwords_list,
        )

    # =========================================================================
    # PAIRWISE CHECK
    # =========================================================================

    def compare(self, a: StoredEstablishment, b: StoredEstablishment) -> Optional[str]:
        """
        Decide whether two records are duplicates.

        Returns:
            The reason string of the first criterion that holds, or None
        """
        if a.external_id and b.external_id and a.external_id == b.external_id:
            return SAME_EXTERNAL_ID

        # Address-less records can only be merged through an external id
        address_a = normalize_address(a.address, self.address_stopwords)
        address_b = normalize_address(b.address, self.address_stopwords)
        if not address_a or not address_b:
            return None

        name_a = normalize_for_dedup(a.name, self.generic_words)
        name_b = normalize_for_dedup(b.name, self.generic_words)
        if not name_a or not name_b:
            return None

        name_score = similarity(name_a, name_b)
        address_score = similarity(address_a, address_b)

        if name_score > self.thresholds.name and address_score > self.thresholds.address:
            return (
                f"high similarity (name: {round(name_score * 100)}%, "
                f"address: {round(address_score * 100)}%)"
            )

        if name_a == name_b and address_score > self.thresholds.exact_name_address:
            return EXACT_NAME_SIMILAR_ADDRESS

        return None

    # =========================================================================
    # GROUPING
    # =========================================================================

    def find_duplicates(
        self,
        records: Sequence[StoredEstablishment],
    ) -> list[DuplicateGroup]:
        """
        Group records into disjoint duplicate clusters.

        Args:
            records: Stored establishments, canonical candidates first

        Returns:
            One DuplicateGroup per cluster with at least one member
        """
        assigned: set[int] = set()
        groups: list[DuplicateGroup] = []

        for i, origin in enumerate(records):
            if origin.id in assigned:
                continue

            group = DuplicateGroup(canonical_id=origin.id)
            for other in records[i + 1:]:
                if other.id in assigned or other.id == origin.id:
                    continue
                reason = self.compare(origin, other)
                if reason is None:
                    continue
                if not group.member_ids:
                    group.reason = reason
                group.member_ids.append(other.id)
                group.member_reasons[other.id] = reason
                assigned.add(other.id)

            if group.member_ids:
                assigned.add(origin.id)
                groups.append(group)
                logger.debug(
                    f"Duplicate group: #{origin.id} '{origin.name}' <- "
                    f"{group.member_ids} ({group.reason})"
                )

        logger.info(
            f"Duplicate scan: {len(records)} records, {len(groups)} groups, "
            f"{sum(len(g.member_ids) for g in groups)} duplicates"
        )
        return groups

    def find_duplicate_of(
        self,
        record: StoredEstablishment,
        existing: Sequence[StoredEstablishment],
    ) -> Optional[tuple[StoredEstablishment, str]]:
        """
        Find the first stored establishment that `record` duplicates.

        Used on the write path: the runner checks a freshly resolved venue
        against the store before persisting it.

        Returns:
            (existing establishment, reason), or None when nothing matches
        """
        for stored in existing:
            if stored.id == record.id:
                continue
            reason = self.compare(stored, record)
            if reason is not None:
                return stored, reason
        return None
