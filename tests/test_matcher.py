"""
Tests for resolving input names against candidate catalogs.
"""

import pytest

from reconciler.pipeline.matcher import ResolutionMatcher
from reconciler.pipeline.types import CandidateRecord, MatchType


def cand(external_id, name):
    return CandidateRecord(external_id=external_id, display_name=name)


CATALOG = [
    cand("p-trabuxu", "Trabuxu Bistro"),
    cand("p-tortuga", "Tortuga"),
    cand("p-kings", "Kings Pub"),
]


class TestResolve:

    def setup_method(self):
        self.matcher = ResolutionMatcher(threshold=0.85)

    def test_exact_match_ignores_case_and_punctuation(self):
        result = self.matcher.resolve("  trabuxu BISTRO! ", CATALOG)
        assert result.match_type == MatchType.EXACT
        assert result.score == 1.0
        assert result.matched_record.external_id == "p-trabuxu"

    def test_exact_match_wins_over_earlier_fuzzy_candidate(self):
        catalog = [cand("p-1", "Kings Pubs"), cand("p-2", "Kings Pub")]
        result = self.matcher.resolve("Kings Pub", catalog)
        assert result.match_type == MatchType.EXACT
        assert result.matched_record.external_id == "p-2"

    def test_first_exact_match_wins(self):
        catalog = [cand("p-1", "Tortuga"), cand("p-2", "TORTUGA")]
        assert self.matcher.resolve("Tortuga", catalog).matched_record.external_id == "p-1"

    def test_fuzzy_match_above_threshold(self):
        result = self.matcher.resolve("Kings Pubb", CATALOG)
        assert result.match_type == MatchType.FUZZY
        assert result.matched_record.external_id == "p-kings"
        assert result.score == pytest.approx(0.9)

    def test_below_threshold_is_not_found(self):
        result = self.matcher.resolve("Totally Unknown Venue Xyz123", CATALOG)
        assert result.match_type == MatchType.NOT_FOUND
        assert result.matched_record is None
        assert result.score == 0.0
        assert not result.is_match

    def test_fuzzy_tie_keeps_first(self):
        catalog = [cand("p-1", "Tortugb"), cand("p-2", "Tortugc")]
        result = ResolutionMatcher(threshold=0.5).resolve("Tortuga", catalog)
        assert result.matched_record.external_id == "p-1"

    def test_threshold_is_inclusive(self):
        result = ResolutionMatcher(threshold=0.9).resolve("Kings Pubb", CATALOG)
        assert result.match_type == MatchType.FUZZY

    def test_empty_catalog(self):
        assert self.matcher.resolve("Tortuga", []).match_type == MatchType.NOT_FOUND

    @pytest.mark.parametrize("name", ["", "   ", "!!!"])
    def test_blank_input(self, name):
        assert self.matcher.resolve(name, CATALOG).match_type == MatchType.NOT_FOUND

    def test_candidates_without_external_id_never_match(self):
        catalog = [cand("", "Tortuga"), cand("p-2", "Kings Pub")]
        assert self.matcher.resolve("Tortuga", catalog).match_type == MatchType.NOT_FOUND

    def test_input_name_preserved(self):
        assert self.matcher.resolve("Tortuga!", CATALOG).input_name == "Tortuga!"


class TestResolveMany:

    def test_resolves_in_order(self):
        results = ResolutionMatcher().resolve_many(["Tortuga", "Nowhere At All"], CATALOG)
        assert [r.match_type for r in results] == [MatchType.EXACT, MatchType.NOT_FOUND]


class TestConstruction:

    @pytest.mark.parametrize("threshold", [-0.1, 1.5])
    def test_rejects_out_of_range_threshold(self, threshold):
        with pytest.raises(ValueError):
            ResolutionMatcher(threshold=threshold)
