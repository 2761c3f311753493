"""
Tests for the result ranker.

Verifies:
- Spatial order: hierarchy matches first, then distance
- Hierarchical order: price, then bedrooms
- Stable on ties
- Truncation happens after sorting
"""

import pytest
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.comp_engine import HierarchyLevel, RankedComparable, ResultRanker, SearchMode


@pytest.fixture
def ranker():
    return ResultRanker()


@pytest.fixture
def make_ranked(make_record):
    """Factory fixture for ranked comparables."""
    def _create(record_id, distance=None, level=None, **record_fields):
        return RankedComparable(
            record=make_record(record_id, **record_fields),
            distance_meters=distance,
            match_level=level,
        )
    return _create


class TestSpatialRanking:
    """Tests for spatial-mode ordering."""

    def test_hierarchy_match_outranks_nearer_coordinate_match(self, ranker, make_ranked):
        near = make_ranked("NEAR", distance=200.0)
        urb = make_ranked("URB", distance=100.0, level=HierarchyLevel.URBANIZATION)
        suburb = make_ranked("SUB", distance=500.0, level=HierarchyLevel.SUBURB)

        ranked = ranker.rank([near, suburb, urb], SearchMode.SPATIAL)

        assert [c.record.id for c in ranked] == ["URB", "SUB", "NEAR"]

    def test_distance_ascending(self, ranker, make_ranked):
        ranked = ranker.rank(
            [make_ranked("C", 3_000.0), make_ranked("A", 1_000.0), make_ranked("B", 2_000.0)],
            SearchMode.SPATIAL,
        )
        assert [c.record.id for c in ranked] == ["A", "B", "C"]

    def test_stable_on_ties(self, ranker, make_ranked):
        ranked = ranker.rank(
            [make_ranked("FIRST", 1_000.0), make_ranked("SECOND", 1_000.0)],
            SearchMode.SPATIAL,
        )
        assert [c.record.id for c in ranked] == ["FIRST", "SECOND"]

    def test_missing_distance_sorts_last(self, ranker, make_ranked):
        ranked = ranker.rank(
            [make_ranked("NONE", None), make_ranked("FAR", 8_000.0)],
            SearchMode.SPATIAL,
        )
        assert [c.record.id for c in ranked] == ["FAR", "NONE"]


class TestHierarchicalRanking:
    """Tests for hierarchical-mode ordering."""

    def test_price_then_bedrooms(self, ranker, make_ranked):
        ranked = ranker.rank(
            [
                make_ranked("B", price=400_000, bedrooms=3),
                make_ranked("A", price=400_000, bedrooms=2),
                make_ranked("C", price=350_000, bedrooms=4),
            ],
            SearchMode.HIERARCHICAL,
        )
        assert [c.record.id for c in ranked] == ["C", "A", "B"]

    def test_distance_ignored(self, ranker, make_ranked):
        ranked = ranker.rank(
            [make_ranked("CHEAP", 9_000.0, price=300_000), make_ranked("DEAR", 10.0, price=500_000)],
            SearchMode.HIERARCHICAL,
        )
        assert [c.record.id for c in ranked] == ["CHEAP", "DEAR"]


class TestTruncation:
    """Tests for truncation order."""

    def test_truncate_after_sort(self, ranker, make_ranked):
        candidates = [make_ranked(f"R{i}", distance=1_000.0 * (10 - i)) for i in range(10)]

        top = ranker.rank_and_truncate(candidates, SearchMode.SPATIAL, 3)

        # Best candidates arrive last in the input
        assert [c.record.id for c in top] == ["R9", "R8", "R7"]

    def test_truncate_shorter_input(self, ranker, make_ranked):
        assert len(ranker.truncate([make_ranked("A", 1.0)], 5)) == 1

    def test_negative_limit_rejected(self, ranker):
        with pytest.raises(ValueError):
            ranker.truncate([], -1)
