"""
Result Ranker for the Comparable Search Engine.

Orders candidates for presentation:
- Spatial mode: hierarchy matches first, then by distance
- Hierarchical mode: by price, then bedroom count

Truncation to the requested count happens only after sorting.
"""

from __future__ import annotations

from typing import Iterable, List

from .models import RankedComparable, SearchMode


class ResultRanker:
    """Stable sort of candidates by the mode's ordering key."""

    def rank(self, candidates: Iterable[RankedComparable], mode: SearchMode) -> List[RankedComparable]:
        """
        Sort candidates.

        Args:
            candidates: Every candidate from the accepted attempt
            mode: Location mode the candidates were found in

        Returns:
            New list in ranking order (input order kept on ties)
        """
        if mode is SearchMode.SPATIAL:
            return sorted(candidates, key=self._spatial_key)
        return sorted(candidates, key=self._hierarchical_key)

    @staticmethod
    def truncate(ranked: List[RankedComparable], limit: int) -> List[RankedComparable]:
        """Keep the first ``limit`` ranked candidates."""
        if limit < 0:
            raise ValueError("limit cannot be negative")
        return ranked[:limit]

    def rank_and_truncate(
        self,
        candidates: Iterable[RankedComparable],
        mode: SearchMode,
        limit: int,
    ) -> List[RankedComparable]:
        return self.truncate(self.rank(candidates, mode), limit)

    @staticmethod
    def _spatial_key(candidate: RankedComparable):
        distance = candidate.distance_meters
        return (
            candidate.hierarchy_priority,
            distance if distance is not None else float("inf"),
        )

    @staticmethod
    def _hierarchical_key(candidate: RankedComparable):
        return (candidate.record.price, candidate.record.bedrooms)
