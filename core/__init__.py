"""
Comparable Engine - Core Business Logic

This module provides the comparable search pipeline:
1. Location Resolution (spatial vs. location hierarchy)
2. Criteria Building (per-attempt tolerance windows)
3. Store Query (indexed snapshot, radius + hierarchy matching)
4. Ranking (hierarchy/distance or price/bedrooms)
5. Progressive Relaxation (bounded attempts, diagnostics per attempt)
"""

from .comp_engine import (
    PropertyRecord,
    PropertyType,
    ListingKind,
    SearchCriteria,
    SearchResult,
    PropertyStore,
    RelaxationController,
    ComparableSearchService,
    get_comparable_search_service,
)

__all__ = [
    "PropertyRecord",
    "PropertyType",
    "ListingKind",
    "SearchCriteria",
    "SearchResult",
    "PropertyStore",
    "RelaxationController",
    "ComparableSearchService",
    "get_comparable_search_service",
]
