"""
Comparable Search Engine v1.0

Finds ranked comparable properties for a subject from the listings store,
widening tolerances over a bounded number of attempts until enough matches
are found. Falls back from coordinates to the named location hierarchy
when coordinates are missing.
"""

from .errors import (
    CompEngineError,
    InvalidSearchCriteriaError,
    InvalidPropertyRecordError,
    StoreUnavailableError,
    IndexRebuildError,
)
from .models import (
    PropertyRecord,
    PropertyType,
    ListingKind,
    SearchMode,
    HierarchyLevel,
    SearchCriteria,
    RankedComparable,
    SearchResult,
)
from .location import LocationResolver, LocationDecision, MatchPolicy, normalize_location
from .criteria import ComparableFilter, CriteriaBuilder, PriceSegment, ToleranceSettings
from .store import PropertyStore, IndexSnapshot, StoreStats, UpsertResult, haversine_m
from .ranking import ResultRanker
from .diagnostics import AttemptRecord, DiagnosticsFeed, SearchDiagnostics, SearchOutcome
from .relaxation import RelaxationController, RelaxationPolicy, RelaxationState
from .service import (
    ComparableSearchService,
    criteria_from_payload,
    get_comparable_search_service,
    record_from_payload,
)

__all__ = [
    # Errors
    "CompEngineError",
    "InvalidSearchCriteriaError",
    "InvalidPropertyRecordError",
    "StoreUnavailableError",
    "IndexRebuildError",
    # Models
    "PropertyRecord",
    "PropertyType",
    "ListingKind",
    "SearchMode",
    "HierarchyLevel",
    "SearchCriteria",
    "RankedComparable",
    "SearchResult",
    # Components
    "LocationResolver",
    "LocationDecision",
    "MatchPolicy",
    "normalize_location",
    "ComparableFilter",
    "CriteriaBuilder",
    "PriceSegment",
    "ToleranceSettings",
    "PropertyStore",
    "IndexSnapshot",
    "StoreStats",
    "UpsertResult",
    "haversine_m",
    "ResultRanker",
    "AttemptRecord",
    "DiagnosticsFeed",
    "SearchDiagnostics",
    "SearchOutcome",
    "RelaxationController",
    "RelaxationPolicy",
    "RelaxationState",
    # Service
    "ComparableSearchService",
    "criteria_from_payload",
    "record_from_payload",
    "get_comparable_search_service",
]

__version__ = "1.0"
