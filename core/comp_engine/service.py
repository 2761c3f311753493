"""
Comparable Search Service.

Wires the engine components together from application configuration and
adapts raw feed / API payloads into engine models:
- Listing kind from ``listing_kind`` or the is_sale / is_long_term /
  is_short_term flags
- Price picked by listing kind (sale_price, monthly_price,
  weekly_price_from / weekly_price_to)
- Field-name variants used by the feed and older clients
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional, Union

from utils.config import Config
from utils.formatting import format_currency

from .criteria import CriteriaBuilder
from .diagnostics import AttemptRecord, DiagnosticsFeed
from .errors import InvalidPropertyRecordError, InvalidSearchCriteriaError
from .location import LocationResolver
from .models import (
    DEFAULT_RESULT_LIMIT,
    ListingKind,
    PropertyRecord,
    PropertyType,
    SearchCriteria,
    SearchResult,
    parse_bool,
)
from .ranking import ResultRanker
from .relaxation import RelaxationController
from .store import PropertyStore, StoreStats, UpsertResult


logger = logging.getLogger(__name__)


# =============================================================================
# Payload Adapters
# =============================================================================

_AREA_FIELDS = ("build_area", "build_size", "build_square_meters", "size")
_LATITUDE_FIELDS = ("latitude", "lat")
_LONGITUDE_FIELDS = ("longitude", "lng", "lon")
_TYPE_FIELDS = ("property_type", "type")
_LISTING_FLAGS = ("is_sale", "is_long_term", "is_short_term")
_PRICE_FIELDS = {
    ListingKind.SALE: ("sale_price", "price"),
    ListingKind.LONG_TERM_RENTAL: ("monthly_price", "rent_price", "price"),
    ListingKind.SHORT_TERM_RENTAL: ("weekly_price_from", "weekly_price_to", "weekly_price", "price"),
}


def _first(data: dict, names: Iterable[str]) -> Any:
    """First non-empty value among alternative field names."""
    for name in names:
        value = data.get(name)
        if value is not None and value != "":
            return value
    return None


def _optional_number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _listing_kind(data: dict) -> ListingKind:
    """
    Resolve listing kind from an explicit field or the feed flags.

    An explicit kind must agree with any flag that is set.

    Raises:
        ValueError: If the kind is unknown, missing or the flags conflict
    """
    flags = {name: parse_bool(data.get(name)) for name in _LISTING_FLAGS}
    if data.get("listing_kind") in (None, ""):
        return ListingKind.from_flags(**flags)

    kind = ListingKind.from_string(data["listing_kind"])
    if kind is None:
        raise ValueError(f"unknown listing_kind: {data['listing_kind']!r}")
    if any(flags.values()):
        flagged = ListingKind.from_flags(**flags)
        if flagged is not kind:
            raise ValueError(
                f"listing_kind {kind.value} conflicts with flags for {flagged.value}"
            )
    return kind


def _property_type(data: dict) -> PropertyType:
    raw = _first(data, _TYPE_FIELDS)
    property_type = PropertyType.from_string(raw)
    if property_type is None:
        raise ValueError(f"unknown property_type: {raw!r}")
    return property_type


def _price(data: dict, kind: ListingKind) -> Optional[float]:
    return _optional_number(_first(data, _PRICE_FIELDS[kind]))


def record_from_payload(data: dict) -> PropertyRecord:
    """
    Build a PropertyRecord from a feed-style payload.

    Raises:
        InvalidPropertyRecordError: If required fields are missing or invalid
    """
    if not isinstance(data, dict):
        raise InvalidPropertyRecordError(f"record must be an object, got {type(data).__name__}")
    try:
        kind = _listing_kind(data)
        last_updated = data.get("last_updated") or data.get("last_updated_at")
        if isinstance(last_updated, str):
            last_updated = datetime.fromisoformat(last_updated)
        record_id = _first(data, ("id", "property_id"))
        reference = _first(data, ("reference", "ref"))
        return PropertyRecord(
            id=str(record_id) if record_id is not None else "",
            reference=str(reference) if reference is not None else "",
            property_type=_property_type(data),
            listing_kind=kind,
            price=_price(data, kind) or 0.0,
            bedrooms=int(data.get("bedrooms") or 0),
            bathrooms=float(data.get("bathrooms") or 0),
            build_area=_optional_number(_first(data, _AREA_FIELDS)) or 0.0,
            plot_area=_optional_number(_first(data, ("plot_area", "plot_size"))) or 0.0,
            terrace_area=_optional_number(data.get("terrace_area")) or 0.0,
            latitude=_optional_number(_first(data, _LATITUDE_FIELDS)),
            longitude=_optional_number(_first(data, _LONGITUDE_FIELDS)),
            urbanization=_first(data, ("urbanization", "urbanisation")) or "",
            suburb=data.get("suburb") or "",
            city=data.get("city") or "",
            province=data.get("province") or "",
            address=data.get("address") or "",
            features=frozenset(data.get("features") or ()),
            images=tuple(data.get("images") or ()),
            is_active=parse_bool(data.get("is_active"), default=True),
            last_updated=last_updated,
        )
    except InvalidPropertyRecordError:
        raise
    except (TypeError, ValueError) as e:
        raise InvalidPropertyRecordError(str(e)) from e


def criteria_from_payload(data: dict, default_limit: int = DEFAULT_RESULT_LIMIT) -> SearchCriteria:
    """
    Build SearchCriteria from a subject payload.

    Raises:
        InvalidSearchCriteriaError: If the payload is malformed
    """
    if not isinstance(data, dict):
        raise InvalidSearchCriteriaError(f"criteria must be an object, got {type(data).__name__}")
    try:
        kind = _listing_kind(data)
        limit = data.get("limit")
        return SearchCriteria(
            property_type=_property_type(data),
            listing_kind=kind,
            price=_price(data, kind),
            bedrooms=int(data["bedrooms"]) if data.get("bedrooms") is not None else None,
            build_area=_optional_number(_first(data, _AREA_FIELDS)),
            latitude=_optional_number(_first(data, _LATITUDE_FIELDS)),
            longitude=_optional_number(_first(data, _LONGITUDE_FIELDS)),
            urbanization=_first(data, ("urbanization", "urbanisation")) or "",
            suburb=data.get("suburb") or "",
            city=data.get("city") or "",
            province=data.get("province") or "",
            min_price=_optional_number(data.get("min_price")),
            max_price=_optional_number(data.get("max_price")),
            min_area=_optional_number(data.get("min_area")),
            max_area=_optional_number(data.get("max_area")),
            reference=_first(data, ("reference", "ref")),
            limit=default_limit if limit is None else limit,
        )
    except InvalidSearchCriteriaError:
        raise
    except (TypeError, ValueError) as e:
        raise InvalidSearchCriteriaError(str(e)) from e


# =============================================================================
# Service
# =============================================================================


class ComparableSearchService:
    """
    Facade over the store, controller and diagnostics feed.

    Used by the web layer; engine components stay independently usable.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional[PropertyStore] = None,
        feed: Optional[DiagnosticsFeed] = None,
    ):
        """
        Initialize service.

        Args:
            config: Application configuration (loaded from env if omitted)
            store: Pre-built store; built from config if omitted
            feed: Pre-built diagnostics feed; built from config if omitted
        """
        self.config = config or Config.load()
        self.store = store or PropertyStore(
            persist_path=self.config.property_store_path or None,
            cell_degrees=self.config.spatial_cell_degrees,
        )
        self.feed = feed or DiagnosticsFeed(self.config.diagnostics_history_size)
        self.controller = RelaxationController(
            store=self.store,
            resolver=LocationResolver(use_area_centroids=self.config.use_area_centroids),
            builder=CriteriaBuilder(
                settings=self.config.tolerance_settings(),
                candidate_ceiling=self.config.candidate_ceiling,
            ),
            ranker=ResultRanker(),
            policy=self.config.relaxation_policy(),
            feed=self.feed,
        )

    def search(self, criteria: Union[SearchCriteria, dict]) -> SearchResult:
        """
        Run a comparable search.

        Args:
            criteria: SearchCriteria or a subject payload

        Returns:
            SearchResult with diagnostics attached
        """
        if isinstance(criteria, dict):
            criteria = criteria_from_payload(criteria, self.config.default_limit)
        result = self.controller.search(criteria)
        logger.info(
            "Comparables for %s %s at %s: %d found",
            criteria.listing_kind.value,
            criteria.property_type.value,
            format_currency(int(round(criteria.price)), "EUR"),
            len(result),
        )
        return result

    def upsert(self, records: Iterable[Union[PropertyRecord, dict]]) -> UpsertResult:
        """Bulk upsert records or feed payloads."""
        batch = [
            record_from_payload(item) if isinstance(item, dict) else item
            for item in records
        ]
        return self.store.bulk_upsert(batch)

    def stats(self) -> StoreStats:
        return self.store.stats()

    def recent_diagnostics(self, limit: Optional[int] = None) -> List[AttemptRecord]:
        return self.feed.recent(limit)

    def close(self) -> None:
        self.store.close()


# Singleton instance
_comparable_search_service: Optional[ComparableSearchService] = None


def get_comparable_search_service() -> ComparableSearchService:
    """Get the comparable search service singleton."""
    global _comparable_search_service
    if _comparable_search_service is None:
        _comparable_search_service = ComparableSearchService()
    return _comparable_search_service
