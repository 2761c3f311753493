"""
Tests for the search service and payload adapters.

Verifies:
- Listing kind from explicit field or feed flags; conflicting flags rejected
- Price field selected by listing kind
- Field-name variants (build_size, lat/lng, numeric property type codes)
- Service wiring from configuration
"""

import pytest
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.comp_engine import (
    ComparableSearchService,
    InvalidPropertyRecordError,
    InvalidSearchCriteriaError,
    ListingKind,
    PropertyType,
    SearchOutcome,
    criteria_from_payload,
    record_from_payload,
)
from utils.config import Config

from conftest import BASE_LAT, BASE_LON, lat_offset


@pytest.fixture
def feed_payload():
    """Factory fixture for feed-style property payloads."""
    def _create(record_id="F1", **overrides):
        data = {
            "id": record_id,
            "reference": f"R-{record_id}",
            "is_sale": True,
            "property_type": "Apartment",
            "sale_price": 450_000,
            "bedrooms": 3,
            "bathrooms": 2,
            "build_size": 108,
            "lat": BASE_LAT,
            "lng": BASE_LON,
            "urbanization": "Nueva Andalucía",
            "city": "Marbella",
        }
        data.update(overrides)
        return data
    return _create


@pytest.fixture
def service():
    config = Config(property_store_path=None, search_timeout_seconds=5.0)
    svc = ComparableSearchService(config=config)
    yield svc
    if not svc.store.closed:
        svc.close()


# =============================================================================
# Test: Record Payloads
# =============================================================================

class TestRecordFromPayload:
    """Tests for feed payload adaptation."""

    def test_sale_payload(self, feed_payload):
        record = record_from_payload(feed_payload())

        assert record.listing_kind == ListingKind.SALE
        assert record.price == 450_000
        assert record.build_area == 108
        assert record.latitude == BASE_LAT
        assert record.longitude == BASE_LON

    def test_long_term_uses_monthly_price(self, feed_payload):
        record = record_from_payload(feed_payload(
            is_sale=False, is_long_term=True, sale_price=None, monthly_price=2_200,
        ))

        assert record.listing_kind == ListingKind.LONG_TERM_RENTAL
        assert record.price == 2_200

    def test_short_term_uses_weekly_price(self, feed_payload):
        record = record_from_payload(feed_payload(
            is_sale=False, is_short_term=True, weekly_price_to=1_500,
        ))

        assert record.listing_kind == ListingKind.SHORT_TERM_RENTAL
        assert record.price == 1_500

    def test_short_term_prefers_weekly_from(self, feed_payload):
        record = record_from_payload(feed_payload(
            is_sale=False, is_short_term=True, weekly_price_from=900, weekly_price_to=1_500,
        ))

        assert record.price == 900

    def test_conflicting_flags_rejected(self, feed_payload):
        with pytest.raises(InvalidPropertyRecordError):
            record_from_payload(feed_payload(is_long_term=True))

    def test_missing_flags_rejected(self, feed_payload):
        with pytest.raises(InvalidPropertyRecordError):
            record_from_payload(feed_payload(is_sale=False))

    def test_explicit_listing_kind(self, feed_payload):
        record = record_from_payload(feed_payload(is_sale=False, listing_kind="long-term", price=1_800))

        assert record.listing_kind == ListingKind.LONG_TERM_RENTAL
        assert record.price == 1_800

    def test_explicit_listing_kind_conflicting_with_flag(self, feed_payload):
        with pytest.raises(InvalidPropertyRecordError):
            record_from_payload(feed_payload(listing_kind="long-term"))

    def test_explicit_listing_kind_agreeing_with_flag(self, feed_payload):
        record = record_from_payload(feed_payload(listing_kind="sale", is_sale="true"))

        assert record.listing_kind == ListingKind.SALE

    @pytest.mark.parametrize("raw,expected", [
        ("false", False),
        ("False", False),
        ("0", False),
        (0, False),
        (False, False),
        ("true", True),
        ("yes", True),
        (1, True),
        (None, True),
    ])
    def test_is_active_strings(self, feed_payload, raw, expected):
        assert record_from_payload(feed_payload(is_active=raw)).is_active is expected

    def test_string_flags(self, feed_payload):
        record = record_from_payload(feed_payload(is_sale="false", is_long_term="1", monthly_price=1_800))

        assert record.listing_kind == ListingKind.LONG_TERM_RENTAL

    def test_unrecognised_boolean_rejected(self, feed_payload):
        with pytest.raises(InvalidPropertyRecordError):
            record_from_payload(feed_payload(is_active="maybe"))

    @pytest.mark.parametrize("raw,expected", [
        (0, PropertyType.APARTMENT),
        ("1", PropertyType.VILLA),
        (2, PropertyType.TOWNHOUSE),
        ("3", PropertyType.PENTHOUSE),
        (9, PropertyType.OTHER),
        ("flat", PropertyType.APARTMENT),
        ("Country House", PropertyType.HOUSE),
        ("Town House", PropertyType.TOWNHOUSE),
    ])
    def test_property_type_variants(self, feed_payload, raw, expected):
        assert record_from_payload(feed_payload(property_type=raw)).property_type == expected

    def test_unknown_property_type_rejected(self, feed_payload):
        with pytest.raises(InvalidPropertyRecordError):
            record_from_payload(feed_payload(property_type="castle"))

    def test_missing_id_rejected(self, feed_payload):
        payload = feed_payload()
        del payload["id"]

        with pytest.raises(InvalidPropertyRecordError):
            record_from_payload(payload)


# =============================================================================
# Test: Criteria Payloads
# =============================================================================

class TestCriteriaFromPayload:
    """Tests for subject payload adaptation."""

    def test_default_limit(self, feed_payload):
        criteria = criteria_from_payload(feed_payload())

        assert criteria.limit == 12
        assert criteria.price == 450_000
        assert criteria.build_area == 108
        assert criteria.reference == "R-F1"

    def test_configured_default_limit(self, feed_payload):
        assert criteria_from_payload(feed_payload(), default_limit=6).limit == 6

    def test_explicit_limit(self, feed_payload):
        assert criteria_from_payload(feed_payload(limit=3)).limit == 3

    @pytest.mark.parametrize("overrides", [
        {"limit": 0},
        {"limit": -1},
        {"sale_price": None},
        {"bedrooms": -1},
        {"is_short_term": True},
        {"listing_kind": "sale", "is_long_term": True},
        {"listing_kind": "short-term"},
        {"lat": 95.0},
        {"lng": None},
        {"min_price": 600_000, "max_price": 500_000},
    ])
    def test_malformed_criteria(self, feed_payload, overrides):
        with pytest.raises(InvalidSearchCriteriaError):
            criteria_from_payload(feed_payload(**overrides))


# =============================================================================
# Test: Service
# =============================================================================

class TestComparableSearchService:
    """Tests for the service facade."""

    def test_upsert_and_search(self, service, feed_payload):
        outcome = service.upsert([
            feed_payload(f"F{i}", lat=lat_offset(500 * (i + 1)), urbanization="Aloha")
            for i in range(4)
        ])
        assert outcome.inserted == 4

        result = service.search(feed_payload("SUBJECT", reference="R-F0", limit=3))

        assert len(result) == 3
        assert "R-F0" not in result.references
        assert result.diagnostics.outcome == SearchOutcome.SUCCESS

    def test_diagnostics_recorded(self, service, feed_payload):
        service.upsert([feed_payload("F1")])
        result = service.search(feed_payload("SUBJECT", reference="R-SUBJ"))

        records = service.recent_diagnostics()
        assert len(records) == result.diagnostics.attempts_used
        assert records[-1].search_id == result.diagnostics.search_id

    def test_stats(self, service, feed_payload):
        service.upsert([feed_payload("F1"), feed_payload("F2", lat=None, lng=None)])
        stats = service.stats()

        assert stats.total == 2
        assert stats.active_with_coordinates == 1

    def test_config_wiring(self):
        config = Config(property_store_path=None, max_attempts=2, candidate_ceiling=50)
        svc = ComparableSearchService(config=config)

        assert svc.controller.policy.max_attempts == 2
        svc.close()
