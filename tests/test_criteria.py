"""
Tests for the criteria builder.

Verifies:
- Each tolerance function is pure and monotone in flexibility
- Bedroom windows by size band (<=3, 4-6, >6)
- Luxury price tolerance starts wider, standard grows faster
- Final attempt applies the wide price multiplier
- Explicit price / area bounds are never exceeded
- Filters carry the subject reference for self-exclusion
"""

import pytest
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.comp_engine import HierarchyLevel, ListingKind, LocationResolver, SearchMode
from core.comp_engine.criteria import (
    CriteriaBuilder,
    PriceSegment,
    ToleranceSettings,
    area_tolerance,
    area_window,
    bedroom_tolerance,
    bedroom_window,
    price_segment,
    price_tolerance,
    price_window,
    search_radius_m,
)


FLEX_LEVELS = [0.0, 0.5, 1.0, 1.5]


@pytest.fixture
def builder():
    return CriteriaBuilder()


@pytest.fixture
def spatial_decision(make_criteria):
    return LocationResolver().resolve(make_criteria(), store_has_coordinates=True)


@pytest.fixture
def hierarchical_decision(make_criteria):
    criteria = make_criteria(latitude=None, longitude=None)
    return LocationResolver().resolve(criteria, store_has_coordinates=True)


# =============================================================================
# Test: Bedroom Tolerance
# =============================================================================

class TestBedroomTolerance:
    """Tests for bedroom windows."""

    def test_small_property_minimum_window(self):
        assert bedroom_tolerance(2, 0.0) == 1
        assert bedroom_tolerance(3, 0.5) == 1

    def test_mid_size_band(self):
        assert bedroom_tolerance(5, 0.0) == 2
        assert bedroom_tolerance(5, 1.0) == 3

    def test_large_band(self):
        assert bedroom_tolerance(8, 0.0) == 3
        assert bedroom_tolerance(8, 0.5) == 4
        assert bedroom_tolerance(8, 1.0) == 5

    def test_grows_with_flexibility(self):
        assert bedroom_tolerance(2, 1.0) == 2

    def test_window_floors_at_zero(self):
        assert bedroom_window(0, 0.0) == (0, 1)
        assert bedroom_window(1, 1.0) == (0, 3)

    @pytest.mark.parametrize("bedrooms", [0, 2, 4, 6, 7, 10])
    def test_monotone_in_flexibility(self, bedrooms):
        values = [bedroom_tolerance(bedrooms, f) for f in FLEX_LEVELS]
        assert values == sorted(values)


# =============================================================================
# Test: Price Tolerance
# =============================================================================

class TestPriceTolerance:
    """Tests for price segments and windows."""

    def test_segments(self):
        assert price_segment(450_000, ListingKind.SALE) == PriceSegment.STANDARD
        assert price_segment(1_000_000, ListingKind.SALE) == PriceSegment.STANDARD
        assert price_segment(1_500_000, ListingKind.SALE) == PriceSegment.LUXURY
        assert price_segment(2_000, ListingKind.LONG_TERM_RENTAL) == PriceSegment.LONG_TERM_RENTAL
        assert price_segment(5_000_000, ListingKind.SHORT_TERM_RENTAL) == PriceSegment.SHORT_TERM_RENTAL

    def test_standard_first_attempt(self):
        assert price_tolerance(PriceSegment.STANDARD, 0.0) == pytest.approx(0.3)

    def test_standard_second_attempt(self):
        assert price_tolerance(PriceSegment.STANDARD, 0.5) == pytest.approx(0.7)

    def test_luxury_starts_wider(self):
        assert price_tolerance(PriceSegment.LUXURY, 0.0) > price_tolerance(PriceSegment.STANDARD, 0.0)

    def test_standard_grows_faster(self):
        standard_growth = (
            price_tolerance(PriceSegment.STANDARD, 1.0) - price_tolerance(PriceSegment.STANDARD, 0.0)
        )
        luxury_growth = (
            price_tolerance(PriceSegment.LUXURY, 1.0) - price_tolerance(PriceSegment.LUXURY, 0.0)
        )
        assert standard_growth > luxury_growth

    def test_rental_base_windows(self):
        assert price_tolerance(PriceSegment.LONG_TERM_RENTAL, 0.0) == pytest.approx(0.4)
        assert price_tolerance(PriceSegment.SHORT_TERM_RENTAL, 0.0) == pytest.approx(0.6)

    def test_final_attempt_multiplier(self):
        tolerance = price_tolerance(PriceSegment.STANDARD, 1.0, final_attempt=True)
        assert tolerance == pytest.approx(2.2)
        low, high = price_window(450_000, tolerance)
        assert low == 0.0
        assert high == pytest.approx(1_440_000)

    def test_window(self):
        low, high = price_window(450_000, 0.3)
        assert low == pytest.approx(315_000)
        assert high == pytest.approx(585_000)

    @pytest.mark.parametrize("segment", list(PriceSegment))
    def test_monotone_in_flexibility(self, segment):
        values = [price_tolerance(segment, f) for f in FLEX_LEVELS]
        assert values == sorted(values)

    def test_configurable_threshold(self):
        settings = ToleranceSettings(luxury_price_threshold=400_000)
        assert price_segment(450_000, ListingKind.SALE, settings) == PriceSegment.LUXURY


# =============================================================================
# Test: Area and Radius
# =============================================================================

class TestAreaAndRadius:
    """Tests for area tolerance and search radius."""

    def test_area_tolerance_levels(self):
        assert area_tolerance(0.0) == pytest.approx(0.3)
        assert area_tolerance(0.5) == pytest.approx(0.5)
        assert area_tolerance(1.0) == pytest.approx(0.7)

    def test_area_window(self):
        low, high = area_window(100, 0.3)
        assert low == pytest.approx(70)
        assert high == pytest.approx(130)

    def test_radius_grows_linearly(self):
        assert search_radius_m(0.0) == pytest.approx(5_000)
        assert search_radius_m(0.5) == pytest.approx(7_000)
        assert search_radius_m(1.0) == pytest.approx(9_000)

    def test_configurable_base_radius(self):
        assert search_radius_m(0.0, ToleranceSettings(base_radius_km=2.0)) == pytest.approx(2_000)

    def test_invalid_settings_rejected(self):
        with pytest.raises(ValueError):
            ToleranceSettings(base_radius_km=0)
        with pytest.raises(ValueError):
            ToleranceSettings(final_price_multiplier=0.5)
        with pytest.raises(ValueError):
            ToleranceSettings(area_growth=-0.1)


# =============================================================================
# Test: Builder
# =============================================================================

class TestCriteriaBuilder:
    """Tests for fully bound filters."""

    def test_spatial_filter(self, builder, make_criteria, spatial_decision):
        comp_filter = builder.build(make_criteria(reference="SUBJ-1"), spatial_decision, 1, 0.0)

        assert comp_filter.mode == SearchMode.SPATIAL
        assert (comp_filter.bedroom_min, comp_filter.bedroom_max) == (2, 4)
        assert comp_filter.price_min == pytest.approx(315_000)
        assert comp_filter.price_max == pytest.approx(585_000)
        assert comp_filter.area_min == pytest.approx(75.6)
        assert comp_filter.radius_m == pytest.approx(5_000)
        assert comp_filter.center == (spatial_decision.latitude, spatial_decision.longitude)
        assert comp_filter.exclude_reference == "SUBJ-1"
        assert [t.level for t in comp_filter.bypass_targets] == [HierarchyLevel.URBANIZATION]
        assert comp_filter.hierarchy_targets == ()

    def test_second_attempt_widens(self, builder, make_criteria, spatial_decision):
        first = builder.build(make_criteria(), spatial_decision, 1, 0.0)
        second = builder.build(make_criteria(), spatial_decision, 2, 0.5)

        assert second.price_tolerance == pytest.approx(0.7)
        assert second.radius_m == pytest.approx(first.radius_m * 1.4)
        assert second.price_min <= first.price_min
        assert second.price_max >= first.price_max
        assert second.area_max >= first.area_max

    def test_explicit_bounds_are_hard_limits(self, builder, make_criteria, spatial_decision):
        criteria = make_criteria(max_price=500_000, min_area=100)
        comp_filter = builder.build(criteria, spatial_decision, 3, 1.0, final_attempt=True)

        assert comp_filter.price_max == 500_000
        assert comp_filter.area_min == 100

    def test_no_area_window_without_subject_area(self, builder, make_criteria, spatial_decision):
        comp_filter = builder.build(make_criteria(build_area=None), spatial_decision, 1, 0.0)

        assert comp_filter.area_min is None
        assert comp_filter.area_max is None
        assert comp_filter.area_tolerance is None

    def test_hierarchical_filter_targets(self, builder, make_criteria, hierarchical_decision):
        criteria = make_criteria(latitude=None, longitude=None)
        comp_filter = builder.build(criteria, hierarchical_decision, 1, 0.0)

        assert comp_filter.center is None
        assert comp_filter.radius_m is None
        assert [t.level for t in comp_filter.hierarchy_targets] == [
            HierarchyLevel.URBANIZATION, HierarchyLevel.CITY,
        ]
        assert comp_filter.hierarchy_targets[-1].values == ("marbella",)

    def test_adjacent_cities_on_high_flexibility(self, builder, make_criteria, hierarchical_decision):
        criteria = make_criteria(latitude=None, longitude=None)
        comp_filter = builder.build(criteria, hierarchical_decision, 3, 1.0, final_attempt=True)

        assert "benahavis" in comp_filter.hierarchy_targets[-1].values

    def test_candidate_ceiling_covers_limit(self, make_criteria, spatial_decision):
        builder = CriteriaBuilder(candidate_ceiling=5)
        comp_filter = builder.build(make_criteria(limit=20), spatial_decision, 1, 0.0)

        assert comp_filter.candidate_ceiling == 20

    def test_tolerances_snapshot(self, builder, make_criteria, spatial_decision):
        tolerances = builder.build(make_criteria(), spatial_decision, 1, 0.0).tolerances()

        assert tolerances["price_segment"] == "standard"
        assert tolerances["bedroom_window"] == [2, 4]
        assert tolerances["radius_m"] == 5000.0
