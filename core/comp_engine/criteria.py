"""
Criteria Builder for the Comparable Search Engine.

Turns a subject + relaxation level into one fully bound filter:
- Bedroom window (wider for larger properties, grows with flexibility)
- Price window (segment-dependent; very wide on the final attempt)
- Area window (grows with flexibility, independent of segment)
- Search radius (grows linearly with flexibility)

Every tolerance formula is a pure function of (base value, flexibility,
segment) so it can be tested on its own. The percentages are empirically
tuned and therefore carried in ToleranceSettings rather than hard-coded.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Final, Optional, Tuple

from .location import (
    HierarchyStrategy,
    LocationDecision,
    LocationResolver,
    MatchPolicy,
    SPATIAL_BYPASS_LEVELS,
    excluded_phrases_for,
)
from .models import HierarchyLevel, ListingKind, PropertyType, SearchCriteria, SearchMode


# =============================================================================
# Configuration Constants
# =============================================================================

# Bedroom size bands
SMALL_BEDROOM_MAX = 3
MID_BEDROOM_MAX = 6

# Sale price above which the luxury segment applies (EUR)
LUXURY_PRICE_THRESHOLD = 1_000_000

# Store returns at most this many candidates per attempt
DEFAULT_CANDIDATE_CEILING: Final[int] = 200

_EPSILON: Final[float] = 1e-9


class PriceSegment(Enum):
    """Market segment driving the price tolerance."""
    LUXURY = "luxury"
    STANDARD = "standard"
    LONG_TERM_RENTAL = "long_term_rental"
    SHORT_TERM_RENTAL = "short_term_rental"


@dataclass(frozen=True)
class ToleranceSettings:
    """
    Tuning parameters for all tolerance formulas.

    Price / area tolerances are fractions of the subject value (0.3 = +/-30%).
    ``*_growth`` values are added per unit of flexibility.
    """
    # Bedrooms: (base, growth) per size band
    small_bedroom_base: int = 1
    small_bedroom_growth: int = 1
    mid_bedroom_base: int = 2
    mid_bedroom_growth: int = 1
    large_bedroom_base: int = 3
    large_bedroom_growth: int = 2

    # Price
    luxury_price_threshold: float = LUXURY_PRICE_THRESHOLD
    luxury_price_base: float = 0.5
    luxury_price_growth: float = 0.4
    standard_price_base: float = 0.3
    standard_price_growth: float = 0.8
    long_term_price_base: float = 0.4
    long_term_price_growth: float = 0.4
    short_term_price_base: float = 0.6
    short_term_price_growth: float = 0.4
    final_price_multiplier: float = 2.0

    # Area
    area_base: float = 0.3
    area_growth: float = 0.4

    # Radius
    base_radius_km: float = 5.0
    radius_growth: float = 0.8  # fraction of base radius added per unit flexibility

    def __post_init__(self):
        """Validate settings after initialization."""
        if self.base_radius_km <= 0:
            raise ValueError("base_radius_km must be positive")
        if self.final_price_multiplier < 1:
            raise ValueError("final_price_multiplier must be >= 1")
        if self.luxury_price_threshold <= 0:
            raise ValueError("luxury_price_threshold must be positive")
        for name in (
            "luxury_price_base", "luxury_price_growth",
            "standard_price_base", "standard_price_growth",
            "long_term_price_base", "long_term_price_growth",
            "short_term_price_base", "short_term_price_growth",
            "area_base", "area_growth", "radius_growth",
            "small_bedroom_base", "small_bedroom_growth",
            "mid_bedroom_base", "mid_bedroom_growth",
            "large_bedroom_base", "large_bedroom_growth",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")


DEFAULT_TOLERANCES: Final[ToleranceSettings] = ToleranceSettings()


# =============================================================================
# Tolerance Functions
# =============================================================================


def bedroom_tolerance(
    bedrooms: int,
    flexibility: float,
    settings: ToleranceSettings = DEFAULT_TOLERANCES,
) -> int:
    """
    Bedroom +/- tolerance for a subject.

    <=3 bedrooms: 1 at minimum; 4-6: 2-3; >6: 3-5 across the default
    three attempts.
    """
    if bedrooms <= SMALL_BEDROOM_MAX:
        base, growth = settings.small_bedroom_base, settings.small_bedroom_growth
    elif bedrooms <= MID_BEDROOM_MAX:
        base, growth = settings.mid_bedroom_base, settings.mid_bedroom_growth
    else:
        base, growth = settings.large_bedroom_base, settings.large_bedroom_growth
    return base + int(math.floor(max(flexibility, 0.0) * growth + _EPSILON))


def bedroom_window(
    bedrooms: int,
    flexibility: float,
    settings: ToleranceSettings = DEFAULT_TOLERANCES,
) -> Tuple[int, int]:
    """Inclusive bedroom range, floored at zero."""
    tolerance = bedroom_tolerance(bedrooms, flexibility, settings)
    return max(0, bedrooms - tolerance), bedrooms + tolerance


def price_segment(
    price: float,
    listing_kind: ListingKind,
    settings: ToleranceSettings = DEFAULT_TOLERANCES,
) -> PriceSegment:
    """Classify a subject into its price segment."""
    if listing_kind is ListingKind.LONG_TERM_RENTAL:
        return PriceSegment.LONG_TERM_RENTAL
    if listing_kind is ListingKind.SHORT_TERM_RENTAL:
        return PriceSegment.SHORT_TERM_RENTAL
    if price > settings.luxury_price_threshold:
        return PriceSegment.LUXURY
    return PriceSegment.STANDARD


def price_tolerance(
    segment: PriceSegment,
    flexibility: float,
    final_attempt: bool = False,
    settings: ToleranceSettings = DEFAULT_TOLERANCES,
) -> float:
    """
    Price tolerance as a fraction of the subject price.

    Luxury starts wider (condition and quality vary more) but grows more
    slowly than the standard segment. The final attempt multiplies the
    tolerance so thin markets still produce matches.
    """
    base, growth = {
        PriceSegment.LUXURY: (settings.luxury_price_base, settings.luxury_price_growth),
        PriceSegment.STANDARD: (settings.standard_price_base, settings.standard_price_growth),
        PriceSegment.LONG_TERM_RENTAL: (settings.long_term_price_base, settings.long_term_price_growth),
        PriceSegment.SHORT_TERM_RENTAL: (settings.short_term_price_base, settings.short_term_price_growth),
    }[segment]
    tolerance = base + growth * max(flexibility, 0.0)
    if final_attempt:
        tolerance *= settings.final_price_multiplier
    return tolerance


def price_window(price: float, tolerance: float) -> Tuple[float, float]:
    """Inclusive price range, floored at zero."""
    return max(0.0, price * (1 - tolerance)), price * (1 + tolerance)


def area_tolerance(flexibility: float, settings: ToleranceSettings = DEFAULT_TOLERANCES) -> float:
    """Build-area tolerance as a fraction of the subject area."""
    return settings.area_base + settings.area_growth * max(flexibility, 0.0)


def area_window(build_area: float, tolerance: float) -> Tuple[float, float]:
    """Inclusive build-area range, floored at zero."""
    return max(0.0, build_area * (1 - tolerance)), build_area * (1 + tolerance)


def search_radius_m(flexibility: float, settings: ToleranceSettings = DEFAULT_TOLERANCES) -> float:
    """
    Search radius in metres.

    Grows linearly: with the default step of 0.5 the added radius is
    +40% then +80% of the base.
    """
    factor = 1.0 + settings.radius_growth * max(flexibility, 0.0)
    return settings.base_radius_km * 1000.0 * factor


def _clamp_window(
    window: Tuple[float, float],
    low: Optional[float],
    high: Optional[float],
) -> Tuple[float, float]:
    """Intersect a computed window with caller-supplied hard bounds."""
    lower, upper = window
    if low is not None:
        lower = max(lower, low)
    if high is not None:
        upper = min(upper, high)
    return lower, upper


# =============================================================================
# Filter Value Object
# =============================================================================


@dataclass(frozen=True)
class HierarchyTarget:
    """A hierarchy strategy bound to the subject's normalised values."""
    level: HierarchyLevel
    policy: MatchPolicy
    values: Tuple[str, ...]


@dataclass(frozen=True)
class ComparableFilter:
    """
    Fully bound filter for one relaxation attempt.

    Spatial mode uses ``center`` + ``radius_m`` plus ``bypass_targets``
    (exact hierarchy matches admitted regardless of distance). Hierarchical
    mode uses ``hierarchy_targets`` in fallback order; an empty tuple there
    means attribute-only matching.
    """
    attempt: int
    flexibility: float
    final_attempt: bool
    mode: SearchMode

    property_type: PropertyType
    listing_kind: ListingKind
    bedroom_min: int
    bedroom_max: int
    price_min: float
    price_max: float
    area_min: Optional[float]
    area_max: Optional[float]

    center: Optional[Tuple[float, float]]
    radius_m: Optional[float]
    bypass_targets: Tuple[HierarchyTarget, ...]
    hierarchy_targets: Tuple[HierarchyTarget, ...]

    subject_area_names: Tuple[str, ...]
    excluded_phrases: Tuple[str, ...]
    exclude_reference: Optional[str]

    target_count: int
    candidate_ceiling: int
    price_segment: PriceSegment
    price_tolerance: float
    area_tolerance: Optional[float]
    bedroom_tolerance: int

    def matches_attributes(self, record) -> bool:
        """Attribute-only checks shared by every mode."""
        if not record.is_searchable:
            return False
        if record.listing_kind is not self.listing_kind:
            return False
        if record.property_type is not self.property_type:
            return False
        if self.exclude_reference and record.reference == self.exclude_reference:
            return False
        if not self.bedroom_min <= record.bedrooms <= self.bedroom_max:
            return False
        if not self.price_min <= record.price <= self.price_max:
            return False
        if self.area_min is not None and record.build_area < self.area_min:
            return False
        if self.area_max is not None and record.build_area > self.area_max:
            return False
        return True

    def tolerances(self) -> dict:
        """Applied tolerances, for diagnostics."""
        return {
            "bedroom_tolerance": self.bedroom_tolerance,
            "bedroom_window": [self.bedroom_min, self.bedroom_max],
            "price_segment": self.price_segment.value,
            "price_tolerance": round(self.price_tolerance, 4),
            "price_window": [round(self.price_min, 2), round(self.price_max, 2)],
            "area_tolerance": (
                round(self.area_tolerance, 4) if self.area_tolerance is not None else None
            ),
            "area_window": (
                [round(self.area_min, 2), round(self.area_max, 2)]
                if self.area_min is not None and self.area_max is not None else None
            ),
            "radius_m": round(self.radius_m, 1) if self.radius_m is not None else None,
            "hierarchy_levels": [t.level.value for t in self.hierarchy_targets],
        }


# =============================================================================
# Builder
# =============================================================================


class CriteriaBuilder:
    """
    Builds the ComparableFilter for each relaxation attempt.

    Stateless apart from its settings; safe to share between searches.
    """

    def __init__(
        self,
        settings: ToleranceSettings = DEFAULT_TOLERANCES,
        candidate_ceiling: int = DEFAULT_CANDIDATE_CEILING,
    ):
        """
        Initialize builder.

        Args:
            settings: Tolerance tuning parameters
            candidate_ceiling: Max candidates the store returns per attempt
        """
        if candidate_ceiling < 1:
            raise ValueError("candidate_ceiling must be positive")
        self._settings = settings
        self._candidate_ceiling = candidate_ceiling

    @property
    def settings(self) -> ToleranceSettings:
        return self._settings

    def build(
        self,
        criteria: SearchCriteria,
        decision: LocationDecision,
        attempt: int,
        flexibility: float,
        final_attempt: bool = False,
    ) -> ComparableFilter:
        """
        Produce the filter for one attempt.

        Args:
            criteria: Validated search request
            decision: Location mode and normalised names
            attempt: 1-based attempt number
            flexibility: Current relaxation level (0.0 on the first attempt)
            final_attempt: Whether this is the last attempt allowed

        Returns:
            ComparableFilter with every window bound
        """
        settings = self._settings

        bed_tol = bedroom_tolerance(criteria.bedrooms, flexibility, settings)
        bed_min, bed_max = bedroom_window(criteria.bedrooms, flexibility, settings)

        segment = price_segment(criteria.price, criteria.listing_kind, settings)
        price_tol = price_tolerance(segment, flexibility, final_attempt, settings)
        price_min, price_max = _clamp_window(
            price_window(criteria.price, price_tol),
            criteria.min_price,
            criteria.max_price,
        )

        area_tol: Optional[float] = None
        area_min: Optional[float] = criteria.min_area
        area_max: Optional[float] = criteria.max_area
        if criteria.build_area:
            area_tol = area_tolerance(flexibility, settings)
            area_min, area_max = _clamp_window(
                area_window(criteria.build_area, area_tol),
                criteria.min_area,
                criteria.max_area,
            )

        center = None
        radius = None
        bypass: Tuple[HierarchyTarget, ...] = ()
        hierarchy: Tuple[HierarchyTarget, ...] = ()

        if decision.mode is SearchMode.SPATIAL:
            center = (decision.latitude, decision.longitude)
            radius = search_radius_m(flexibility, settings)
            bypass = tuple(
                HierarchyTarget(level, MatchPolicy.EXACT, (decision.value_for(level),))
                for level in SPATIAL_BYPASS_LEVELS
                if decision.value_for(level)
            )
        else:
            hierarchy = tuple(
                self._bind_strategy(strategy, decision, flexibility)
                for strategy in decision.hierarchy_strategies
            )

        return ComparableFilter(
            attempt=attempt,
            flexibility=flexibility,
            final_attempt=final_attempt,
            mode=decision.mode,
            property_type=criteria.property_type,
            listing_kind=criteria.listing_kind,
            bedroom_min=bed_min,
            bedroom_max=bed_max,
            price_min=price_min,
            price_max=price_max,
            area_min=area_min,
            area_max=area_max,
            center=center,
            radius_m=radius,
            bypass_targets=bypass,
            hierarchy_targets=hierarchy,
            subject_area_names=decision.area_names,
            excluded_phrases=excluded_phrases_for(decision.area_names),
            exclude_reference=criteria.reference,
            target_count=criteria.limit,
            candidate_ceiling=max(self._candidate_ceiling, criteria.limit),
            price_segment=segment,
            price_tolerance=price_tol,
            area_tolerance=area_tol,
            bedroom_tolerance=bed_tol,
        )

    @staticmethod
    def _bind_strategy(
        strategy: HierarchyStrategy,
        decision: LocationDecision,
        flexibility: float,
    ) -> HierarchyTarget:
        if strategy.level is HierarchyLevel.CITY:
            values = LocationResolver.city_values(decision, flexibility)
        else:
            values = (decision.value_for(strategy.level),)
        return HierarchyTarget(strategy.level, strategy.policy, values)
