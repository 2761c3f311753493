"""
Location resolution for the Comparable Search Engine.

Decides between coordinate (spatial) matching and the named location
hierarchy, and normalises place names for comparison:
- Case-insensitive, accent-stripped comparisons ("Benahavís" == "benahavis")
- Ordered hierarchy fallback: urbanization -> suburb -> city
- Exact-phrase exclusions for areas that share a name but not a zone
- Adjacent-city allowance for contiguous municipalities at high flexibility
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Final, Iterable, Optional, Tuple

from .models import HierarchyLevel, SearchCriteria, SearchMode


logger = logging.getLogger(__name__)


# =============================================================================
# Reference Tables
# =============================================================================

# Search term -> phrases whose areas must never be returned for it.
# "Golden Mile" (Marbella) and "New Golden Mile" (Estepona) are distinct zones.
LOCATION_EXCLUSIONS: Final[dict[str, Tuple[str, ...]]] = {
    "golden mile": ("new golden mile", "nuevo golden mile"),
    "marbella golden mile": ("new golden mile", "nuevo golden mile"),
    "new golden mile": ("marbella golden mile", "golden mile"),
    "nuevo golden mile": ("marbella golden mile", "golden mile"),
}

# Administratively distinct but physically contiguous municipalities
ADJACENT_CITIES: Final[Tuple[Tuple[str, str], ...]] = (
    ("marbella", "san pedro de alcantara"),
    ("marbella", "benahavis"),
    ("estepona", "casares"),
    ("mijas", "fuengirola"),
    ("benalmadena", "torremolinos"),
)

# Approximate centroids for well-known areas (lat, lng)
KNOWN_AREA_CENTROIDS: Final[dict[str, Tuple[float, float]]] = {
    "marbella golden mile": (36.5095, -4.9004),
    "golden mile": (36.5095, -4.9004),
    "new golden mile": (36.4400, -5.1500),
    "nueva andalucia": (36.5015, -4.9550),
    "puerto banus": (36.4870, -4.9520),
}

# Adjacent cities are only admitted from this flexibility upward
ADJACENT_CITY_MIN_FLEXIBILITY: Final[float] = 1.0


class MatchPolicy(Enum):
    """How a hierarchy value is compared against a candidate's value."""
    EXACT = "exact"  # normalised strings are equal
    PHRASE = "phrase"  # one is the other followed by further words


@dataclass(frozen=True)
class HierarchyStrategy:
    """One step of the location-hierarchy fallback."""
    level: HierarchyLevel
    policy: MatchPolicy


# Fallback order for hierarchical mode, evaluated finest first
HIERARCHY_STRATEGIES: Final[Tuple[HierarchyStrategy, ...]] = (
    HierarchyStrategy(HierarchyLevel.URBANIZATION, MatchPolicy.PHRASE),
    HierarchyStrategy(HierarchyLevel.SUBURB, MatchPolicy.EXACT),
    HierarchyStrategy(HierarchyLevel.CITY, MatchPolicy.EXACT),
)

# Levels that bypass the radius in spatial mode (always exact)
SPATIAL_BYPASS_LEVELS: Final[Tuple[HierarchyLevel, ...]] = (
    HierarchyLevel.URBANIZATION,
    HierarchyLevel.SUBURB,
)


# =============================================================================
# Text Normalisation
# =============================================================================

_WHITESPACE = re.compile(r"\s+")
_SEPARATORS = re.compile(r"[_\-/,.'’]+")


def normalize_location(value: Optional[str]) -> str:
    """
    Normalise a place name for comparison.

    Lower-cases, strips accents (NFKD), turns separators into spaces and
    collapses whitespace. Empty / None input gives "".
    """
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", str(value))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    stripped = _SEPARATORS.sub(" ", stripped.lower())
    return _WHITESPACE.sub(" ", stripped).strip()


def contains_phrase(text: str, phrase: str) -> bool:
    """Whether ``phrase`` occurs in ``text`` as whole words."""
    if not text or not phrase:
        return False
    return re.search(r"\b" + re.escape(phrase) + r"\b", text) is not None


def phrase_match(left: str, right: str) -> bool:
    """
    Whether two normalised names denote the same area by phrase.

    True if equal, or if the longer starts with the shorter as whole words
    ("nueva andalucia" and "nueva andalucia los naranjos"). A qualifier in
    front of the shorter name makes a different zone: "el paraiso" never
    matches "nuevo el paraiso".
    """
    if not left or not right:
        return False
    if left == right:
        return True
    shorter, longer = (left, right) if len(left) <= len(right) else (right, left)
    return longer.startswith(shorter + " ")


def values_match(policy: MatchPolicy, subject_value: str, candidate_value: str) -> bool:
    """Compare normalised values under a match policy."""
    if not subject_value or not candidate_value:
        return False
    if policy is MatchPolicy.EXACT:
        return subject_value == candidate_value
    return phrase_match(subject_value, candidate_value)


def excluded_phrases_for(names: Iterable[str]) -> Tuple[str, ...]:
    """Collect exclusion phrases for the subject's normalised area names."""
    phrases: list[str] = []
    for name in names:
        for phrase in LOCATION_EXCLUSIONS.get(name, ()):
            if phrase not in phrases:
                phrases.append(phrase)
    return tuple(phrases)


def is_excluded(candidate_names: Iterable[str], subject_names: Iterable[str], phrases: Iterable[str]) -> bool:
    """
    Whether a candidate sits in an area excluded for the subject.

    A candidate area equal to one of the subject's own names is never
    excluded, nor is one that contains a subject name more specific than
    the excluded phrase ("new golden mile beach" for "new golden mile").
    """
    phrase_list = tuple(phrases)
    if not phrase_list:
        return False
    subjects = [n for n in subject_names if n]
    for name in candidate_names:
        if not name or name in subjects:
            continue
        for phrase in phrase_list:
            if not contains_phrase(name, phrase):
                continue
            if any(len(s) > len(phrase) and contains_phrase(name, s) for s in subjects):
                continue
            return True
    return False


def adjacent_cities(city: str) -> Tuple[str, ...]:
    """Normalised cities contiguous with ``city`` (not including itself)."""
    if not city:
        return ()
    neighbours = []
    for a, b in ADJACENT_CITIES:
        if city == a and b not in neighbours:
            neighbours.append(b)
        elif city == b and a not in neighbours:
            neighbours.append(a)
    return tuple(neighbours)


# =============================================================================
# Resolver
# =============================================================================


@dataclass(frozen=True)
class LocationDecision:
    """
    Outcome of location resolution for one search invocation.

    ``degraded`` marks attribute-only matching: no usable coordinates and no
    named location at all.
    """
    mode: SearchMode
    latitude: Optional[float]
    longitude: Optional[float]
    urbanization: str
    suburb: str
    city: str
    province: str
    coordinates_source: Optional[str] = None  # "subject" | "area_centroid"
    degraded: bool = False

    @property
    def area_names(self) -> Tuple[str, ...]:
        """The subject's fine-grained area names, normalised."""
        return tuple(n for n in (self.urbanization, self.suburb) if n)

    def value_for(self, level: HierarchyLevel) -> str:
        """Normalised subject value at a hierarchy level."""
        return getattr(self, level.value)

    @property
    def hierarchy_strategies(self) -> Tuple[HierarchyStrategy, ...]:
        """Fallback strategies the subject has values for, finest first."""
        return tuple(s for s in HIERARCHY_STRATEGIES if self.value_for(s.level))


class LocationResolver:
    """
    Chooses the matching mode and normalises the subject's location.

    Spatial mode needs both subject coordinates and at least one active
    record with coordinates in the store; a spatial search against a store
    without coordinate data would silently return nothing.
    """

    def __init__(self, use_area_centroids: bool = False):
        """
        Initialize resolver.

        Args:
            use_area_centroids: Resolve approximate coordinates for subjects
                without coordinates whose area is a known one
        """
        self._use_area_centroids = use_area_centroids

    def resolve(self, criteria: SearchCriteria, store_has_coordinates: bool) -> LocationDecision:
        """
        Decide the matching mode for a search.

        Args:
            criteria: The validated search request
            store_has_coordinates: Whether any active record has coordinates

        Returns:
            LocationDecision with mode and normalised names
        """
        urbanization = normalize_location(criteria.urbanization)
        suburb = normalize_location(criteria.suburb)
        city = normalize_location(criteria.city)
        province = normalize_location(criteria.province)

        latitude, longitude = criteria.latitude, criteria.longitude
        coordinates_source = "subject" if criteria.has_coordinates else None

        if coordinates_source is None and self._use_area_centroids:
            centroid = self.area_centroid(urbanization, suburb)
            if centroid is not None:
                latitude, longitude = centroid
                coordinates_source = "area_centroid"

        if coordinates_source is not None and store_has_coordinates:
            mode = SearchMode.SPATIAL
        else:
            mode = SearchMode.HIERARCHICAL

        degraded = mode is SearchMode.HIERARCHICAL and not (urbanization or suburb or city)
        if degraded:
            logger.warning(
                "No usable location signal for subject %s; falling back to attribute-only matching",
                criteria.reference or "<unreferenced>",
            )

        return LocationDecision(
            mode=mode,
            latitude=latitude if mode is SearchMode.SPATIAL else None,
            longitude=longitude if mode is SearchMode.SPATIAL else None,
            urbanization=urbanization,
            suburb=suburb,
            city=city,
            province=province,
            coordinates_source=coordinates_source if mode is SearchMode.SPATIAL else None,
            degraded=degraded,
        )

    @staticmethod
    def area_centroid(*names: str) -> Optional[Tuple[float, float]]:
        """Centroid for the first known normalised area name."""
        for name in names:
            if name and name in KNOWN_AREA_CENTROIDS:
                return KNOWN_AREA_CENTROIDS[name]
        return None

    @staticmethod
    def city_values(decision: LocationDecision, flexibility: float) -> Tuple[str, ...]:
        """City names admitted at this flexibility (subject's city first)."""
        if not decision.city:
            return ()
        if flexibility >= ADJACENT_CITY_MIN_FLEXIBILITY:
            return (decision.city,) + adjacent_cities(decision.city)
        return (decision.city,)
