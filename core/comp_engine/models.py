"""
Data models for the Comparable Search Engine.

Defines listed property records, search requests and ranked results.
Records are immutable: the engine only ever reads them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Final, Iterator, List, Optional, Tuple

from .errors import InvalidPropertyRecordError, InvalidSearchCriteriaError


DEFAULT_RESULT_LIMIT: Final[int] = 12

# Synthetic distances for hierarchy matches in spatial mode (metres)
URBANIZATION_MATCH_DISTANCE_M: Final[float] = 100.0
SUBURB_MATCH_DISTANCE_M: Final[float] = 500.0


class PropertyType(Enum):
    """
    Property type classification.

    Exact match only - no cross-type substitution allowed.
    """
    APARTMENT = "apartment"
    HOUSE = "house"
    VILLA = "villa"
    PENTHOUSE = "penthouse"
    STUDIO = "studio"
    TOWNHOUSE = "townhouse"
    OTHER = "other"

    @classmethod
    def from_string(cls, value: Any) -> Optional["PropertyType"]:
        """
        Convert a feed value to PropertyType.

        Accepts names (case-insensitive), common aliases and the legacy
        numeric feed codes.
        """
        if value is None:
            return None
        if isinstance(value, PropertyType):
            return value
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return _PROPERTY_TYPE_CODES.get(value, cls.OTHER)

        normalised = "-".join(str(value).lower().replace("_", " ").split())
        if not normalised:
            return None
        if normalised.isdigit():
            return _PROPERTY_TYPE_CODES.get(int(normalised), cls.OTHER)
        for member in cls:
            if member.value == normalised:
                return member
        return _PROPERTY_TYPE_ALIASES.get(normalised)


_PROPERTY_TYPE_CODES: Final[dict[int, PropertyType]] = {
    0: PropertyType.APARTMENT,
    1: PropertyType.VILLA,
    2: PropertyType.TOWNHOUSE,
    3: PropertyType.PENTHOUSE,
}

_PROPERTY_TYPE_ALIASES: Final[dict[str, PropertyType]] = {
    "flat": PropertyType.APARTMENT,
    "ground-floor-apartment": PropertyType.APARTMENT,
    "middle-floor-apartment": PropertyType.APARTMENT,
    "top-floor-apartment": PropertyType.APARTMENT,
    "duplex": PropertyType.APARTMENT,
    "detached-villa": PropertyType.VILLA,
    "semi-detached-villa": PropertyType.VILLA,
    "country-house": PropertyType.HOUSE,
    "finca": PropertyType.HOUSE,
    "bungalow": PropertyType.HOUSE,
    "town-house": PropertyType.TOWNHOUSE,
    "terraced": PropertyType.TOWNHOUSE,
    "studio-apartment": PropertyType.STUDIO,
}


class ListingKind(Enum):
    """
    Market a listing is offered in.

    Sale <-> Sale only. Rentals never cross between long and short term.
    """
    SALE = "sale"
    LONG_TERM_RENTAL = "long_term"
    SHORT_TERM_RENTAL = "short_term"

    @classmethod
    def from_string(cls, value: Any) -> Optional["ListingKind"]:
        """Convert string to ListingKind, case-insensitive."""
        if isinstance(value, ListingKind):
            return value
        if value is None:
            return None
        normalised = str(value).lower().strip().replace("-", "_").replace(" ", "_")
        for member in cls:
            if member.value == normalised:
                return member
        return _LISTING_KIND_ALIASES.get(normalised)

    @classmethod
    def from_flags(
        cls,
        is_sale: bool = False,
        is_long_term: bool = False,
        is_short_term: bool = False,
    ) -> "ListingKind":
        """
        Resolve the listing kind from the feed's mutually exclusive flags.

        Raises:
            ValueError: If zero or more than one flag is set
        """
        flags = [
            (cls.SALE, bool(is_sale)),
            (cls.LONG_TERM_RENTAL, bool(is_long_term)),
            (cls.SHORT_TERM_RENTAL, bool(is_short_term)),
        ]
        selected = [kind for kind, enabled in flags if enabled]
        if not selected:
            raise ValueError("no listing-kind flag is set")
        if len(selected) > 1:
            raise ValueError(
                "inconsistent listing-kind flags: "
                + ", ".join(kind.value for kind in selected)
            )
        return selected[0]


_LISTING_KIND_ALIASES: Final[dict[str, ListingKind]] = {
    "resale": ListingKind.SALE,
    "long_term_rental": ListingKind.LONG_TERM_RENTAL,
    "longterm": ListingKind.LONG_TERM_RENTAL,
    "rent": ListingKind.LONG_TERM_RENTAL,
    "short_term_rental": ListingKind.SHORT_TERM_RENTAL,
    "holiday": ListingKind.SHORT_TERM_RENTAL,
}


class SearchMode(Enum):
    """Location matching strategy for a search invocation."""
    SPATIAL = "spatial"
    HIERARCHICAL = "hierarchical"


class HierarchyLevel(Enum):
    """Named location granularity, finest first."""
    URBANIZATION = "urbanization"
    SUBURB = "suburb"
    CITY = "city"
    PROVINCE = "province"


def _validate_coordinates(latitude: Optional[float], longitude: Optional[float]) -> Optional[str]:
    """Return an error message for an invalid coordinate pair, else None."""
    if (latitude is None) != (longitude is None):
        return "latitude and longitude must be provided together"
    if latitude is not None and not -90.0 <= latitude <= 90.0:
        return "latitude must be between -90 and 90"
    if longitude is not None and not -180.0 <= longitude <= 180.0:
        return "longitude must be between -180 and 180"
    return None


@dataclass(frozen=True)
class PropertyRecord:
    """
    A listed property as held in the property store.

    Only records that are active, priced and sized take part in searches;
    inactive or incomplete records may still be stored.
    """
    # Identity
    id: str
    reference: str

    # Attributes
    property_type: PropertyType
    listing_kind: ListingKind
    price: float  # EUR; monthly rent / weekly rate for rentals
    bedrooms: int
    bathrooms: float = 0.0
    build_area: float = 0.0  # m2
    plot_area: float = 0.0
    terrace_area: float = 0.0

    # Location
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    urbanization: str = ""
    suburb: str = ""
    city: str = ""
    province: str = ""
    address: str = ""

    features: frozenset = field(default_factory=frozenset)
    images: Tuple[str, ...] = ()

    # Lifecycle
    is_active: bool = True
    last_updated: Optional[datetime] = None

    def __post_init__(self):
        """Validate record after initialization."""
        if not self.id or not str(self.id).strip():
            raise InvalidPropertyRecordError("id is required")
        if not self.reference or not str(self.reference).strip():
            raise InvalidPropertyRecordError(f"reference is required (id={self.id})")
        if not isinstance(self.property_type, PropertyType):
            raise InvalidPropertyRecordError(f"invalid property_type for {self.id}")
        if not isinstance(self.listing_kind, ListingKind):
            raise InvalidPropertyRecordError(f"invalid listing_kind for {self.id}")
        if self.bedrooms < 0:
            raise InvalidPropertyRecordError(f"bedrooms cannot be negative ({self.id})")
        if self.bathrooms < 0:
            raise InvalidPropertyRecordError(f"bathrooms cannot be negative ({self.id})")
        if self.price < 0:
            raise InvalidPropertyRecordError(f"price cannot be negative ({self.id})")
        for name in ("build_area", "plot_area", "terrace_area"):
            if getattr(self, name) < 0:
                raise InvalidPropertyRecordError(f"{name} cannot be negative ({self.id})")
        problem = _validate_coordinates(self.latitude, self.longitude)
        if problem:
            raise InvalidPropertyRecordError(f"{problem} ({self.id})")

        # Normalise collection types so records stay hashable and read-only
        if not isinstance(self.features, frozenset):
            object.__setattr__(self, "features", frozenset(self.features or ()))
        if not isinstance(self.images, tuple):
            object.__setattr__(self, "images", tuple(self.images or ()))

    @property
    def has_coordinates(self) -> bool:
        """Whether the record can take part in radius matching."""
        return self.latitude is not None and self.longitude is not None

    @property
    def is_searchable(self) -> bool:
        """Active, priced and sized records only."""
        return self.is_active and self.price > 0 and self.build_area > 0

    @property
    def price_per_sqm(self) -> float:
        """Asking price per built square metre."""
        if self.build_area <= 0:
            return 0.0
        return self.price / self.build_area

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output and persistence."""
        return {
            "id": self.id,
            "reference": self.reference,
            "property_type": self.property_type.value,
            "listing_kind": self.listing_kind.value,
            "price": self.price,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
            "build_area": self.build_area,
            "plot_area": self.plot_area,
            "terrace_area": self.terrace_area,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "urbanization": self.urbanization,
            "suburb": self.suburb,
            "city": self.city,
            "province": self.province,
            "address": self.address,
            "features": sorted(self.features),
            "images": list(self.images),
            "is_active": self.is_active,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PropertyRecord":
        """
        Build a record from its ``to_dict`` form.

        Raises:
            InvalidPropertyRecordError: If a field is missing or invalid
        """
        try:
            property_type = PropertyType.from_string(data.get("property_type"))
            listing_kind = ListingKind.from_string(data.get("listing_kind"))
            if property_type is None:
                raise InvalidPropertyRecordError(
                    f"invalid property_type: {data.get('property_type')!r}"
                )
            if listing_kind is None:
                raise InvalidPropertyRecordError(
                    f"invalid listing_kind: {data.get('listing_kind')!r}"
                )
            last_updated = data.get("last_updated")
            if isinstance(last_updated, str):
                last_updated = datetime.fromisoformat(last_updated)
            return cls(
                id=str(data["id"]),
                reference=str(data["reference"]),
                property_type=property_type,
                listing_kind=listing_kind,
                price=float(data.get("price") or 0),
                bedrooms=int(data.get("bedrooms") or 0),
                bathrooms=float(data.get("bathrooms") or 0),
                build_area=float(data.get("build_area") or 0),
                plot_area=float(data.get("plot_area") or 0),
                terrace_area=float(data.get("terrace_area") or 0),
                latitude=_optional_float(data.get("latitude")),
                longitude=_optional_float(data.get("longitude")),
                urbanization=data.get("urbanization") or "",
                suburb=data.get("suburb") or "",
                city=data.get("city") or "",
                province=data.get("province") or "",
                address=data.get("address") or "",
                features=frozenset(data.get("features") or ()),
                images=tuple(data.get("images") or ()),
                is_active=parse_bool(data.get("is_active"), default=True),
                last_updated=last_updated,
            )
        except KeyError as e:
            raise InvalidPropertyRecordError(f"missing field: {e.args[0]}") from e
        except (TypeError, ValueError) as e:
            if isinstance(e, InvalidPropertyRecordError):
                raise
            raise InvalidPropertyRecordError(str(e)) from e


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


_TRUE_STRINGS: Final[Tuple[str, ...]] = ("1", "true", "yes")
_FALSE_STRINGS: Final[Tuple[str, ...]] = ("0", "false", "no", "")


def parse_bool(value: Any, default: bool = False) -> bool:
    """
    Read a feed boolean, which may arrive as a bool, a number or a string.

    Raises:
        ValueError: If a string is not a recognised boolean
    """
    if value is None:
        return default
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return bool(value)


@dataclass(frozen=True)
class SearchCriteria:
    """
    A comparable search request for one subject property.

    Explicit price / area bounds are hard limits: relaxation never widens
    a window past them.
    """
    property_type: PropertyType
    listing_kind: ListingKind
    price: float
    bedrooms: int
    build_area: Optional[float] = None

    # Subject location
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    urbanization: str = ""
    suburb: str = ""
    city: str = ""
    province: str = ""

    # Optional hard bounds
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    min_area: Optional[float] = None
    max_area: Optional[float] = None

    # Subject's own reference, excluded from its results
    reference: Optional[str] = None
    limit: int = DEFAULT_RESULT_LIMIT

    def __post_init__(self):
        """Validate criteria after initialization."""
        self.validate()

    def validate(self) -> None:
        """
        Reject malformed criteria.

        Raises:
            InvalidSearchCriteriaError: On the first problem found
        """
        if not isinstance(self.property_type, PropertyType):
            raise InvalidSearchCriteriaError(f"invalid property_type: {self.property_type!r}")
        if not isinstance(self.listing_kind, ListingKind):
            raise InvalidSearchCriteriaError(f"invalid listing_kind: {self.listing_kind!r}")
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
            raise InvalidSearchCriteriaError("limit must be a positive integer")
        if self.price is None or self.price <= 0:
            raise InvalidSearchCriteriaError("price must be positive")
        if self.bedrooms is None or self.bedrooms < 0:
            raise InvalidSearchCriteriaError("bedrooms cannot be negative")
        if self.build_area is not None and self.build_area <= 0:
            raise InvalidSearchCriteriaError("build_area must be positive if provided")
        problem = _validate_coordinates(self.latitude, self.longitude)
        if problem:
            raise InvalidSearchCriteriaError(problem)
        for low_name, high_name in (("min_price", "max_price"), ("min_area", "max_area")):
            low = getattr(self, low_name)
            high = getattr(self, high_name)
            if low is not None and low < 0:
                raise InvalidSearchCriteriaError(f"{low_name} cannot be negative")
            if high is not None and high <= 0:
                raise InvalidSearchCriteriaError(f"{high_name} must be positive")
            if low is not None and high is not None and high < low:
                raise InvalidSearchCriteriaError(f"{high_name} must be >= {low_name}")

    @property
    def has_coordinates(self) -> bool:
        """Whether the subject carries a coordinate pair."""
        return self.latitude is not None and self.longitude is not None

    @property
    def has_location_hierarchy(self) -> bool:
        """Whether any named location level is known."""
        return any(
            value and value.strip()
            for value in (self.urbanization, self.suburb, self.city)
        )

    def to_dict(self) -> dict:
        """Snapshot used by diagnostics and the HTTP layer."""
        return {
            "property_type": self.property_type.value,
            "listing_kind": self.listing_kind.value,
            "price": self.price,
            "bedrooms": self.bedrooms,
            "build_area": self.build_area,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "urbanization": self.urbanization,
            "suburb": self.suburb,
            "city": self.city,
            "province": self.province,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "min_area": self.min_area,
            "max_area": self.max_area,
            "reference": self.reference,
            "limit": self.limit,
        }


@dataclass(frozen=True)
class RankedComparable:
    """
    A candidate returned by the store, with its ranking inputs.

    ``distance_meters`` is None when no coordinates are involved; hierarchy
    matches in spatial mode carry a synthetic near-zero distance.
    """
    record: PropertyRecord
    distance_meters: Optional[float] = None
    match_level: Optional[HierarchyLevel] = None

    @property
    def hierarchy_priority(self) -> int:
        """0 = urbanization match, 1 = suburb match, 2 = coordinate only."""
        if self.match_level is HierarchyLevel.URBANIZATION:
            return 0
        if self.match_level is HierarchyLevel.SUBURB:
            return 1
        return 2

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        data = self.record.to_dict()
        data["distance_meters"] = (
            round(self.distance_meters, 1) if self.distance_meters is not None else None
        )
        data["match_level"] = self.match_level.value if self.match_level else None
        return data


@dataclass
class SearchResult:
    """
    Ordered comparables for a subject, plus how they were found.

    Length never exceeds the requested limit. An empty result is a valid
    outcome in thin markets.
    """
    comparables: List[RankedComparable]
    diagnostics: Any = None  # SearchDiagnostics

    def __len__(self) -> int:
        return len(self.comparables)

    def __iter__(self) -> Iterator[RankedComparable]:
        return iter(self.comparables)

    @property
    def records(self) -> List[PropertyRecord]:
        """The ranked property records without distances."""
        return [c.record for c in self.comparables]

    @property
    def references(self) -> List[str]:
        return [c.record.reference for c in self.comparables]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "results": [c.to_dict() for c in self.comparables],
            "count": len(self.comparables),
            "diagnostics": self.diagnostics.to_dict() if self.diagnostics else None,
        }
