"""
Shared fixtures for the comparable engine tests.
"""

import itertools
from pathlib import Path
import sys

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.comp_engine import (
    ListingKind,
    PropertyRecord,
    PropertyStore,
    PropertyType,
    SearchCriteria,
)


# Nueva Andalucia, Marbella
BASE_LAT = 36.5015
BASE_LON = -4.9550

# Metres per degree of latitude on the haversine sphere
METERS_PER_DEGREE = 111_194.9


def lat_offset(meters: float) -> float:
    """Latitude due north of the base point at the given distance."""
    return BASE_LAT + meters / METERS_PER_DEGREE


@pytest.fixture
def make_record():
    """Factory fixture for property records."""
    counter = itertools.count(1)

    def _create(record_id: str = None, **overrides) -> PropertyRecord:
        record_id = record_id or f"P{next(counter):04d}"
        values = dict(
            id=record_id,
            reference=f"REF-{record_id}",
            property_type=PropertyType.APARTMENT,
            listing_kind=ListingKind.SALE,
            price=450_000,
            bedrooms=3,
            bathrooms=2,
            build_area=108,
            latitude=BASE_LAT,
            longitude=BASE_LON,
            urbanization="",
            suburb="",
            city="Marbella",
            province="Malaga",
        )
        values.update(overrides)
        return PropertyRecord(**values)

    return _create


@pytest.fixture
def make_criteria():
    """Factory fixture for search criteria (the Nueva Andalucia subject)."""
    def _create(**overrides) -> SearchCriteria:
        values = dict(
            property_type=PropertyType.APARTMENT,
            listing_kind=ListingKind.SALE,
            price=450_000,
            bedrooms=3,
            build_area=108,
            latitude=BASE_LAT,
            longitude=BASE_LON,
            urbanization="Nueva Andalucía",
            city="Marbella",
            limit=8,
        )
        values.update(overrides)
        return SearchCriteria(**values)

    return _create


@pytest.fixture
def store():
    """Empty in-memory property store."""
    property_store = PropertyStore()
    yield property_store
    if not property_store.closed:
        property_store.close()
