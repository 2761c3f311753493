"""
Property Store for the Comparable Search Engine.

In-memory collection of property records with:
- A grid spatial index for radius queries
- Normalised location-name indexes for hierarchy matching
- Copy-and-swap snapshots: every upsert builds a complete new index and
  swaps it in atomically, so in-flight searches never see a partial one
- Optional JSON file persistence of the records

Readers take the current IndexSnapshot reference and query it; they never
hold the writer lock.
"""

from __future__ import annotations

import heapq
import json
import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Final, Iterable, List, Mapping, NamedTuple, Optional, Tuple, Union

from .criteria import ComparableFilter, HierarchyTarget
from .errors import IndexRebuildError, InvalidPropertyRecordError, StoreUnavailableError
from .location import MatchPolicy, is_excluded, normalize_location, values_match
from .models import (
    HierarchyLevel,
    ListingKind,
    PropertyRecord,
    RankedComparable,
    SearchMode,
    SUBURB_MATCH_DISTANCE_M,
    URBANIZATION_MATCH_DISTANCE_M,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Constants
# =============================================================================

EARTH_RADIUS_M: Final[float] = 6_371_000.0
METERS_PER_DEGREE_LAT: Final[float] = 111_320.0

# Grid cell size of the spatial index (degrees; ~5.5 km of latitude)
DEFAULT_CELL_DEGREES: Final[float] = 0.05

_SYNTHETIC_DISTANCES: Final[dict] = {
    HierarchyLevel.URBANIZATION: URBANIZATION_MATCH_DISTANCE_M,
    HierarchyLevel.SUBURB: SUBURB_MATCH_DISTANCE_M,
}


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in metres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


# =============================================================================
# Spatial Index
# =============================================================================


class SpatialIndex:
    """
    Fixed-size lat/lon grid over record ids.

    Built once per snapshot and never mutated afterwards.
    """

    def __init__(self, cells: Mapping[Tuple[int, int], Tuple[str, ...]], cell_degrees: float):
        self._cells = cells
        self._cell_degrees = cell_degrees

    @classmethod
    def build(
        cls,
        records: Iterable[PropertyRecord],
        cell_degrees: float = DEFAULT_CELL_DEGREES,
    ) -> "SpatialIndex":
        """Index every record that has coordinates."""
        if cell_degrees <= 0:
            raise ValueError("cell_degrees must be positive")
        cells: Dict[Tuple[int, int], List[str]] = {}
        for record in records:
            if not record.has_coordinates:
                continue
            key = cls._cell_key(record.latitude, record.longitude, cell_degrees)
            cells.setdefault(key, []).append(record.id)
        frozen = {key: tuple(sorted(ids)) for key, ids in cells.items()}
        return cls(MappingProxyType(frozen), cell_degrees)

    @staticmethod
    def _cell_key(latitude: float, longitude: float, cell_degrees: float) -> Tuple[int, int]:
        return (
            int(math.floor(latitude / cell_degrees)),
            int(math.floor(longitude / cell_degrees)),
        )

    @property
    def cell_count(self) -> int:
        return len(self._cells)

    def __len__(self) -> int:
        return sum(len(ids) for ids in self._cells.values())

    def ids_near(self, latitude: float, longitude: float, radius_m: float) -> List[str]:
        """
        Ids in every cell the radius circle may touch.

        A superset of the true matches; callers still check the haversine
        distance.
        """
        lat_delta = radius_m / METERS_PER_DEGREE_LAT
        edge_lat = min(90.0, abs(latitude) + lat_delta)
        cos_lat = math.cos(math.radians(edge_lat))
        if cos_lat < 1e-6:
            return self._all_ids()
        lon_delta = radius_m / (METERS_PER_DEGREE_LAT * cos_lat)
        if lon_delta >= 180.0 or not -180.0 <= longitude - lon_delta <= longitude + lon_delta <= 180.0:
            # Window wraps the antimeridian or a pole
            return self._all_ids()

        cell = self._cell_degrees
        lat_lo, lon_lo = self._cell_key(latitude - lat_delta, longitude - lon_delta, cell)
        lat_hi, lon_hi = self._cell_key(latitude + lat_delta, longitude + lon_delta, cell)

        ids: List[str] = []
        for lat_idx in range(lat_lo, lat_hi + 1):
            for lon_idx in range(lon_lo, lon_hi + 1):
                ids.extend(self._cells.get((lat_idx, lon_idx), ()))
        return ids

    def _all_ids(self) -> List[str]:
        ids: List[str] = []
        for cell_ids in self._cells.values():
            ids.extend(cell_ids)
        return ids


# =============================================================================
# Snapshot
# =============================================================================


@dataclass(frozen=True)
class StoreStats:
    """Store-wide counters, computed once per snapshot."""
    total: int = 0
    active: int = 0
    active_with_coordinates: int = 0
    unique_cities: int = 0
    unique_urbanizations: int = 0
    last_update: Optional[datetime] = None
    index_version: int = 0

    @property
    def has_coordinates(self) -> bool:
        """Whether any active record can take part in radius matching."""
        return self.active_with_coordinates > 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "active": self.active,
            "active_with_coordinates": self.active_with_coordinates,
            "unique_cities": self.unique_cities,
            "unique_urbanizations": self.unique_urbanizations,
            "last_update": self.last_update.isoformat() if self.last_update else None,
            "index_version": self.index_version,
        }


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of a bulk upsert."""
    inserted: int
    updated: int
    index_version: int

    def to_dict(self) -> dict:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "index_version": self.index_version,
        }


class _NormalisedLocation(NamedTuple):
    urbanization: str
    suburb: str
    city: str

    @property
    def area_names(self) -> Tuple[str, ...]:
        return tuple(n for n in (self.urbanization, self.suburb) if n)


@dataclass(frozen=True)
class QueryResult:
    """
    Candidates for one filter.

    ``matched`` counts every record that passed the filter; ``candidates``
    holds at most the filter's candidate ceiling of them.
    """
    candidates: List[RankedComparable]
    matched: int
    match_level: Optional[HierarchyLevel] = None
    level_counts: Dict[str, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.candidates)


@dataclass(frozen=True)
class IndexSnapshot:
    """
    Immutable view of the store at one index version.

    Only searchable records (active, priced, sized) are indexed; ``records``
    holds every stored record.
    """
    version: int
    records: Mapping[str, PropertyRecord]
    spatial: SpatialIndex
    by_kind: Mapping[ListingKind, Tuple[str, ...]]
    by_location: Mapping[HierarchyLevel, Mapping[str, Tuple[str, ...]]]
    locations: Mapping[str, _NormalisedLocation]
    stats: StoreStats

    @classmethod
    def build(
        cls,
        records: Mapping[str, PropertyRecord],
        version: int,
        cell_degrees: float = DEFAULT_CELL_DEGREES,
        last_update: Optional[datetime] = None,
    ) -> "IndexSnapshot":
        """Build every index from a complete record mapping."""
        searchable = [records[rid] for rid in sorted(records) if records[rid].is_searchable]

        by_kind: Dict[ListingKind, List[str]] = {kind: [] for kind in ListingKind}
        by_location: Dict[HierarchyLevel, Dict[str, List[str]]] = {
            HierarchyLevel.URBANIZATION: {},
            HierarchyLevel.SUBURB: {},
            HierarchyLevel.CITY: {},
        }
        locations: Dict[str, _NormalisedLocation] = {}

        for record in searchable:
            by_kind[record.listing_kind].append(record.id)
            location = _NormalisedLocation(
                urbanization=normalize_location(record.urbanization),
                suburb=normalize_location(record.suburb),
                city=normalize_location(record.city),
            )
            locations[record.id] = location
            for level, index in by_location.items():
                value = getattr(location, level.value)
                if value:
                    index.setdefault(value, []).append(record.id)

        active = [r for r in records.values() if r.is_active]
        stats = StoreStats(
            total=len(records),
            active=len(active),
            active_with_coordinates=sum(1 for r in active if r.has_coordinates),
            unique_cities=len({normalize_location(r.city) for r in active if r.city}),
            unique_urbanizations=len(
                {normalize_location(r.urbanization) for r in active if r.urbanization}
            ),
            last_update=last_update,
            index_version=version,
        )

        return cls(
            version=version,
            records=MappingProxyType(dict(records)),
            spatial=SpatialIndex.build(searchable, cell_degrees),
            by_kind=MappingProxyType({k: tuple(v) for k, v in by_kind.items()}),
            by_location=MappingProxyType({
                level: MappingProxyType({name: tuple(ids) for name, ids in index.items()})
                for level, index in by_location.items()
            }),
            locations=MappingProxyType(locations),
            stats=stats,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def query(self, comp_filter: ComparableFilter) -> QueryResult:
        """
        Execute a filter against this snapshot.

        Returns:
            QueryResult capped at the filter's candidate ceiling, pre-ordered
            by the mode's ordering key
        """
        if comp_filter.mode is SearchMode.SPATIAL:
            return self._query_spatial(comp_filter)
        return self._query_hierarchical(comp_filter)

    def _passes(self, record_id: str, comp_filter: ComparableFilter) -> bool:
        record = self.records[record_id]
        if not comp_filter.matches_attributes(record):
            return False
        location = self.locations.get(record_id)
        if location is not None and is_excluded(
            location.area_names,
            comp_filter.subject_area_names,
            comp_filter.excluded_phrases,
        ):
            return False
        return True

    def _ids_for_target(self, target: HierarchyTarget) -> List[str]:
        index = self.by_location.get(target.level, {})
        ids: List[str] = []
        if target.policy is MatchPolicy.EXACT:
            for value in target.values:
                ids.extend(index.get(value, ()))
        else:
            for name in sorted(index):
                if any(values_match(target.policy, value, name) for value in target.values):
                    ids.extend(index[name])
        return ids

    def _query_spatial(self, comp_filter: ComparableFilter) -> QueryResult:
        matches: Dict[str, RankedComparable] = {}

        # Exact hierarchy matches bypass the radius; finest level wins
        for target in comp_filter.bypass_targets:
            for record_id in self._ids_for_target(target):
                if record_id in matches or not self._passes(record_id, comp_filter):
                    continue
                matches[record_id] = RankedComparable(
                    record=self.records[record_id],
                    distance_meters=_SYNTHETIC_DISTANCES.get(target.level, 0.0),
                    match_level=target.level,
                )

        center_lat, center_lon = comp_filter.center
        radius = comp_filter.radius_m
        for record_id in self.spatial.ids_near(center_lat, center_lon, radius):
            if record_id in matches:
                continue
            record = self.records[record_id]
            distance = haversine_m(center_lat, center_lon, record.latitude, record.longitude)
            if distance > radius or not self._passes(record_id, comp_filter):
                continue
            matches[record_id] = RankedComparable(record=record, distance_meters=distance)

        capped = heapq.nsmallest(
            comp_filter.candidate_ceiling,
            matches.values(),
            key=lambda c: (c.hierarchy_priority, c.distance_meters, c.record.id),
        )
        return QueryResult(candidates=capped, matched=len(matches))

    def _query_hierarchical(self, comp_filter: ComparableFilter) -> QueryResult:
        if not comp_filter.hierarchy_targets:
            # Attribute-only matching
            ids = [
                rid for rid in self.by_kind.get(comp_filter.listing_kind, ())
                if self._passes(rid, comp_filter)
            ]
            return self._hierarchical_result(ids, None, comp_filter, {})

        level_ids: List[Tuple[HierarchyLevel, List[str]]] = []
        for target in comp_filter.hierarchy_targets:
            seen = set()
            ids = []
            for rid in self._ids_for_target(target):
                if rid in seen:
                    continue
                seen.add(rid)
                if self._passes(rid, comp_filter):
                    ids.append(rid)
            level_ids.append((target.level, ids))

        counts = {level.value: len(ids) for level, ids in level_ids}

        # Finest level reaching the target count, else the most populated
        # level (ties go to the finer one)
        chosen_level, chosen_ids = level_ids[0]
        for level, ids in level_ids:
            if len(ids) >= comp_filter.target_count:
                chosen_level, chosen_ids = level, ids
                break
            if len(ids) > len(chosen_ids):
                chosen_level, chosen_ids = level, ids

        return self._hierarchical_result(chosen_ids, chosen_level, comp_filter, counts)

    def _hierarchical_result(
        self,
        ids: List[str],
        level: Optional[HierarchyLevel],
        comp_filter: ComparableFilter,
        counts: Dict[str, int],
    ) -> QueryResult:
        matches = [
            RankedComparable(record=self.records[rid], distance_meters=None, match_level=level)
            for rid in ids
        ]
        capped = heapq.nsmallest(
            comp_filter.candidate_ceiling,
            matches,
            key=lambda c: (c.record.price, c.record.bedrooms, c.record.id),
        )
        return QueryResult(
            candidates=capped,
            matched=len(matches),
            match_level=level,
            level_counts=counts,
        )


# =============================================================================
# Store
# =============================================================================


RecordInput = Union[PropertyRecord, dict]


class PropertyStore:
    """
    Owner of the property records and their index snapshot.

    Writers serialise on a lock and publish a new snapshot with a single
    reference assignment. Readers call ``snapshot()`` once per search and
    use that snapshot for every attempt.
    """

    def __init__(
        self,
        persist_path: Optional[str] = None,
        cell_degrees: float = DEFAULT_CELL_DEGREES,
    ):
        """
        Initialise store.

        Args:
            persist_path: Optional path to persist records to a JSON file
            cell_degrees: Grid cell size of the spatial index

        Raises:
            StoreUnavailableError: If the persistence file cannot be read
        """
        if cell_degrees <= 0:
            raise ValueError("cell_degrees must be positive")
        self._cell_degrees = cell_degrees
        self._persist_path = Path(persist_path) if persist_path else None
        self._lock = threading.Lock()
        self._closed = False
        self._snapshot = IndexSnapshot.build({}, version=0, cell_degrees=cell_degrees)

        if self._persist_path and self._persist_path.exists():
            self._load_from_file()

    # =========================================================================
    # Persistence
    # =========================================================================

    def _load_from_file(self) -> None:
        """Load records from the persistence file."""
        try:
            data = json.loads(self._persist_path.read_text())
            records = {}
            for item in data.get("records", []):
                record = PropertyRecord.from_dict(item)
                records[record.id] = record
            version = int(data.get("index_version", 0))
        except (OSError, json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
            logger.error("Could not read property store file %s: %s", self._persist_path, e)
            raise StoreUnavailableError(
                f"property store file {self._persist_path} is unreadable: {e}"
            ) from e

        self._snapshot = self._build_snapshot(records, version, datetime.now(timezone.utc))
        logger.info(
            "Loaded %d property records from %s (index version %d)",
            len(records), self._persist_path, version,
        )

    def _save_to_file(self, snapshot: IndexSnapshot) -> None:
        """Persist a snapshot's records to file."""
        if not self._persist_path:
            return

        data = {
            "records": [snapshot.records[rid].to_dict() for rid in sorted(snapshot.records)],
            "index_version": snapshot.version,
            "saved_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._persist_path.parent.mkdir(parents=True, exist_ok=True)
            self._persist_path.write_text(json.dumps(data, indent=2))
        except OSError as e:
            logger.error("Could not write property store file %s: %s", self._persist_path, e)
            raise StoreUnavailableError(
                f"property store file {self._persist_path} is not writable: {e}"
            ) from e

    # =========================================================================
    # Snapshot Management
    # =========================================================================

    def _ensure_open(self) -> None:
        if self._closed:
            logger.error("Property store accessed after close")
            raise StoreUnavailableError("property store is closed")

    def _build_snapshot(
        self,
        records: Mapping[str, PropertyRecord],
        version: int,
        last_update: Optional[datetime],
    ) -> IndexSnapshot:
        try:
            snapshot = IndexSnapshot.build(
                records,
                version=version,
                cell_degrees=self._cell_degrees,
                last_update=last_update,
            )
        except Exception as e:
            logger.warning(
                "Index rebuild to version %d failed, keeping version %d: %s",
                version, self._snapshot.version, e,
            )
            raise IndexRebuildError(f"index rebuild failed: {e}") from e

        logger.debug(
            "Built index version %d: %d records, %d spatial cells",
            version, len(records), snapshot.spatial.cell_count,
        )
        return snapshot

    def snapshot(self) -> IndexSnapshot:
        """
        Current index snapshot.

        Raises:
            StoreUnavailableError: If the store is closed
        """
        self._ensure_open()
        return self._snapshot

    def query(self, comp_filter: ComparableFilter) -> QueryResult:
        """Run a filter against the current snapshot."""
        return self.snapshot().query(comp_filter)

    def get(self, record_id: str) -> Optional[PropertyRecord]:
        """Get a record by id."""
        return self.snapshot().records.get(record_id)

    def stats(self) -> StoreStats:
        """Statistics of the current snapshot."""
        return self.snapshot().stats

    @property
    def index_version(self) -> int:
        return self.snapshot().version

    def __len__(self) -> int:
        return len(self.snapshot().records)

    # =========================================================================
    # Updates
    # =========================================================================

    @staticmethod
    def _coerce(item: RecordInput) -> PropertyRecord:
        if isinstance(item, PropertyRecord):
            return item
        if isinstance(item, dict):
            return PropertyRecord.from_dict(item)
        raise InvalidPropertyRecordError(f"unsupported record type: {type(item).__name__}")

    def bulk_upsert(self, records: Iterable[RecordInput]) -> UpsertResult:
        """
        Insert or replace a batch of records, keyed by id.

        Last write wins, both against stored records and within the batch.
        The batch is atomic: either every record is applied and a new
        index is swapped in, or nothing changes.

        Args:
            records: PropertyRecord instances or their dict form

        Returns:
            UpsertResult with insert/update counts and the new index version

        Raises:
            InvalidPropertyRecordError: If any record is invalid, or two ids
                would share a reference
            IndexRebuildError: If the new index cannot be built
            StoreUnavailableError: If the store is closed
        """
        batch = [self._coerce(item) for item in records]

        with self._lock:
            self._ensure_open()
            current = self._snapshot
            merged = dict(current.records)
            inserted = updated = 0
            for record in batch:
                if record.id in merged:
                    updated += 1
                else:
                    inserted += 1
                merged[record.id] = record

            owners: Dict[str, str] = {}
            for record_id in sorted(merged):
                reference = merged[record_id].reference
                if reference in owners:
                    raise InvalidPropertyRecordError(
                        f"reference {reference!r} is used by both "
                        f"{owners[reference]} and {record_id}"
                    )
                owners[reference] = record_id

            if not batch:
                return UpsertResult(0, 0, current.version)

            snapshot = self._build_snapshot(
                merged, current.version + 1, datetime.now(timezone.utc)
            )
            self._save_to_file(snapshot)
            self._snapshot = snapshot

        logger.debug(
            "Upserted %d records (%d inserted, %d updated), index version %d",
            len(batch), inserted, updated, snapshot.version,
        )
        return UpsertResult(inserted=inserted, updated=updated, index_version=snapshot.version)

    def rebuild_index(self) -> int:
        """
        Rebuild the index from the current records.

        Returns:
            The new index version

        Raises:
            IndexRebuildError: If the build fails (the current index keeps serving)
        """
        with self._lock:
            self._ensure_open()
            current = self._snapshot
            snapshot = self._build_snapshot(
                current.records, current.version + 1, current.stats.last_update
            )
            self._snapshot = snapshot
        logger.info("Rebuilt property index, version %d", snapshot.version)
        return snapshot.version

    def close(self) -> None:
        """Stop serving queries."""
        with self._lock:
            self._closed = True
        logger.info("Property store closed")

    @property
    def closed(self) -> bool:
        return self._closed
