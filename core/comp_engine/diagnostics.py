"""
Diagnostics for the Comparable Search Engine.

Records what every relaxation attempt did (criteria snapshot, flexibility,
mode, tolerances, candidate count) so searches can be explained after the
fact. The feed keeps a bounded in-memory history and fans records out to
subscribers such as log shippers.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Deque, Final, List, Optional


logger = logging.getLogger(__name__)


DEFAULT_HISTORY_SIZE: Final[int] = 500


class SearchOutcome(Enum):
    """Terminal state of a search."""
    SUCCESS = "success"  # target count reached
    EXHAUSTED = "exhausted"  # attempts used up, short of target
    TIMED_OUT = "timed_out"  # deadline hit before the next attempt


@dataclass(frozen=True)
class AttemptRecord:
    """One relaxation attempt, as published to the diagnostics feed."""
    search_id: str
    attempt: int
    max_attempts: int
    flexibility: float
    mode: str
    degraded: bool
    criteria: dict
    tolerances: dict
    candidate_count: int
    matched_count: int
    match_level: Optional[str] = None
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "search_id": self.search_id,
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "flexibility": self.flexibility,
            "mode": self.mode,
            "degraded": self.degraded,
            "criteria": self.criteria,
            "tolerances": self.tolerances,
            "candidate_count": self.candidate_count,
            "matched_count": self.matched_count,
            "match_level": self.match_level,
            "recorded_at": self.recorded_at.isoformat(),
        }


@dataclass
class SearchDiagnostics:
    """Summary of one search invocation."""
    search_id: str
    mode: str
    degraded: bool = False
    coordinates_source: Optional[str] = None
    attempts: List[AttemptRecord] = field(default_factory=list)
    outcome: Optional[SearchOutcome] = None
    timed_out: bool = False
    returned_count: int = 0
    elapsed_ms: float = 0.0
    index_version: int = 0

    @property
    def attempts_used(self) -> int:
        return len(self.attempts)

    @property
    def candidate_counts(self) -> List[int]:
        return [a.candidate_count for a in self.attempts]

    def to_dict(self) -> dict:
        return {
            "search_id": self.search_id,
            "mode": self.mode,
            "degraded": self.degraded,
            "coordinates_source": self.coordinates_source,
            "attempts_used": self.attempts_used,
            "attempts": [a.to_dict() for a in self.attempts],
            "outcome": self.outcome.value if self.outcome else None,
            "timed_out": self.timed_out,
            "returned_count": self.returned_count,
            "elapsed_ms": round(self.elapsed_ms, 2),
            "index_version": self.index_version,
        }


Subscriber = Callable[[AttemptRecord], None]


class DiagnosticsFeed:
    """
    Bounded, thread-safe history of attempt records.

    Subscribers are called synchronously on publish. A failing subscriber
    is logged and skipped; it never fails the search.
    """

    def __init__(self, max_records: int = DEFAULT_HISTORY_SIZE):
        if max_records < 1:
            raise ValueError("max_records must be positive")
        self._records: Deque[AttemptRecord] = deque(maxlen=max_records)
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def publish(self, record: AttemptRecord) -> None:
        """Append a record and notify subscribers."""
        with self._lock:
            self._records.append(record)
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(record)
            except Exception:
                logger.exception("Diagnostics subscriber %r failed", callback)

    def recent(self, limit: Optional[int] = None) -> List[AttemptRecord]:
        """Most recent records, oldest first."""
        with self._lock:
            records = list(self._records)
        if limit is not None:
            if limit <= 0:
                return []
            records = records[-limit:]
        return records

    def for_search(self, search_id: str) -> List[AttemptRecord]:
        """Records of a single search still in the history."""
        with self._lock:
            return [r for r in self._records if r.search_id == search_id]

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for every published record.

        Returns:
            A function that removes the subscription
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
