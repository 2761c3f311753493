"""
Relaxation Controller for the Comparable Search Engine.

Runs search attempts with progressively wider tolerances until the
requested number of comparables is found or the attempts run out:

    ATTEMPT(1) -> ATTEMPT(2) -> ... -> ATTEMPT(max)
         \\             \\                    \\
          SUCCESS        SUCCESS              SUCCESS | EXHAUSTED

Attempts run strictly in sequence against one index snapshot, so every
attempt of a search sees the same data. The controller only reads.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Final, List, Optional

from .criteria import CriteriaBuilder
from .diagnostics import AttemptRecord, DiagnosticsFeed, SearchDiagnostics, SearchOutcome
from .errors import InvalidSearchCriteriaError
from .location import LocationResolver
from .models import RankedComparable, SearchCriteria, SearchResult
from .ranking import ResultRanker
from .store import PropertyStore


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Constants
# =============================================================================

MAX_ATTEMPTS: Final[int] = 3
FLEXIBILITY_STEP: Final[float] = 0.5
BASE_FLEXIBILITY: Final[float] = 0.0
DEFAULT_TIMEOUT_SECONDS: Final[float] = 5.0


@dataclass(frozen=True)
class RelaxationPolicy:
    """
    Loop parameters of the relaxation state machine.

    ``timeout_seconds`` bounds the whole search (every attempt); None
    disables the deadline.
    """
    max_attempts: int = MAX_ATTEMPTS
    flexibility_step: float = FLEXIBILITY_STEP
    base_flexibility: float = BASE_FLEXIBILITY
    timeout_seconds: Optional[float] = DEFAULT_TIMEOUT_SECONDS

    def __post_init__(self):
        """Validate policy after initialization."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.flexibility_step < 0:
            raise ValueError("flexibility_step cannot be negative")
        if self.base_flexibility < 0:
            raise ValueError("base_flexibility cannot be negative")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

    def flexibility_for(self, attempt: int) -> float:
        """Flexibility level of a 1-based attempt."""
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        return self.base_flexibility + (attempt - 1) * self.flexibility_step

    def is_final(self, attempt: int) -> bool:
        return attempt >= self.max_attempts


class RelaxationState(Enum):
    """States of one search invocation."""
    ATTEMPT = "attempt"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"


class RelaxationController:
    """
    Orchestrates resolver, builder, store and ranker for one search.

    Holds no per-search state, so one controller serves concurrent callers.
    """

    def __init__(
        self,
        store: PropertyStore,
        resolver: Optional[LocationResolver] = None,
        builder: Optional[CriteriaBuilder] = None,
        ranker: Optional[ResultRanker] = None,
        policy: Optional[RelaxationPolicy] = None,
        feed: Optional[DiagnosticsFeed] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize controller.

        Args:
            store: Property store to query
            resolver: Location mode resolver
            builder: Per-attempt filter builder
            ranker: Candidate ranker
            policy: Attempt count, flexibility step and deadline
            feed: Diagnostics feed receiving one record per attempt
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self._store = store
        self._resolver = resolver or LocationResolver()
        self._builder = builder or CriteriaBuilder()
        self._ranker = ranker or ResultRanker()
        self._policy = policy or RelaxationPolicy()
        self._feed = feed
        self._clock = clock

    @property
    def policy(self) -> RelaxationPolicy:
        return self._policy

    def search(self, criteria: SearchCriteria) -> SearchResult:
        """
        Find up to ``criteria.limit`` ranked comparables.

        Args:
            criteria: The subject and search parameters

        Returns:
            SearchResult; may be shorter than the limit, or empty

        Raises:
            InvalidSearchCriteriaError: If criteria are malformed (before
                the store is touched)
            StoreUnavailableError: If the store cannot serve the search
        """
        if not isinstance(criteria, SearchCriteria):
            raise InvalidSearchCriteriaError(
                f"expected SearchCriteria, got {type(criteria).__name__}"
            )
        criteria.validate()

        started = self._clock()
        deadline = (
            started + self._policy.timeout_seconds
            if self._policy.timeout_seconds is not None else None
        )

        snapshot = self._store.snapshot()
        decision = self._resolver.resolve(criteria, snapshot.stats.has_coordinates)

        diagnostics = SearchDiagnostics(
            search_id=uuid.uuid4().hex[:12],
            mode=decision.mode.value,
            degraded=decision.degraded,
            coordinates_source=decision.coordinates_source,
            index_version=snapshot.version,
        )
        criteria_snapshot = criteria.to_dict()

        state = RelaxationState.ATTEMPT
        attempt = 1
        ranked: List[RankedComparable] = []

        while state is RelaxationState.ATTEMPT:
            flexibility = self._policy.flexibility_for(attempt)
            final_attempt = self._policy.is_final(attempt)

            comp_filter = self._builder.build(
                criteria, decision, attempt, flexibility, final_attempt
            )
            query = snapshot.query(comp_filter)
            ranked = self._ranker.rank(query.candidates, decision.mode)

            record = AttemptRecord(
                search_id=diagnostics.search_id,
                attempt=attempt,
                max_attempts=self._policy.max_attempts,
                flexibility=flexibility,
                mode=decision.mode.value,
                degraded=decision.degraded,
                criteria=criteria_snapshot,
                tolerances=comp_filter.tolerances(),
                candidate_count=len(ranked),
                matched_count=query.matched,
                match_level=query.match_level.value if query.match_level else None,
            )
            diagnostics.attempts.append(record)
            if self._feed is not None:
                self._feed.publish(record)

            logger.info(
                "Search %s attempt %d/%d: flexibility=%.2f mode=%s beds=%d-%d "
                "price=%.0f-%.0f area=%s radius=%s -> %d candidates",
                diagnostics.search_id, attempt, self._policy.max_attempts,
                flexibility, decision.mode.value,
                comp_filter.bedroom_min, comp_filter.bedroom_max,
                comp_filter.price_min, comp_filter.price_max,
                "%.0f-%.0f" % (comp_filter.area_min, comp_filter.area_max)
                if comp_filter.area_min is not None and comp_filter.area_max is not None
                else "any",
                "%.0fm" % comp_filter.radius_m if comp_filter.radius_m is not None else "n/a",
                len(ranked),
            )

            if len(ranked) >= criteria.limit:
                state = RelaxationState.SUCCESS
                diagnostics.outcome = SearchOutcome.SUCCESS
            elif final_attempt:
                state = RelaxationState.EXHAUSTED
                diagnostics.outcome = SearchOutcome.EXHAUSTED
            elif deadline is not None and self._clock() >= deadline:
                logger.warning(
                    "Search %s hit its %.1fs deadline after %d attempts; returning %d results",
                    diagnostics.search_id, self._policy.timeout_seconds, attempt, len(ranked),
                )
                state = RelaxationState.EXHAUSTED
                diagnostics.outcome = SearchOutcome.TIMED_OUT
                diagnostics.timed_out = True
            else:
                attempt += 1

        comparables = self._ranker.truncate(ranked, criteria.limit)
        diagnostics.returned_count = len(comparables)
        diagnostics.elapsed_ms = (self._clock() - started) * 1000.0

        logger.info(
            "Search %s %s after %d attempt(s): %d of %d requested",
            diagnostics.search_id, diagnostics.outcome.value,
            diagnostics.attempts_used, len(comparables), criteria.limit,
        )
        return SearchResult(comparables=comparables, diagnostics=diagnostics)
