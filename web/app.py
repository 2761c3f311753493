"""
FastAPI application for the comparable search engine.

JSON API over the engine: comparable search, bulk property upsert, store
statistics and the diagnostics feed.

Production deployment configuration via environment variables.
"""

import logging
import os
from typing import List, Optional, Union

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from core.comp_engine import (
    CompEngineError,
    ComparableSearchService,
    IndexRebuildError,
    InvalidPropertyRecordError,
    InvalidSearchCriteriaError,
    StoreUnavailableError,
    get_comparable_search_service,
)
from utils.formatting import format_currency, format_distance


logger = logging.getLogger(__name__)


# =============================================================================
# Environment Configuration
# =============================================================================

# Production mode detection
IS_PRODUCTION = os.getenv("RAILWAY_ENVIRONMENT") is not None or os.getenv("PRODUCTION", "").lower() == "true"

# CORS configuration - locked down for production
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "").split(",") if os.getenv("ALLOWED_ORIGINS") else []
if not ALLOWED_ORIGINS and not IS_PRODUCTION:
    # Development fallback only
    ALLOWED_ORIGINS = ["http://localhost:8000", "http://127.0.0.1:8000"]

# Debug mode - NEVER enabled in production
DEBUG_MODE = os.getenv("DEBUG", "false").lower() == "true" and not IS_PRODUCTION

API_VERSION = "1.0.0"


# =============================================================================
# Request Models
# =============================================================================


class SearchRequest(BaseModel):
    """Request body for a comparable search."""
    property_type: Union[str, int]
    listing_kind: Optional[str] = None
    is_sale: bool = False
    is_long_term: bool = False
    is_short_term: bool = False

    price: Optional[float] = None
    sale_price: Optional[float] = None
    monthly_price: Optional[float] = None
    weekly_price_from: Optional[float] = None
    weekly_price_to: Optional[float] = None

    bedrooms: int
    build_area: Optional[float] = None
    build_size: Optional[float] = None

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    urbanization: Optional[str] = None
    suburb: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None

    min_price: Optional[float] = None
    max_price: Optional[float] = None
    min_area: Optional[float] = None
    max_area: Optional[float] = None

    reference: Optional[str] = None
    limit: Optional[int] = None


class BulkUpsertRequest(BaseModel):
    """Request body for a bulk property upsert (feed payloads)."""
    records: List[dict] = Field(default_factory=list)


# =============================================================================
# Application
# =============================================================================


def _summary(result) -> dict:
    """Human-readable one-liners for each comparable."""
    return {
        "count": len(result),
        "lines": [
            f"{c.record.reference}: {format_currency(int(round(c.record.price)), 'EUR')}, "
            f"{c.record.bedrooms} bed, {format_distance(c.distance_meters)}"
            for c in result
        ],
    }


def create_app(service: Optional[ComparableSearchService] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        service: Search service to serve (the process singleton if omitted)
    """
    app = FastAPI(
        title="Comparable Search Engine",
        description="Comparable-property matching for valuation reports",
        version=API_VERSION,
        docs_url=None if IS_PRODUCTION else "/docs",
        redoc_url=None if IS_PRODUCTION else "/redoc",
        openapi_url=None if IS_PRODUCTION else "/openapi.json",
        debug=DEBUG_MODE,
    )

    # ==========================================================================
    # Healthcheck endpoints are registered first and perform no IO.
    # ==========================================================================
    @app.get("/", include_in_schema=False)
    def root():
        """Root healthcheck. No dependencies, no IO."""
        return {"status": "ok"}

    @app.get("/health", include_in_schema=False)
    def health():
        """Secondary health endpoint. No dependencies, no IO."""
        return {"status": "healthy"}

    if ALLOWED_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    def get_service() -> ComparableSearchService:
        return service if service is not None else get_comparable_search_service()

    @app.post("/api/comparables/search")
    def search_comparables(request: SearchRequest):
        """
        Find ranked comparables for a subject property.

        Returns:
            - results: ordered comparables with distance (null when no
              coordinates were involved)
            - diagnostics: attempts, tolerances and candidate counts
        """
        try:
            result = get_service().search(request.model_dump(exclude_none=True))
        except InvalidSearchCriteriaError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except StoreUnavailableError as e:
            logger.error("Search failed, store unavailable: %s", e)
            raise HTTPException(status_code=503, detail=str(e))

        payload = result.to_dict()
        payload["summary"] = _summary(result)
        return payload

    @app.post("/api/properties/bulk-upsert")
    def bulk_upsert(request: BulkUpsertRequest):
        """Insert or replace property records, keyed by id."""
        try:
            outcome = get_service().upsert(request.records)
        except InvalidPropertyRecordError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except StoreUnavailableError as e:
            logger.error("Upsert failed, store unavailable: %s", e)
            raise HTTPException(status_code=503, detail=str(e))
        except IndexRebuildError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return outcome.to_dict()

    @app.get("/api/properties/stats")
    def store_stats():
        """Store-wide record counts and index version."""
        try:
            return get_service().stats().to_dict()
        except StoreUnavailableError as e:
            raise HTTPException(status_code=503, detail=str(e))

    @app.get("/api/diagnostics")
    def diagnostics(limit: int = Query(50, ge=1, le=1000, description="Most recent attempt records")):
        """Most recent per-attempt diagnostics records, oldest first."""
        records = get_service().recent_diagnostics(limit)
        return {
            "count": len(records),
            "records": [r.to_dict() for r in records],
        }

    @app.get("/api/health")
    def api_health():
        """Health check endpoint."""
        try:
            stats = get_service().stats()
        except CompEngineError:
            return {
                "status": "degraded",
                "version": API_VERSION,
                "environment": "production" if IS_PRODUCTION else "development",
                "store": "unavailable",
            }
        return {
            "status": "healthy",
            "version": API_VERSION,
            "environment": "production" if IS_PRODUCTION else "development",
            "store": {"records": stats.total, "index_version": stats.index_version},
        }

    return app


# Create app instance for uvicorn
app = create_app()
