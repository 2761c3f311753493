"""
Configuration management.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class Config:
    """
    Application configuration.

    Loads from environment variables with sensible defaults.
    """

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    debug: bool = field(default_factory=lambda: _env_bool("DEBUG"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    # Store
    property_store_path: Optional[str] = field(
        default_factory=lambda: os.getenv("PROPERTY_STORE_PATH") or None
    )
    spatial_cell_degrees: float = field(
        default_factory=lambda: float(os.getenv("SPATIAL_CELL_DEGREES", "0.05"))
    )

    # Relaxation
    max_attempts: int = field(default_factory=lambda: int(os.getenv("COMP_MAX_ATTEMPTS", "3")))
    flexibility_step: float = field(
        default_factory=lambda: float(os.getenv("COMP_FLEXIBILITY_STEP", "0.5"))
    )
    default_limit: int = field(default_factory=lambda: int(os.getenv("COMP_DEFAULT_LIMIT", "12")))
    candidate_ceiling: int = field(
        default_factory=lambda: int(os.getenv("COMP_CANDIDATE_CEILING", "200"))
    )
    search_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("COMP_SEARCH_TIMEOUT_SECONDS", "5.0"))
    )
    use_area_centroids: bool = field(default_factory=lambda: _env_bool("COMP_USE_AREA_CENTROIDS"))

    # Tolerances
    base_radius_km: float = field(
        default_factory=lambda: float(os.getenv("COMP_BASE_RADIUS_KM", "5.0"))
    )
    luxury_price_threshold: float = field(
        default_factory=lambda: float(os.getenv("COMP_LUXURY_PRICE_THRESHOLD", "1000000"))
    )
    final_price_multiplier: float = field(
        default_factory=lambda: float(os.getenv("COMP_FINAL_PRICE_MULTIPLIER", "2.0"))
    )

    # Diagnostics
    diagnostics_history_size: int = field(
        default_factory=lambda: int(os.getenv("DIAGNOSTICS_HISTORY_SIZE", "500"))
    )

    def __post_init__(self):
        """Validate numeric settings."""
        if not 0 < self.port < 65536:
            raise ValueError("PORT must be between 1 and 65535")
        if self.spatial_cell_degrees <= 0:
            raise ValueError("SPATIAL_CELL_DEGREES must be positive")
        if self.default_limit < 1:
            raise ValueError("COMP_DEFAULT_LIMIT must be positive")
        if self.candidate_ceiling < self.default_limit:
            raise ValueError("COMP_CANDIDATE_CEILING must be >= COMP_DEFAULT_LIMIT")
        if self.diagnostics_history_size < 1:
            raise ValueError("DIAGNOSTICS_HISTORY_SIZE must be positive")
        # Surface tolerance / policy errors at load time
        self.tolerance_settings()
        self.relaxation_policy()

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment."""
        return cls()

    def tolerance_settings(self):
        """Tolerance parameters for the criteria builder."""
        # Imported here: the engine's service module imports this one
        from core.comp_engine.criteria import ToleranceSettings

        return ToleranceSettings(
            base_radius_km=self.base_radius_km,
            luxury_price_threshold=self.luxury_price_threshold,
            final_price_multiplier=self.final_price_multiplier,
        )

    def relaxation_policy(self):
        """Loop parameters for the relaxation controller."""
        from core.comp_engine.relaxation import RelaxationPolicy

        return RelaxationPolicy(
            max_attempts=self.max_attempts,
            flexibility_step=self.flexibility_step,
            timeout_seconds=self.search_timeout_seconds,
        )

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "log_level": self.log_level,
            "property_store_path": self.property_store_path,
            "spatial_cell_degrees": self.spatial_cell_degrees,
            "max_attempts": self.max_attempts,
            "flexibility_step": self.flexibility_step,
            "default_limit": self.default_limit,
            "candidate_ceiling": self.candidate_ceiling,
            "search_timeout_seconds": self.search_timeout_seconds,
            "use_area_centroids": self.use_area_centroids,
            "base_radius_km": self.base_radius_km,
            "luxury_price_threshold": self.luxury_price_threshold,
            "final_price_multiplier": self.final_price_multiplier,
            "diagnostics_history_size": self.diagnostics_history_size,
        }
