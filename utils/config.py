"""
Configuration management.
"""

import os
from dataclasses import dataclass, field

from core.comp_engine.hilo import HiLoEngine
from core.comp_engine.models import Basis, CenterBasis, HiLoSettings, default_hilo_weights
from core.comp_engine.trend_cache import TrendCache
from core.ingestion.schema import normalize_market_basis


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class Config:
    """
    Engine configuration.

    Loads from environment variables with the engine's documented defaults.
    Per-order settings arrive through the ingestion parsers; these values
    only fill in what an order does not specify.
    """

    # Hi-Lo
    hilo_center_basis: str = field(
        default_factory=lambda: os.getenv("HILO_CENTER_BASIS", "medianTimeAdj")
    )
    hilo_box_pct: float = field(default_factory=lambda: float(os.getenv("HILO_BOX_PCT", "10")))
    hilo_max_sales: int = field(default_factory=lambda: int(os.getenv("HILO_MAX_SALES", "12")))
    hilo_max_listings: int = field(
        default_factory=lambda: int(os.getenv("HILO_MAX_LISTINGS", "6"))
    )
    hilo_inside_polygon_only: bool = field(
        default_factory=lambda: _env_bool("HILO_INSIDE_POLYGON_ONLY", "true")
    )

    # Market trend
    trend_lookback_months: int = field(
        default_factory=lambda: int(os.getenv("TREND_LOOKBACK_MONTHS", "12"))
    )
    trend_min_sales_per_month: int = field(
        default_factory=lambda: int(os.getenv("TREND_MIN_SALES_PER_MONTH", "3"))
    )
    trend_metric: str = field(default_factory=lambda: os.getenv("TREND_METRIC", "salePrice"))
    trend_cache_size: int = field(
        default_factory=lambda: int(os.getenv("TREND_CACHE_SIZE", "256"))
    )

    # Scoring
    scoring_max_workers: int = field(
        default_factory=lambda: int(os.getenv("SCORING_MAX_WORKERS", "1"))
    )

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    log_json: bool = field(default_factory=lambda: _env_bool("LOG_JSON", "false"))

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment."""
        return cls()

    @property
    def trend_basis(self) -> Basis:
        return normalize_market_basis(self.trend_metric)

    def hilo_settings(self) -> HiLoSettings:
        """
        Hi-Lo settings built from the configured defaults.

        Raises:
            ValueError: unknown center basis
        """
        return HiLoSettings(
            center_basis=CenterBasis(self.hilo_center_basis),
            box_pct=self.hilo_box_pct,
            max_sales=self.hilo_max_sales,
            max_listings=self.hilo_max_listings,
            inside_polygon_only=self.hilo_inside_polygon_only,
            weights=default_hilo_weights(),
        )

    def hilo_engine(self) -> HiLoEngine:
        return HiLoEngine(self.hilo_settings(), max_workers=self.scoring_max_workers)

    def trend_cache(self) -> TrendCache:
        return TrendCache(maxsize=self.trend_cache_size)

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return {
            "hilo_center_basis": self.hilo_center_basis,
            "hilo_box_pct": self.hilo_box_pct,
            "hilo_max_sales": self.hilo_max_sales,
            "hilo_max_listings": self.hilo_max_listings,
            "hilo_inside_polygon_only": self.hilo_inside_polygon_only,
            "trend_lookback_months": self.trend_lookback_months,
            "trend_min_sales_per_month": self.trend_min_sales_per_month,
            "trend_metric": self.trend_metric,
            "trend_cache_size": self.trend_cache_size,
            "scoring_max_workers": self.scoring_max_workers,
            "log_level": self.log_level,
            "log_json": self.log_json,
        }
