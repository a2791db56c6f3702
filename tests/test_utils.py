"""
Tests for configuration, logging setup and formatting helpers.
"""

import json
import logging
import pytest
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.comp_engine import Basis, CenterBasis, HiLoEngine, TrendCache
from utils import (
    Config,
    JsonFormatter,
    configure_logging,
    format_currency,
    format_percent,
    format_range,
    format_trend_rate,
)


CONFIG_ENV_VARS = [
    "HILO_CENTER_BASIS", "HILO_BOX_PCT", "HILO_MAX_SALES", "HILO_MAX_LISTINGS",
    "HILO_INSIDE_POLYGON_ONLY", "TREND_LOOKBACK_MONTHS", "TREND_MIN_SALES_PER_MONTH",
    "TREND_METRIC", "TREND_CACHE_SIZE", "SCORING_MAX_WORKERS", "LOG_LEVEL", "LOG_JSON",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


# =============================================================================
# Config
# =============================================================================

class TestConfig:
    """Environment-driven defaults."""

    def test_defaults(self, clean_env):
        config = Config.load()
        assert config.hilo_box_pct == 10.0
        assert config.trend_lookback_months == 12
        assert config.trend_min_sales_per_month == 3
        assert config.trend_basis == Basis.SALE_PRICE
        assert config.trend_cache_size == 256
        assert config.scoring_max_workers == 1
        assert config.log_level == "INFO"
        assert config.log_json is False

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("HILO_CENTER_BASIS", "weightedPrimaries")
        clean_env.setenv("HILO_BOX_PCT", "15")
        clean_env.setenv("HILO_INSIDE_POLYGON_ONLY", "false")
        clean_env.setenv("TREND_METRIC", "$/SF")
        clean_env.setenv("SCORING_MAX_WORKERS", "4")
        clean_env.setenv("LOG_JSON", "true")

        config = Config.load()
        settings = config.hilo_settings()
        assert settings.center_basis == CenterBasis.WEIGHTED_PRIMARIES
        assert settings.box_pct == 15.0
        assert settings.inside_polygon_only is False
        assert settings.weights.location == 0.10
        assert config.trend_basis == Basis.PPSF
        assert config.log_json is True

        engine = config.hilo_engine()
        assert isinstance(engine, HiLoEngine)
        assert engine.max_workers == 4

    def test_unknown_center_basis(self, clean_env):
        clean_env.setenv("HILO_CENTER_BASIS", "average")
        with pytest.raises(ValueError):
            Config.load().hilo_settings()

    def test_trend_cache_factory(self, clean_env):
        clean_env.setenv("TREND_CACHE_SIZE", "2")
        cache = Config.load().trend_cache()
        assert isinstance(cache, TrendCache)
        assert len(cache) == 0

    def test_to_dict(self, clean_env):
        data = Config.load().to_dict()
        assert set(data) == {name.lower() for name in CONFIG_ENV_VARS}


# =============================================================================
# Logging
# =============================================================================

class TestLogging:

    def test_json_formatter(self):
        record = logging.LogRecord(
            "core.comp_engine.hilo", logging.WARNING, __file__, 1,
            "Excluded %d candidate(s)", (2,), None,
        )
        record.order_id = "ORD-1"
        payload = json.loads(JsonFormatter().format(record))
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "core.comp_engine.hilo"
        assert payload["msg"] == "Excluded 2 candidate(s)"
        assert payload["order_id"] == "ORD-1"

    def test_configure_logging_single_handler(self, restore_root_logger):
        configure_logging("debug")
        configure_logging("DEBUG", json_output=True)
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, JsonFormatter)
        assert restore_root_logger.level == logging.DEBUG

    def test_unknown_level(self, restore_root_logger):
        with pytest.raises(ValueError):
            configure_logging("LOUD")


# =============================================================================
# Formatting
# =============================================================================

class TestFormatting:

    def test_currency(self):
        assert format_currency(450000) == "$450,000"
        assert format_currency(212.456, decimals=2) == "$212.46"
        assert format_currency(-1500) == "-$1,500"
        assert format_currency(250000, "GBP") == "£250,000"

    def test_percent(self):
        assert format_percent(12.345) == "12.3%"

    def test_trend_rate(self):
        assert format_trend_rate(0.005) == "+0.50%/mo"
        assert format_trend_rate(-0.0125) == "-1.25%/mo"
        assert format_trend_rate(None) == "n/a"

    def test_range(self):
        assert format_range(405000, 495000) == "$405,000 - $495,000"
        assert format_range(180, 220, per_sqft=True) == "$180.00/SF - $220.00/SF"
