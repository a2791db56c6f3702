"""
Tests for the market trend cache.

Verifies:
- Keyed by (market, lookback, metric)
- Computes once per key until invalidated
- Per-market and full invalidation
- LRU eviction at capacity
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.comp_engine import Basis, TrendCache, TrendMethod, TrendResult


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def cache():
    return TrendCache(maxsize=8)


@pytest.fixture
def counting_compute():
    """Compute callable that records how often it ran."""
    calls = {"n": 0}

    def _compute() -> TrendResult:
        calls["n"] += 1
        return TrendResult(slope=0.01, intercept=12.0, pct_per_month=0.01005,
                           method=TrendMethod.THEIL_SEN, points_used=12)

    _compute.calls = calls
    return _compute


# =============================================================================
# Tests
# =============================================================================

class TestTrendCache:
    """Cache behaviour."""

    def test_miss_then_hit(self, cache, counting_compute):
        first = cache.get_or_compute("78704", 12, Basis.SALE_PRICE, counting_compute)
        second = cache.get_or_compute("78704", 12, Basis.SALE_PRICE, counting_compute)
        assert first is second
        assert counting_compute.calls["n"] == 1
        assert cache.hits == 1
        assert cache.misses == 1

    def test_key_includes_lookback_and_metric(self, cache, counting_compute):
        cache.get_or_compute("78704", 12, Basis.SALE_PRICE, counting_compute)
        cache.get_or_compute("78704", 6, Basis.SALE_PRICE, counting_compute)
        cache.get_or_compute("78704", 12, Basis.PPSF, counting_compute)
        assert counting_compute.calls["n"] == 3
        assert len(cache) == 3
        assert TrendCache.key("78704", 6, Basis.SALE_PRICE) in cache

    def test_get_and_put(self, cache):
        assert cache.get("78704", 12, Basis.SALE_PRICE) is None
        flat = TrendResult.flat()
        cache.put("78704", 12, Basis.SALE_PRICE, flat)
        assert cache.get("78704", 12, Basis.SALE_PRICE) == flat

    def test_invalidate_one_market(self, cache, counting_compute):
        cache.get_or_compute("78704", 12, Basis.SALE_PRICE, counting_compute)
        cache.get_or_compute("78704", 12, Basis.PPSF, counting_compute)
        cache.get_or_compute("78745", 12, Basis.SALE_PRICE, counting_compute)

        assert cache.invalidate("78704") == 2
        assert len(cache) == 1
        cache.get_or_compute("78704", 12, Basis.SALE_PRICE, counting_compute)
        assert counting_compute.calls["n"] == 4

    def test_invalidate_all(self, cache, counting_compute):
        cache.get_or_compute("a", 12, Basis.SALE_PRICE, counting_compute)
        cache.get_or_compute("b", 12, Basis.SALE_PRICE, counting_compute)
        assert cache.invalidate() == 2
        assert len(cache) == 0

    def test_lru_eviction(self, counting_compute):
        cache = TrendCache(maxsize=2)
        cache.get_or_compute("a", 12, Basis.SALE_PRICE, counting_compute)
        cache.get_or_compute("b", 12, Basis.SALE_PRICE, counting_compute)
        cache.get_or_compute("a", 12, Basis.SALE_PRICE, counting_compute)  # touch a
        cache.get_or_compute("c", 12, Basis.SALE_PRICE, counting_compute)
        assert TrendCache.key("a", 12, Basis.SALE_PRICE) in cache
        assert TrendCache.key("b", 12, Basis.SALE_PRICE) not in cache

    def test_instances_are_independent(self, counting_compute):
        first, second = TrendCache(), TrendCache()
        first.get_or_compute("a", 12, Basis.SALE_PRICE, counting_compute)
        assert len(second) == 0

    def test_concurrent_access(self, cache, counting_compute):
        markets = [f"m{i % 4}" for i in range(40)]
        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(
                lambda m: cache.get_or_compute(m, 12, Basis.SALE_PRICE, counting_compute),
                markets,
            ))
        assert len(results) == 40
        assert len(cache) == 4
        assert cache.hits + cache.misses == 40
