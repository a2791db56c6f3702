"""
Cache for market trend results.

Keyed by (market, lookback_months, metric). The caller owns the cache
and invalidates it when new market data arrives; nothing here expires
entries on its own other than LRU eviction at capacity.
"""

import logging
import threading
from typing import Callable, Hashable, Optional, Tuple

from cachetools import LRUCache

from .models import Basis, TrendResult

logger = logging.getLogger(__name__)


DEFAULT_CACHE_SIZE = 256

TrendKey = Tuple[Hashable, int, Basis]


class TrendCache:
    """
    LRU cache of TrendResult values.

    Thread-safe so one instance can serve parallel requests across orders.
    """

    def __init__(self, maxsize: int = DEFAULT_CACHE_SIZE):
        self._cache: LRUCache = LRUCache(maxsize=maxsize)
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(market: Hashable, lookback_months: int, metric: Basis) -> TrendKey:
        return (market, lookback_months, metric)

    def get(self, market: Hashable, lookback_months: int, metric: Basis) -> Optional[TrendResult]:
        with self._lock:
            return self._cache.get(self.key(market, lookback_months, metric))

    def put(
        self,
        market: Hashable,
        lookback_months: int,
        metric: Basis,
        result: TrendResult,
    ) -> None:
        with self._lock:
            self._cache[self.key(market, lookback_months, metric)] = result

    def get_or_compute(
        self,
        market: Hashable,
        lookback_months: int,
        metric: Basis,
        compute: Callable[[], TrendResult],
    ) -> TrendResult:
        """Return the cached trend, computing and storing it on a miss."""
        key = self.key(market, lookback_months, metric)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self.hits += 1
                return cached
            self.misses += 1

        # Computed outside the lock; a concurrent miss recomputes the same value
        result = compute()
        with self._lock:
            self._cache[key] = result
        return result

    def invalidate(self, market: Optional[Hashable] = None) -> int:
        """
        Drop cached trends for one market, or everything when market is None.

        Returns:
            Number of entries removed
        """
        with self._lock:
            if market is None:
                removed = len(self._cache)
                self._cache.clear()
            else:
                stale = [k for k in self._cache.keys() if k[0] == market]
                for k in stale:
                    del self._cache[k]
                removed = len(stale)
        logger.info("Invalidated %d cached trend(s) for market=%r", removed, market)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, key: TrendKey) -> bool:
        with self._lock:
            return key in self._cache
