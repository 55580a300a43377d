"""
app/core/price_cache.py - In-memory TTL cache for price observations
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, Optional, Tuple, Any

from app.core.models import PricePoint

CURRENT = "current"
PREVIOUS = "previous"
HISTORICAL = "historical"

DEFAULT_TTLS: Dict[str, float] = {
    CURRENT: 5 * 60,
    PREVIOUS: 60 * 60,
    HISTORICAL: 14 * 24 * 60 * 60,  # past closes do not change
}

CacheKey = Tuple[str, str, str]


class PriceCache:
    """
    Expiring map of PricePoints keyed by (kind, symbol, date)

    An entry is valid while ``now - point.timestamp < ttl(kind)``. Expired
    entries are dropped on read and by ``sweep()``. Concurrent fills of the
    same key are harmless: the later write wins.
    """

    def __init__(
        self,
        ttls: Optional[Dict[str, float]] = None,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.time,
    ):
        self.ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self.max_entries = max_entries
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        self._entries: "OrderedDict[CacheKey, PricePoint]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(kind: str, symbol: str, date: str = "current") -> CacheKey:
        return (kind, symbol.upper(), date)

    def ttl(self, kind: str) -> float:
        return self.ttls.get(kind, self.ttls[CURRENT])

    def _is_fresh(self, kind: str, point: PricePoint, now: float) -> bool:
        return now - point.timestamp < self.ttl(kind)

    def get(self, kind: str, symbol: str, date: str = "current") -> Optional[PricePoint]:
        """Return the cached point or None when absent or expired"""
        key = self.make_key(kind, symbol, date)
        now = self.clock()

        with self._lock:
            point = self._entries.get(key)
            if point is None:
                self.misses += 1
                return None

            if not self._is_fresh(kind, point, now):
                del self._entries[key]
                self.misses += 1
                self.logger.debug(f"Cache EXPIRED for {key}")
                return None

            self.hits += 1

        self.logger.debug(f"Cache HIT for {key}")
        return point

    def set(self, kind: str, symbol: str, date: str, point: PricePoint) -> None:
        key = self.make_key(kind, symbol, date)

        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_entries:
                # Bound memory: drop the oldest insertion
                self._entries.popitem(last=False)
            self._entries[key] = point

        self.logger.debug(f"Cache SET for {key}")

    def delete(self, kind: str, symbol: str, date: str = "current") -> bool:
        with self._lock:
            return self._entries.pop(self.make_key(kind, symbol, date), None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0
        self.logger.info("Price cache cleared")

    def sweep(self) -> int:
        """Drop every expired entry. Returns number removed"""
        now = self.clock()
        with self._lock:
            expired = [
                key
                for key, point in self._entries.items()
                if not self._is_fresh(key[0], point, now)
            ]
            for key in expired:
                del self._entries[key]

        self.logger.info(f"Cleaned {len(expired)} expired cache entries")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            entries = list(self._entries.items())
            hits, misses = self.hits, self.misses

        oldest = min(entries, key=lambda item: item[1].timestamp, default=None)
        newest = max(entries, key=lambda item: item[1].timestamp, default=None)
        lookups = hits + misses

        return {
            "size": len(entries),
            "max_size": self.max_entries,
            "hits": hits,
            "misses": misses,
            "hit_rate": hits / lookups if lookups else 0.0,
            "oldest_key": ":".join(oldest[0]) if oldest else None,
            "newest_key": ":".join(newest[0]) if newest else None,
        }
