"""
In-process cache for report result rows.

Used by report previews so repeated views within the TTL do not hit the
backend and the reporting database again. Preloads for a key that is
already cached or already loading are skipped.
"""

import logging
import threading
import time
from typing import Any, Callable, Optional

from kpiwatch.config import config

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str]


class ReportDataCache:
    """
    TTL cache keyed by (report_id, source).

    Thread-safe: all state is guarded by a single lock; loaders run
    outside the lock.
    """

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.cache_ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, tuple[float, Any]] = {}
        self._in_flight: set[CacheKey] = set()
        self._lock = threading.Lock()

    def _fresh(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._clock() - entry[0] < self.ttl_seconds

    def get(self, report_id: str, source: str) -> Optional[Any]:
        """Cached data, or None when missing or expired."""
        key = (report_id, source)
        with self._lock:
            if self._fresh(key):
                return self._entries[key][1]
            self._entries.pop(key, None)
            return None

    def set(self, report_id: str, source: str, data: Any) -> None:
        with self._lock:
            self._entries[(report_id, source)] = (self._clock(), data)

    def invalidate(self, report_id: str, source: Optional[str] = None) -> None:
        """Drop a report from the cache (every source when source is None)."""
        with self._lock:
            for key in list(self._entries):
                if key[0] == report_id and (source is None or key[1] == source):
                    del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def preload(
        self, report_id: str, source: str, loader: Callable[[], Any], raise_errors: bool = False
    ) -> bool:
        """
        Load and cache report data unless it is fresh or already loading.

        Args:
            loader: Zero-argument callable returning the data
            raise_errors: Re-raise loader failures instead of logging them

        Returns:
            True if the loader ran and its result was cached
        """
        key = (report_id, source)
        with self._lock:
            if self._fresh(key) or key in self._in_flight:
                return False
            self._in_flight.add(key)

        try:
            data = loader()
        except Exception as e:
            if raise_errors:
                raise
            logger.warning(f"Preload of report {report_id} ({source}) failed: {e}")
            return False
        finally:
            with self._lock:
                self._in_flight.discard(key)

        self.set(report_id, source, data)
        return True
