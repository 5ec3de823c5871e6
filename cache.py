import logging
import threading
import time
from functools import lru_cache
from typing import Callable, Hashable, TypeVar

from config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

CacheKey = tuple[str, int, Hashable]


class DashboardCache:
    """In-process TTL cache for household aggregates.

    Keys are ``(kind, household_id, detail)``. Any mutation that can move a
    household total invalidates every key of that household.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[CacheKey, tuple[float, object]] = {}
        self._lock = threading.Lock()

    def get_or_set(self, key: CacheKey, ttl_secs: int, fetch: Callable[[], T]) -> T:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry and entry[0] > now:
                logger.debug(f"cache_hit: key={key}")
                return entry[1]  # type: ignore[return-value]
        logger.debug(f"cache_miss: key={key}")
        value = fetch()
        if ttl_secs > 0:
            with self._lock:
                self._entries[key] = (now + ttl_secs, value)
        return value

    def invalidate_household(self, household_id: int) -> int:
        with self._lock:
            stale = [key for key in self._entries if key[1] == household_id]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug(
                f"cache_invalidate: household_id={household_id} keys={len(stale)}"
            )
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


@lru_cache(maxsize=1)
def get_dashboard_cache() -> DashboardCache:
    return DashboardCache()


def summary_ttl() -> int:
    return get_settings().cache_ttl_summary_secs


def settlement_ttl() -> int:
    return get_settings().cache_ttl_settlement_secs
