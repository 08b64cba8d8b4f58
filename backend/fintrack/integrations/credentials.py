"""
Process-wide cache for short-lived aggregator credentials.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedCredential:
    value: str
    valid_until: float


class ExpiringCredentialCache:
    """
    Holds one credential with an explicit expiry, refreshed lazily.

    ``fetch`` returns ``(value, ttl_seconds)``. Concurrent callers that find
    the cache empty or expired share a single refresh: the first one takes the
    lock and fetches, the others wait on the lock and then reuse its result.
    """

    def __init__(
        self,
        fetch: Callable[[], Tuple[str, float]],
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[CachedCredential] = None

    def _fresh(self) -> Optional[str]:
        cached = self._cached
        if cached is not None and self._clock() < cached.valid_until:
            return cached.value
        return None

    def get(self) -> str:
        value = self._fresh()
        if value is not None:
            return value

        with self._lock:
            # Another caller may have refreshed while we waited.
            value = self._fresh()
            if value is not None:
                return value

            value, ttl_seconds = self._fetch()
            self._cached = CachedCredential(value=value, valid_until=self._clock() + ttl_seconds)
            logger.info(f"Refreshed aggregator credential, valid for {int(ttl_seconds)}s")
            return value

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
