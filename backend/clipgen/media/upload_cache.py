"""
Time-bounded cache of provider upload handles.

Providers hand back an opaque URI for an uploaded asset that expires on
their side. Entries live at most ttl_seconds; the TTL is an upper bound, not a
promise the handle is still valid, so adapters invalidate on stale errors.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from clipgen.utils.metrics import upload_handle_cache_requests_total

logger = logging.getLogger(__name__)


@dataclass
class UploadHandle:
    """Provider-issued handle and when it was stored."""
    handle: str
    issued_at: float


class UploadHandleCache:
    """Thread-safe (provider, prepared file) -> upload handle map with TTL."""

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            ttl_seconds: Maximum age of a returned handle
            clock: Monotonic time source (injectable for tests)
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, UploadHandle] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _key(provider: str, identity: str) -> str:
        return f"{provider}:{identity}"

    def get(self, provider: str, identity: str) -> Optional[str]:
        """Return a handle younger than the TTL, or None."""
        key = self._key(provider, identity)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() - entry.issued_at < self.ttl_seconds:
                upload_handle_cache_requests_total.labels(provider=provider, result="hit").inc()
                logger.debug(f"Upload cache hit for {key}")
                return entry.handle
            if entry is not None:
                del self._entries[key]

        upload_handle_cache_requests_total.labels(provider=provider, result="miss").inc()
        return None

    def put(self, provider: str, identity: str, handle: str) -> None:
        with self._lock:
            self._entries[self._key(provider, identity)] = UploadHandle(handle=handle, issued_at=self._clock())

    def invalidate(self, provider: str, identity: str) -> None:
        """Drop an entry so the next submission re-uploads."""
        with self._lock:
            removed = self._entries.pop(self._key(provider, identity), None)
        if removed is not None:
            logger.info(f"Invalidated upload handle for {provider}:{identity}")

    def purge_expired(self) -> int:
        """Remove expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now - e.issued_at >= self.ttl_seconds]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
