"""
In-process TTL cache for reconciliation summaries.

Summaries are expensive to fold and are requested in bursts by dashboards, so
each scope is kept for a short TTL. Any write touching a hostel drops every
entry of that hostel (and the cross-hostel ones).
"""
import logging
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any

from fastapi import Request

from src.core.config import settings

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"


@dataclass(frozen=True)
class CacheKey:
    """Scope of a cached summary. hostel_id None means cross-hostel."""

    kind: str
    hostel_id: int | None = None
    extra: Hashable = None


@dataclass
class _Entry:
    value: Any
    expires_at: float


class SummaryCache:
    """TTL map keyed by summary scope. Read path only; never consulted by writes."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, _Entry] = {}

    def get(self, key: CacheKey) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: CacheKey, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + self.ttl_seconds)

    def invalidate(self, key: CacheKey) -> None:
        self._entries.pop(key, None)

    def invalidate_hostel(self, hostel_id: int) -> int:
        """Drop all entries for a hostel plus cross-hostel entries. Returns count dropped."""
        stale = [k for k in self._entries if k.hostel_id in (hostel_id, None)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug("Summary cache invalidated for hostel %s (%s entries)", hostel_id, len(stale))
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


summary_cache = SummaryCache(ttl_seconds=settings.summary_cache_ttl_seconds)


def get_summary_cache(request: Request) -> SummaryCache:
    """FastAPI dependency: the cache attached to the running app."""
    return getattr(request.app.state, "summary_cache", summary_cache)
