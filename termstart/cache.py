"""
Short-lived cache for the full bookmark listing.

The session keeps a single slot holding the last listing fetched from the
store. Reads inside the TTL are served from the slot; anything older is
refetched before the read completes. Writes never patch the slot, they empty
it, so the next read always reflects what the server actually stored.
"""
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from .models import Bookmark

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300


@dataclass
class CacheEntry:
    fetched_at: float
    snapshot: List[Bookmark]


class ResultCache:
    """
    Single-slot TTL cache.

    Concurrent reads that both find the slot stale will both fetch. A fetch
    that was already in flight when the slot was invalidated is returned to
    its caller but never stored.
    """

    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            ttl: Seconds a snapshot stays fresh
            clock: Monotonic time source, injectable for tests
        """
        self.ttl = ttl
        self.clock = clock
        self.entry: Optional[CacheEntry] = None
        self.generation = 0
        self.stats = {
            'hits': 0,
            'misses': 0,
            'invalidations': 0,
        }

    def is_fresh(self) -> bool:
        return self.entry is not None and self.clock() - self.entry.fetched_at < self.ttl

    def peek(self) -> Optional[List[Bookmark]]:
        """Return the snapshot if it is still fresh, without fetching."""
        return self.entry.snapshot if self.is_fresh() else None

    def age(self) -> Optional[float]:
        """Seconds since the slot was filled, or None when empty."""
        if self.entry is None:
            return None
        return self.clock() - self.entry.fetched_at

    def store(self, snapshot: List[Bookmark]):
        self.entry = CacheEntry(fetched_at=self.clock(), snapshot=list(snapshot))

    def invalidate(self):
        """Empty the slot. Called after every create, update and delete."""
        if self.entry is not None:
            logger.debug("Invalidating bookmark cache")
        self.entry = None
        self.generation += 1
        self.stats['invalidations'] += 1

    async def read(self, fetch: Callable[[], Awaitable[List[Bookmark]]],
                   force_refresh: bool = False) -> List[Bookmark]:
        """
        Return the cached listing, fetching it first when needed.

        Args:
            fetch: Coroutine function producing a full listing
            force_refresh: Ignore a fresh slot and refetch

        A failed fetch propagates and leaves the slot untouched.
        """
        if not force_refresh:
            snapshot = self.peek()
            if snapshot is not None:
                self.stats['hits'] += 1
                logger.debug(f"Cache hit ({len(snapshot)} bookmarks)")
                return snapshot

        self.stats['misses'] += 1
        logger.debug("Cache miss, fetching bookmarks")
        generation = self.generation
        snapshot = list(await fetch())
        if self.generation != generation:
            logger.debug("Discarding listing fetched before invalidation")
            return snapshot
        self.store(snapshot)
        return self.entry.snapshot
