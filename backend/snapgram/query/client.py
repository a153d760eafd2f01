"""
Snapgram Backend — Query Client (cache, coalescing, invalidation)
===================================================================

What:  In-process cache of query results keyed by `(QueryKey, *params)`,
       plus the registry of per-session infinite feeds.
How:   fetch() serves a fresh cached value, joins an in-flight fetch for the
       same key, or starts one. mutate() runs a write and, only when it
       succeeds, marks every key matching the mutation's invalidation rules
       stale. Stale entries are re-fetched the next time they are read.

Entry lifecycle:
    miss ──fetch──▶ fresh ──query_stale_seconds or invalidate()──▶ stale
                                                                    │
                     pruned after query_cache_seconds unread ◀──────┘

Concurrency:
    Single event loop, no locks. Entries change only when a fetch or a
    mutation completes. The shared fetch task is shielded, so a cancelled
    caller does not cancel the fetch other callers are waiting on.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set, TypeVar

from snapgram.config import settings
from snapgram.exceptions import TransportError
from snapgram.query.infinite import FeedStatus, InfiniteFeed, PageFetcher
from snapgram.query.keys import INVALIDATIONS, CacheKey, Mutation, format_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry:
    value: Any
    fetched_at: float
    last_access: float
    stale: bool = False


def _matches(key: CacheKey, prefix: CacheKey) -> bool:
    return key[: len(prefix)] == prefix


class QueryClient:
    def __init__(
        self,
        stale_seconds: Optional[float] = None,
        cache_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stale_seconds = settings.query_stale_seconds if stale_seconds is None else stale_seconds
        self.cache_seconds = settings.query_cache_seconds if cache_seconds is None else cache_seconds
        self.timeout_seconds = settings.query_timeout_seconds if timeout_seconds is None else timeout_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._in_flight: Dict[CacheKey, asyncio.Task] = {}
        self._invalidated_in_flight: Set[CacheKey] = set()
        self._feeds: Dict[str, InfiniteFeed] = {}

    # ══════════════════════════════════════════════════════════════════════
    # Reads
    # ══════════════════════════════════════════════════════════════════════

    async def fetch(self, key: CacheKey, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Cached, coalesced read.

        Raises whatever `fn` raises (nothing is cached on failure), or
        TransportError when `fn` exceeds the query timeout.
        """
        self.prune()
        entry = self._entries.get(key)
        if entry is not None and not self._expired(entry):
            entry.last_access = self._clock()
            return entry.value

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, fn))
            self._in_flight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return await asyncio.shield(task)

    async def _run(self, key: CacheKey, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            value = await asyncio.wait_for(fn(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Query %s timed out after %.1fs", format_key(key), self.timeout_seconds)
            raise TransportError(
                message="The request timed out. Please try again.",
                context={"query": format_key(key), "timeout": self.timeout_seconds},
            )
        finally:
            invalidated = key in self._invalidated_in_flight
            self._invalidated_in_flight.discard(key)

        now = self._clock()
        # A mutation that landed mid-fetch may not be reflected in `value`
        self._entries[key] = CacheEntry(value=value, fetched_at=now, last_access=now, stale=invalidated)
        return value

    def _forget(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled():
            # Mark the exception retrieved; every waiter re-raises it itself
            task.exception()

    def _expired(self, entry: CacheEntry) -> bool:
        return entry.stale or (self._clock() - entry.fetched_at) >= self.stale_seconds

    # ══════════════════════════════════════════════════════════════════════
    # Writes
    # ══════════════════════════════════════════════════════════════════════

    async def mutate(
        self,
        mutation: Mutation,
        fn: Callable[[], Awaitable[T]],
        params: Mapping[str, Any],
    ) -> T:
        """
        Run a write; on success apply its invalidation rules.

        A failed write leaves the cache exactly as it was.
        """
        result = await fn()
        for rule in INVALIDATIONS[mutation]:
            self.invalidate(rule.prefix(params))
        logger.debug("Mutation %s applied %d invalidation rules", mutation.value, len(INVALIDATIONS[mutation]))
        return result

    def invalidate(self, prefix: CacheKey) -> int:
        """Mark every entry, in-flight fetch and feed under `prefix` stale."""
        count = 0
        for key, entry in self._entries.items():
            if _matches(key, prefix):
                entry.stale = True
                count += 1
        for key in self._in_flight:
            if _matches(key, prefix):
                self._invalidated_in_flight.add(key)
        for feed in self._feeds.values():
            if _matches(feed.key, prefix):
                feed.stale = True
        return count

    # ══════════════════════════════════════════════════════════════════════
    # Introspection & housekeeping
    # ══════════════════════════════════════════════════════════════════════

    def get_entry(self, key: CacheKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def is_stale(self, key: CacheKey) -> bool:
        """True when `key` has no entry or its entry would be re-fetched."""
        entry = self._entries.get(key)
        return entry is None or self._expired(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def prune(self) -> int:
        now = self._clock()
        expired = [
            key for key, entry in self._entries.items()
            if now - entry.last_access >= self.cache_seconds
        ]
        for key in expired:
            del self._entries[key]
        idle = [
            owner for owner, feed in self._feeds.items()
            if feed.status != FeedStatus.FETCHING and now - feed.last_access >= self.cache_seconds
        ]
        for owner in idle:
            self._feeds.pop(owner).reset()
        return len(expired) + len(idle)

    def clear(self) -> None:
        self._entries.clear()
        self._in_flight.clear()
        self._invalidated_in_flight.clear()
        for feed in self._feeds.values():
            feed.reset()
        self._feeds.clear()

    # ══════════════════════════════════════════════════════════════════════
    # Infinite feeds
    # ══════════════════════════════════════════════════════════════════════

    def infinite_feed(self, owner: str, key: CacheKey, fetch_page: PageFetcher) -> InfiniteFeed:
        """
        The owner's feed for `key`.

        When the owner's feed was built for other parameters it is reset and
        re-keyed; a page still in flight for the old parameters is dropped
        when it arrives. An invalidated feed keeps its pages and refetches
        them on the next page request.
        """
        feed = self._feeds.get(owner)
        if feed is None:
            feed = InfiniteFeed(key, fetch_page, self.timeout_seconds)
            self._feeds[owner] = feed
        elif feed.key != key:
            logger.debug(
                "Rebuilding feed for %s: %s → %s", owner, format_key(feed.key), format_key(key)
            )
            feed.reset(key, fetch_page)
        feed.last_access = self._clock()
        self.prune()
        return feed

    def get_feed(self, owner: str) -> Optional[InfiniteFeed]:
        return self._feeds.get(owner)

    def drop_feed(self, owner: str) -> None:
        feed = self._feeds.pop(owner, None)
        if feed is not None:
            feed.reset()
