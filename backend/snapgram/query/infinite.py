"""
Snapgram Backend — Infinite Feed State Machine
================================================

What:  Accumulates feed pages for one (viewer coordinate, distance filter)
       pair and hands out the next page on request.

State Machine:
    IDLE ──fetch_next_page()──▶ FETCHING ──page.has_more──▶ HAS_MORE
                                   │                           │
                                   │ not has_more              │ fetch_next_page()
                                   ▼                           ▼
                               EXHAUSTED                   FETCHING

    - The next request always uses the cursor of the last page, so page
      N+1 is never requested before page N has arrived.
    - A second fetch_next_page() while FETCHING awaits the same task.
    - reset() (parameters changed) bumps the generation; a page that
      arrives for an older generation is dropped.
    - An invalidated feed keeps its pages and is marked stale. The next
      fetch_next_page() refetches those pages from the newest post, then
      continues one page further, even from EXHAUSTED.
    - A failed or timed-out fetch returns to the state it started from.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from snapgram.exceptions import TransportError
from snapgram.query.keys import CacheKey, format_key
from snapgram.schemas.documents import FeedPage, PostDTO

logger = logging.getLogger(__name__)

PageFetcher = Callable[[Optional[str]], Awaitable[FeedPage]]


class FeedStatus(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    HAS_MORE = "has_more"
    EXHAUSTED = "exhausted"


class InfiniteFeed:
    def __init__(self, key: CacheKey, fetch_page: PageFetcher, timeout_seconds: float):
        self.key = key
        self.timeout_seconds = timeout_seconds
        self._fetch_page = fetch_page
        self.pages: List[FeedPage] = []
        self.status = FeedStatus.IDLE
        self.stale = False
        self._generation = 0
        self.last_access = 0.0
        self._resting = FeedStatus.IDLE
        self._in_flight: Optional[asyncio.Task] = None

    # ── Read-only views ───────────────────────────────────────────────────

    @property
    def has_more(self) -> bool:
        """True iff the last unfiltered batch was full."""
        return bool(self.pages) and self.pages[-1].has_more

    @property
    def next_cursor(self) -> Optional[str]:
        return self.pages[-1].next_cursor if self.pages else None

    @property
    def posts(self) -> List[PostDTO]:
        return [post for page in self.pages for post in page.posts]

    @property
    def generation(self) -> int:
        return self._generation

    # ── Transitions ───────────────────────────────────────────────────────

    def reset(self, key: Optional[CacheKey] = None, fetch_page: Optional[PageFetcher] = None) -> None:
        """Discard all pages and any in-flight result; optionally re-key."""
        if self._in_flight is not None:
            logger.debug("Feed %s reset while fetching; result will be dropped", format_key(self.key))
        self._generation += 1
        if key is not None:
            self.key = key
        if fetch_page is not None:
            self._fetch_page = fetch_page
        self.pages = []
        self.status = FeedStatus.IDLE
        self._resting = FeedStatus.IDLE
        self.stale = False
        self._in_flight = None

    async def fetch_next_page(self) -> Optional[FeedPage]:
        """
        Fetch and append the next page.

        A stale feed first refetches the pages it already holds, in order
        from the newest post, then fetches one more page after them.

        Returns None when the feed is exhausted, or when the page arrived
        after a reset and was dropped.

        Raises:
            TransportError: the fetch failed or exceeded the timeout.
        """
        if self._in_flight is None:
            if self.status == FeedStatus.EXHAUSTED and not self.stale:
                return None
            refetch = len(self.pages) if self.stale else 0
            self.stale = False
            self._resting = self.status
            self.status = FeedStatus.FETCHING
            self._in_flight = asyncio.ensure_future(
                self._load(self._generation, self._fetch_page, self.next_cursor, refetch)
            )
        return await asyncio.shield(self._in_flight)

    async def _load(
        self, generation: int, fetch_page: PageFetcher, cursor: Optional[str], refetch: int
    ) -> Optional[FeedPage]:
        try:
            pages = await self._collect(fetch_page, cursor, refetch)
        except asyncio.TimeoutError:
            self._settle_failure(generation, refetch)
            raise TransportError(
                message="Loading more posts timed out. Please try again.",
                context={"query": format_key(self.key), "timeout": self.timeout_seconds},
            )
        except BaseException:
            self._settle_failure(generation, refetch)
            raise

        if generation != self._generation:
            logger.debug("Dropping page for superseded feed %s", format_key(self.key))
            return None

        if refetch:
            logger.debug("Refetched %d pages of %s", refetch, format_key(self.key))
            self.pages = pages
        else:
            self.pages.extend(pages)
        page = pages[-1]
        self.status = FeedStatus.HAS_MORE if page.has_more else FeedStatus.EXHAUSTED
        self._in_flight = None
        return page

    async def _collect(
        self, fetch_page: PageFetcher, cursor: Optional[str], refetch: int
    ) -> List[FeedPage]:
        if not refetch:
            return [await asyncio.wait_for(fetch_page(cursor), timeout=self.timeout_seconds)]

        # Walk from the newest post so cursors follow the current data
        pages: List[FeedPage] = []
        cursor = None
        while len(pages) <= refetch:
            page = await asyncio.wait_for(fetch_page(cursor), timeout=self.timeout_seconds)
            pages.append(page)
            if not page.has_more:
                break
            cursor = page.next_cursor
        return pages

    def _settle_failure(self, generation: int, refetch: int = 0) -> None:
        if generation == self._generation:
            self.status = self._resting
            self.stale = self.stale or bool(refetch)
            self._in_flight = None
