"""
Snapgram Backend — Infinite Feed State Machine Tests
======================================================

What we test:
    ✅ IDLE → FETCHING → HAS_MORE → FETCHING → EXHAUSTED
    ✅ Each request uses the previous page's cursor
    ✅ Concurrent next-page requests share one fetch
    ✅ A page arriving after a parameter change is dropped
    ✅ Failure / timeout returns to the previous resting state
    ✅ Invalidated feeds refetch their pages and continue from there
    ✅ QueryClient owns one feed per session, rebuilds it on change and
       prunes feeds nobody has read within the cache time
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from snapgram.exceptions import TransportError
from snapgram.query.client import QueryClient
from snapgram.query.infinite import FeedStatus, InfiniteFeed
from snapgram.query.keys import Mutation, QueryKey
from snapgram.schemas.documents import FeedPage

KEY = (QueryKey.GET_POSTS, 0.0, 0.0, 100.0)


def _page(cursor, has_more, posts=()):
    return FeedPage(posts=list(posts), next_cursor=cursor, has_more=has_more, batch_size=20 if has_more else 3)


class TestStateMachine:
    @pytest.mark.asyncio
    async def test_full_walk(self, make_post):
        fetch = AsyncMock(side_effect=[
            _page("p19", True, [make_post("p03", 0.0, 0.0)]),
            _page("p22", False, [make_post("p21", 0.0, 0.0)]),
        ])
        feed = InfiniteFeed(KEY, fetch, timeout_seconds=1.0)
        assert feed.status == FeedStatus.IDLE
        assert feed.has_more is False

        await feed.fetch_next_page()
        assert feed.status == FeedStatus.HAS_MORE
        assert feed.has_more is True
        assert feed.next_cursor == "p19"

        await feed.fetch_next_page()
        assert feed.status == FeedStatus.EXHAUSTED
        assert feed.has_more is False
        assert [p.id for p in feed.posts] == ["p03", "p21"]

        assert [c.args for c in fetch.await_args_list] == [(None,), ("p19",)]

    @pytest.mark.asyncio
    async def test_exhausted_feed_makes_no_more_calls(self):
        fetch = AsyncMock(return_value=_page("p2", False))
        feed = InfiniteFeed(KEY, fetch, timeout_seconds=1.0)

        await feed.fetch_next_page()
        assert await feed.fetch_next_page() is None

        assert fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_empty_page_with_more_keeps_going(self):
        fetch = AsyncMock(side_effect=[_page("p19", True), _page("p39", True)])
        feed = InfiniteFeed(KEY, fetch, timeout_seconds=1.0)

        await feed.fetch_next_page()
        await feed.fetch_next_page()

        assert feed.posts == []
        assert feed.status == FeedStatus.HAS_MORE
        assert feed.next_cursor == "p39"

    @pytest.mark.asyncio
    async def test_concurrent_requests_coalesce(self):
        release = asyncio.Event()
        calls = []

        async def fetch(cursor):
            calls.append(cursor)
            await release.wait()
            return _page("p19", True)

        feed = InfiniteFeed(KEY, fetch, timeout_seconds=1.0)
        first = asyncio.create_task(feed.fetch_next_page())
        second = asyncio.create_task(feed.fetch_next_page())
        await asyncio.sleep(0)
        assert feed.status == FeedStatus.FETCHING

        release.set()
        pages = await asyncio.gather(first, second)

        assert calls == [None]
        assert pages[0] is pages[1]
        assert len(feed.pages) == 1

    @pytest.mark.asyncio
    async def test_result_dropped_after_reset(self):
        release = asyncio.Event()

        async def old_fetch(cursor):
            await release.wait()
            return _page("old", True)

        feed = InfiniteFeed(KEY, old_fetch, timeout_seconds=1.0)
        pending = asyncio.create_task(feed.fetch_next_page())
        await asyncio.sleep(0)

        new_key = (QueryKey.GET_POSTS, 10.0, 10.0, 5.0)
        feed.reset(new_key, AsyncMock(return_value=_page("new", False)))
        release.set()

        assert await pending is None
        assert feed.pages == []
        assert feed.status == FeedStatus.IDLE

        await feed.fetch_next_page()
        assert feed.next_cursor == "new"
        assert feed.key == new_key

    @pytest.mark.asyncio
    async def test_failure_returns_to_resting_state(self):
        fetch = AsyncMock(side_effect=[_page("p19", True), TransportError(), _page("p39", False)])
        feed = InfiniteFeed(KEY, fetch, timeout_seconds=1.0)
        await feed.fetch_next_page()

        with pytest.raises(TransportError):
            await feed.fetch_next_page()
        assert feed.status == FeedStatus.HAS_MORE

        await feed.fetch_next_page()
        assert fetch.await_args_list[-1].args == ("p19",)
        assert feed.status == FeedStatus.EXHAUSTED

    @pytest.mark.asyncio
    async def test_timeout_returns_to_idle(self):
        async def hang(cursor):
            await asyncio.sleep(10)

        feed = InfiniteFeed(KEY, hang, timeout_seconds=0.05)

        with pytest.raises(TransportError, match="timed out"):
            await feed.fetch_next_page()
        assert feed.status == FeedStatus.IDLE
        assert feed.pages == []


class TestFeedRegistry:
    @pytest.mark.asyncio
    async def test_same_parameters_reuse_feed(self):
        client = QueryClient(timeout_seconds=1.0)
        fetch = AsyncMock(side_effect=[_page("p19", True), _page("p39", True)])

        feed = client.infinite_feed("s1", KEY, fetch)
        await feed.fetch_next_page()
        again = client.infinite_feed("s1", KEY, fetch)
        await again.fetch_next_page()

        assert again is feed
        assert len(feed.pages) == 2

    @pytest.mark.asyncio
    async def test_changed_parameters_restart_feed(self):
        client = QueryClient(timeout_seconds=1.0)
        feed = client.infinite_feed("s1", KEY, AsyncMock(return_value=_page("p19", True)))
        await feed.fetch_next_page()

        other = (QueryKey.GET_POSTS, 0.0, 0.0, None)
        fetch = AsyncMock(return_value=_page("q19", True))
        rebuilt = client.infinite_feed("s1", other, fetch)
        await rebuilt.fetch_next_page()

        assert rebuilt.key == other
        assert len(rebuilt.pages) == 1
        fetch.assert_awaited_once_with(None)

    @pytest.mark.asyncio
    async def test_invalidated_feed_refetches_then_continues(self):
        pages = {None: _page("p19", True), "p19": _page("p39", True), "p39": _page("p59", False)}
        calls = []

        async def fetch(cursor):
            calls.append(cursor)
            return pages[cursor]

        client = QueryClient(timeout_seconds=1.0)
        feed = client.infinite_feed("s1", KEY, fetch)
        await feed.fetch_next_page()
        await feed.fetch_next_page()

        await client.mutate(Mutation.CREATE_POST, AsyncMock(), {"post_id": None, "creator_id": "u1"})
        assert feed.stale is True

        again = client.infinite_feed("s1", KEY, fetch)
        await again.fetch_next_page()

        assert again is feed
        assert calls == [None, "p19", None, "p19", "p39"]
        assert len(feed.pages) == 3
        assert feed.next_cursor == "p59"
        assert feed.status == FeedStatus.EXHAUSTED
        assert feed.stale is False

    @pytest.mark.asyncio
    async def test_invalidated_exhausted_feed_is_refreshed(self):
        fetch = AsyncMock(side_effect=[_page("p3", False), _page("p4", False)])
        feed = InfiniteFeed(KEY, fetch, timeout_seconds=1.0)
        await feed.fetch_next_page()
        assert await feed.fetch_next_page() is None

        feed.stale = True
        page = await feed.fetch_next_page()

        assert page.next_cursor == "p4"
        assert fetch.await_args_list[-1].args == (None,)
        assert len(feed.pages) == 1
        assert feed.status == FeedStatus.EXHAUSTED

    @pytest.mark.asyncio
    async def test_failed_refetch_keeps_pages(self):
        fetch = AsyncMock(side_effect=[_page("p19", True), TransportError()])
        feed = InfiniteFeed(KEY, fetch, timeout_seconds=1.0)
        await feed.fetch_next_page()
        feed.stale = True

        with pytest.raises(TransportError):
            await feed.fetch_next_page()

        assert feed.next_cursor == "p19"
        assert feed.status == FeedStatus.HAS_MORE
        assert feed.stale is True

    @pytest.mark.asyncio
    async def test_unread_feed_is_pruned(self):
        now = [1000.0]
        client = QueryClient(cache_seconds=300, timeout_seconds=1.0, clock=lambda: now[0])
        feed = client.infinite_feed("s1", KEY, AsyncMock(return_value=_page("p19", True)))
        await feed.fetch_next_page()
        client.infinite_feed("s2", KEY, AsyncMock())

        now[0] += 301
        client.infinite_feed("s2", KEY, AsyncMock())

        assert client.get_feed("s1") is None
        assert client.get_feed("s2") is not None
        assert feed.pages == []

    @pytest.mark.asyncio
    async def test_feed_read_within_cache_time_is_kept(self):
        now = [1000.0]
        client = QueryClient(cache_seconds=300, timeout_seconds=1.0, clock=lambda: now[0])
        client.infinite_feed("s1", KEY, AsyncMock())

        now[0] += 200
        client.infinite_feed("s1", KEY, AsyncMock())
        now[0] += 200

        assert client.prune() == 0
        assert client.get_feed("s1") is not None


    def test_feeds_are_per_session(self):
        client = QueryClient(timeout_seconds=1.0)
        fetch = AsyncMock()

        a = client.infinite_feed("s1", KEY, fetch)
        b = client.infinite_feed("s2", KEY, fetch)
        client.drop_feed("s1")

        assert a is not b
        assert client.get_feed("s1") is None
        assert client.get_feed("s2") is b
