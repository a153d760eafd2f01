"""
Snapgram Backend — Feed Resolver Unit Tests
=============================================

What:  FeedResolver.get_page() against a mocked gateway.

What we test:
    ✅ 3 of 20 posts within 100 km → 3 posts, has_more still true
    ✅ Cursor always taken from the unfiltered batch
    ✅ Short batch → has_more false even when every post was kept
    ✅ No viewer position → distance filter ignored
    ✅ Bad input rejected before any backend call
    ✅ TransportError propagates with no partial page
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from snapgram.exceptions import TransportError, ValidationError
from snapgram.schemas.documents import PostBatch
from snapgram.services.feed_service import FEED_BATCH_SIZE, FeedResolver


def _gateway_returning(*batches):
    gateway = MagicMock()
    gateway.list_posts = AsyncMock(side_effect=list(batches))
    return gateway


def _batch(posts, requested=FEED_BATCH_SIZE):
    return PostBatch(documents=posts, requested=requested)


@pytest.fixture
def mixed_batch(make_post):
    """
    20 posts: 3 authors within 100 km of (0, 0), 13 far away, 4 with no
    location. The last post in the batch is one of the far ones.
    """
    near = {2: (0.1, 0.1), 9: (-0.5, 0.3), 14: (0.0, -0.8)}
    posts = []
    for i in range(20):
        if i in near:
            lat, lon = near[i]
        elif i % 4 == 1:
            lat, lon = None, None
        else:
            lat, lon = 10.0 + i, 20.0
        posts.append(make_post(f"p{i:02d}", lat, lon, index=i))
    return posts


class TestGetPage:
    @pytest.mark.asyncio
    async def test_three_of_twenty_within_radius(self, mixed_batch):
        resolver = FeedResolver(gateway=_gateway_returning(_batch(mixed_batch)))

        page = await resolver.get_page(0.0, 0.0, 100.0)

        assert [p.id for p in page.posts] == ["p02", "p09", "p14"]
        assert page.has_more is True
        assert page.batch_size == 20

    @pytest.mark.asyncio
    async def test_cursor_comes_from_unfiltered_batch(self, mixed_batch):
        resolver = FeedResolver(gateway=_gateway_returning(_batch(mixed_batch)))

        page = await resolver.get_page(0.0, 0.0, 100.0)

        assert page.next_cursor == "p19"
        assert page.next_cursor not in {p.id for p in page.posts}

    @pytest.mark.asyncio
    async def test_empty_filtered_page_still_has_more(self, make_post):
        far = [make_post(f"p{i}", 60.0, 60.0, index=i) for i in range(20)]
        resolver = FeedResolver(gateway=_gateway_returning(_batch(far)))

        page = await resolver.get_page(0.0, 0.0, 1.0)

        assert page.posts == []
        assert page.has_more is True
        assert page.next_cursor == "p19"

    @pytest.mark.asyncio
    async def test_short_batch_is_exhausted(self, make_post):
        posts = [make_post(f"p{i}", 0.0, 0.0, index=i) for i in range(7)]
        resolver = FeedResolver(gateway=_gateway_returning(_batch(posts)))

        page = await resolver.get_page(0.0, 0.0, 50.0)

        assert len(page.posts) == 7
        assert page.has_more is False
        assert page.next_cursor == "p6"

    @pytest.mark.asyncio
    async def test_empty_store(self):
        resolver = FeedResolver(gateway=_gateway_returning(_batch([])))

        page = await resolver.get_page(0.0, 0.0, None)

        assert page.posts == []
        assert page.next_cursor is None
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_cursor_and_batch_size_passed_to_gateway(self, mixed_batch):
        gateway = _gateway_returning(_batch(mixed_batch))
        resolver = FeedResolver(gateway=gateway)

        await resolver.get_page(0.0, 0.0, None, cursor="p-prev")

        gateway.list_posts.assert_awaited_once_with(limit=FEED_BATCH_SIZE, cursor_after="p-prev")

    @pytest.mark.asyncio
    async def test_unbounded_returns_whole_batch(self, mixed_batch):
        resolver = FeedResolver(gateway=_gateway_returning(_batch(mixed_batch)))

        page = await resolver.get_page(0.0, 0.0, None)

        assert page.posts == mixed_batch

    @pytest.mark.asyncio
    async def test_no_viewer_ignores_distance(self, mixed_batch):
        resolver = FeedResolver(gateway=_gateway_returning(_batch(mixed_batch)))

        page = await resolver.get_page(None, None, 5.0)

        assert len(page.posts) == 20


class TestGetPageErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "lat,lon,distance",
        [(91.0, 0.0, 10.0), (0.0, -200.0, 10.0), (0.0, 0.0, -1.0), (10.0, None, 10.0)],
    )
    async def test_invalid_input_makes_no_backend_call(self, lat, lon, distance):
        gateway = _gateway_returning()
        resolver = FeedResolver(gateway=gateway)

        with pytest.raises(ValidationError):
            await resolver.get_page(lat, lon, distance)

        gateway.list_posts.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self):
        gateway = MagicMock()
        gateway.list_posts = AsyncMock(side_effect=TransportError())
        resolver = FeedResolver(gateway=gateway)

        with pytest.raises(TransportError):
            await resolver.get_page(0.0, 0.0, 100.0)
