"""
Snapgram Backend — Geo-Filtered Feed Resolver
===============================================

What:  Returns one page of the discovery feed: the newest posts after a
       cursor, restricted to authors within a radius of the viewer.
How:   Fetches a fixed batch of FEED_BATCH_SIZE posts from the gateway, then
       filters that batch in memory with the Haversine distance.

Pagination contract:
    ┌──────────────┐   batch of 20   ┌──────────────┐   filter   ┌───────────┐
    │   Gateway    │────────────────▶│ unfiltered   │───────────▶│  posts    │
    │ list_posts() │                 │ batch        │            │ (subset)  │
    └──────────────┘                 └──────┬───────┘            └───────────┘
                                            │
                          next_cursor = last id, has_more = len == 20

    Both the cursor and has_more come from the unfiltered batch, so a page
    may hold zero posts while more pages still exist. Server-side geo
    filtering would remove that; the store has no geospatial index.
"""

import logging
from typing import Optional

from snapgram.exceptions import ValidationError
from snapgram.schemas.documents import Coordinate, FeedPage
from snapgram.services.backend_gateway import BackendGateway, backend_gateway
from snapgram.services.geo import DistanceFilter, filter_by_distance, validate_coordinate, validate_distance

logger = logging.getLogger(__name__)

FEED_BATCH_SIZE = 20


class FeedResolver:
    def __init__(self, gateway: BackendGateway = backend_gateway, batch_size: int = FEED_BATCH_SIZE):
        self.gateway = gateway
        self.batch_size = batch_size

    @staticmethod
    def viewer_from(latitude: Optional[float], longitude: Optional[float]) -> Optional[Coordinate]:
        """
        Validated viewer position, or None when either component is missing.

        A half-specified position is rejected rather than silently ignored.
        """
        if latitude is None and longitude is None:
            return None
        if latitude is None or longitude is None:
            raise ValidationError(
                message="Latitude and longitude must be given together.",
                field="coordinate",
            )
        return validate_coordinate(latitude, longitude)

    async def get_page(
        self,
        latitude: Optional[float],
        longitude: Optional[float],
        distance_filter: DistanceFilter,
        cursor: Optional[str] = None,
    ) -> FeedPage:
        """
        One feed page after `cursor` (or from the newest post).

        Raises:
            ValidationError: bad coordinate or negative distance, before any
                backend call.
            TransportError: the backend failed; nothing partial is returned.
            NotFoundError: the cursor names a post that no longer exists.
        """
        viewer = self.viewer_from(latitude, longitude)
        distance = validate_distance(distance_filter)

        batch = await self.gateway.list_posts(limit=self.batch_size, cursor_after=cursor)
        posts = filter_by_distance(batch.documents, viewer, distance)

        logger.debug(
            "Feed page: cursor=%s batch=%d kept=%d distance=%s viewer=%s",
            cursor, len(batch.documents), len(posts), distance, viewer,
        )
        return FeedPage(
            posts=posts,
            next_cursor=batch.last_id,
            has_more=batch.is_full,
            batch_size=len(batch.documents),
        )


feed_resolver = FeedResolver()
