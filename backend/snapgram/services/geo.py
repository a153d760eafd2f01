"""
Snapgram Backend — Geolocation & Distance Filtering
=====================================================

What:  Great-circle distance, the pure distance filter applied to feed
       batches, and the geolocation providers that supply the viewer's
       position.
How:   Haversine on a sphere of radius 6371 km. Filtering never mutates the
       posts it is given; it only decides which to keep.
Who:   Used by the Feed Resolver and the feed routes.

Distance filter values:
    None        → unbounded, every post is kept (identity)
    float >= 0  → keep posts whose author has both coordinates and lies
                  within that many kilometres of the viewer
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Union

from snapgram.exceptions import ValidationError
from snapgram.schemas.documents import Coordinate, PostDTO, UserDTO

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

# Values of the distance query parameter that mean "no filter"
UNBOUNDED_ALIASES = {"", "all", "none", "unbounded"}

DistanceFilter = Optional[float]


def haversine_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates, in kilometres."""
    lat1, lon1 = math.radians(a.latitude), math.radians(a.longitude)
    lat2, lon2 = math.radians(b.latitude), math.radians(b.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Rounding can push h a hair above 1 for antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


# ── Validation ────────────────────────────────────────────────────────────


def validate_coordinate(latitude: float, longitude: float) -> Coordinate:
    if latitude is None or longitude is None or math.isnan(latitude) or math.isnan(longitude):
        raise ValidationError(message="Latitude and longitude must both be numbers.", field="coordinate")
    if not -90.0 <= latitude <= 90.0:
        raise ValidationError(
            message="Latitude must be between -90 and 90 degrees.",
            field="latitude",
            context={"latitude": latitude},
        )
    if not -180.0 <= longitude <= 180.0:
        raise ValidationError(
            message="Longitude must be between -180 and 180 degrees.",
            field="longitude",
            context={"longitude": longitude},
        )
    return Coordinate(latitude=latitude, longitude=longitude)


def validate_distance(distance: DistanceFilter) -> DistanceFilter:
    if distance is None:
        return None
    if math.isnan(distance) or distance < 0:
        raise ValidationError(
            message="Distance must be a non-negative number of kilometres.",
            field="distance",
            context={"distance": distance},
        )
    return float(distance)


def parse_distance(raw: Union[str, float, int, None]) -> DistanceFilter:
    """
    Turn the distance parameter of a request into a DistanceFilter.

    "all" (any case) or an omitted value means unbounded; anything else must
    be a non-negative number of kilometres.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in UNBOUNDED_ALIASES:
            return None
        try:
            value = float(text)
        except ValueError:
            raise ValidationError(
                message=f"Distance '{raw}' is not a number of kilometres or 'all'.",
                field="distance",
            )
    else:
        value = float(raw)
    return validate_distance(value)


# ── Filtering ─────────────────────────────────────────────────────────────


def author_coordinate(post: PostDTO) -> Optional[Coordinate]:
    creator = post.creator
    if creator is None or creator.latitude is None or creator.longitude is None:
        return None
    if math.isnan(creator.latitude) or math.isnan(creator.longitude):
        return None
    return Coordinate(latitude=creator.latitude, longitude=creator.longitude)


def within_distance(viewer: Coordinate, post: PostDTO, distance_km: float) -> bool:
    """True when the post's author is within `distance_km` of the viewer."""
    author = author_coordinate(post)
    if author is None:
        return False
    return haversine_km(viewer, author) <= distance_km


def filter_by_distance(
    posts: Sequence[PostDTO],
    viewer: Optional[Coordinate],
    distance: DistanceFilter,
) -> List[PostDTO]:
    """
    Keep the posts whose author lies within `distance` km of `viewer`.

    Unbounded distance, or no viewer position, returns every post in the
    original order.
    """
    if distance is None or viewer is None:
        return list(posts)
    return [post for post in posts if within_distance(viewer, post, distance)]


# ══════════════════════════════════════════════════════════════════════════
# Geolocation providers
# ══════════════════════════════════════════════════════════════════════════


class GeolocationProvider(ABC):
    """
    One-shot source of the viewer's current position.

    Contract:
        - current_position() returns a Coordinate, or None when the position
          is unavailable. It never raises for "unknown location".
        - A None result makes the feed ignore the distance filter.
    """

    @abstractmethod
    async def current_position(self) -> Optional[Coordinate]:
        ...


class RequestGeolocationProvider(GeolocationProvider):
    """Position sent by the client with the request."""

    def __init__(self, latitude: Optional[float], longitude: Optional[float]):
        self.latitude = latitude
        self.longitude = longitude

    async def current_position(self) -> Optional[Coordinate]:
        """None when no position was sent; ValidationError when it is malformed."""
        if self.latitude is None and self.longitude is None:
            return None
        return validate_coordinate(self.latitude, self.longitude)


class ProfileGeolocationProvider(GeolocationProvider):
    """Last position stored on the signed-in user's profile."""

    def __init__(self, user: Optional[UserDTO]):
        self.user = user

    async def current_position(self) -> Optional[Coordinate]:
        if self.user is None:
            return None
        coordinate = self.user.coordinate
        if coordinate is None:
            return None
        # Profile coordinates are never validated on write; treat junk as unknown
        try:
            return validate_coordinate(coordinate.latitude, coordinate.longitude)
        except ValidationError:
            logger.warning("Ignoring invalid stored location for user %s", self.user.id)
            return None


class FallbackGeolocationProvider(GeolocationProvider):
    """First position any of the providers can supply, in order."""

    def __init__(self, *providers: GeolocationProvider):
        self.providers = providers

    async def current_position(self) -> Optional[Coordinate]:
        for provider in self.providers:
            position = await provider.current_position()
            if position is not None:
                return position
        return None
