"""Geographic primitives: points, great-circle distance and bounding boxes."""

import math
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

# IUGG mean Earth radius
EARTH_RADIUS_KM = 6371.0088

# Absorbs floating point noise so a point placed exactly on the radius matches
DISTANCE_EPSILON_KM = 1e-9

# Padding applied to bounding boxes, in degrees
_BOX_PADDING_DEG = 1e-6


class GeoPoint(BaseModel):
    """A WGS84 coordinate pair.

    Attributes:
        latitude: Degrees north, between -90 and 90.
        longitude: Degrees east, between -180 and 180.
    """

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90.0, le=90.0, allow_inf_nan=False)
    longitude: float = Field(ge=-180.0, le=180.0, allow_inf_nan=False)

    def distance_to_km(self, other: "GeoPoint") -> float:
        """Great-circle distance to another point in kilometres."""
        return haversine_km(
            self.latitude, self.longitude, other.latitude, other.longitude
        )


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute the great-circle distance between two coordinates.

    This is the single distance function of the index: it is registered in
    SQLite and used both for the radius predicate and the ranking key.

    Args:
        lat1: Latitude of the first point in degrees.
        lon1: Longitude of the first point in degrees.
        lat2: Latitude of the second point in degrees.
        lon2: Longitude of the second point in degrees.

    Returns:
        Distance in kilometres.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


@dataclass(frozen=True)
class BoundingBox:
    """Conservative latitude/longitude envelope around a search circle.

    A longitude range of None means the circle reaches a pole or crosses the
    antimeridian, so longitude cannot be constrained.
    """

    min_latitude: float
    max_latitude: float
    min_longitude: float | None
    max_longitude: float | None


def bounding_box(origin: GeoPoint, radius_km: float) -> BoundingBox:
    """Compute an envelope containing every point within radius of origin.

    The box never excludes a point whose great-circle distance is within the
    radius; it may include points outside the circle, which the exact
    distance predicate then removes.

    Args:
        origin: Centre of the search circle.
        radius_km: Search radius in kilometres.

    Returns:
        Bounding box usable as an index-friendly pre-filter.
    """
    angular = radius_km / EARTH_RADIUS_KM
    d_lat = math.degrees(angular) + _BOX_PADDING_DEG

    min_lat = origin.latitude - d_lat
    max_lat = origin.latitude + d_lat
    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), None, None)

    ratio = math.sin(angular) / math.cos(math.radians(origin.latitude))
    if angular >= math.pi / 2 or ratio >= 1.0:
        return BoundingBox(min_lat, max_lat, None, None)

    d_lon = math.degrees(math.asin(ratio)) + _BOX_PADDING_DEG
    min_lon = origin.longitude - d_lon
    max_lon = origin.longitude + d_lon
    if min_lon < -180.0 or max_lon > 180.0:
        return BoundingBox(min_lat, max_lat, None, None)

    return BoundingBox(min_lat, max_lat, min_lon, max_lon)
