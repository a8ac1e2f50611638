"""
Geo Math Utilities
==================

Great-circle distance and mile/degree conversions used to lay out the
rank-tracking grid. All distances are in miles.

Spacing uses the flat approximation (69 miles per degree of latitude,
69 * cos(latitude) per degree of longitude), which is accurate for the
few-mile grids a local business is tracked over.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from rank_platform.exceptions import PolarLatitudeError

EARTH_RADIUS_MILES = 3958.8
MILES_PER_DEGREE_LAT = 69.0

# cos(89.94 deg) ~= 0.00105; latitudes beyond about 89.94 deg are treated as a pole
MIN_COS_LATITUDE = 1e-3


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    latitude: float
    longitude: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


def distance_miles(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points using the Haversine formula."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lng = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_MILES * c


def degrees_per_mile(at_latitude: float) -> tuple[float, float]:
    """Return ``(lat_degrees_per_mile, lng_degrees_per_mile)`` at a latitude.

    Raises
    ------
    PolarLatitudeError
        If the latitude is outside [-90, 90] or so close to a pole that
        ``cos(latitude)`` falls below ``MIN_COS_LATITUDE``.
    """
    if not -90.0 <= at_latitude <= 90.0:
        raise PolarLatitudeError(f"Latitude {at_latitude} is outside [-90, 90]")

    cos_lat = math.cos(math.radians(at_latitude))
    if cos_lat < MIN_COS_LATITUDE:
        raise PolarLatitudeError(
            f"Latitude {at_latitude} is too close to a pole for grid spacing"
        )

    lat_deg = 1.0 / MILES_PER_DEGREE_LAT
    lng_deg = 1.0 / (MILES_PER_DEGREE_LAT * cos_lat)
    return lat_deg, lng_deg


def offset_point(origin: GeoPoint, north_miles: float, east_miles: float) -> GeoPoint:
    """Move ``origin`` by the given number of miles north and east."""
    lat_deg, lng_deg = degrees_per_mile(origin.latitude)
    return GeoPoint(
        latitude=origin.latitude + north_miles * lat_deg,
        longitude=origin.longitude + east_miles * lng_deg,
    )


def bearing_degrees(start: GeoPoint, end: GeoPoint) -> float:
    """Screen-space rotation angle from ``start`` to ``end``.

    ``atan2(d_lat, d_lng)`` in degrees. Only drives glyph rotation, so no
    compass normalization is applied.
    """
    return math.degrees(
        math.atan2(end.latitude - start.latitude, end.longitude - start.longitude)
    )


def midpoint(start: GeoPoint, end: GeoPoint) -> GeoPoint:
    """Arithmetic midpoint, used to anchor a direction glyph."""
    return GeoPoint(
        latitude=(start.latitude + end.latitude) / 2,
        longitude=(start.longitude + end.longitude) / 2,
    )
