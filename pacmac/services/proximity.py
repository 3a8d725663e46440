import math
from dataclasses import dataclass

from pacmac.schemas.location_schema import Coordinates

EARTH_RADIUS_METERS = 6_371_000
# 100 feet
DEFAULT_RADIUS_METERS = 30.48


@dataclass(frozen=True)
class ProximityResult:
    distance_meters: float
    within_range: bool


def haversine_distance_meters(a: Coordinates, b: Coordinates) -> float:
    """
    Calculates the great-circle distance between two points on the Earth using the haversine formula.
    Returns the distance in meters.
    """
    # Convert decimal degrees to radians.
    lat1, lng1, lat2, lng2 = map(
        math.radians, [a.latitude, a.longitude, b.latitude, b.longitude]
    )

    dlat = lat2 - lat1
    dlng = lng2 - lng1

    # Haversine formula
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    # rounding can push h a hair above 1 for antipodal points
    c = 2 * math.asin(math.sqrt(min(1.0, h)))
    return c * EARTH_RADIUS_METERS


def verify_proximity(
    a: Coordinates,
    b: Coordinates,
    radius_meters: float = DEFAULT_RADIUS_METERS,
) -> ProximityResult:
    """
    Classifies two coordinates as within or outside the allowed handoff radius.
    The radius is inclusive.
    """
    distance = haversine_distance_meters(a, b)
    return ProximityResult(distance_meters=distance, within_range=distance <= radius_meters)
