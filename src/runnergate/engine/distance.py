"""Great-circle distance and proximity scoring."""

import math

from runnergate.models.candidate import Coordinates

EARTH_RADIUS_KM = 6371.0
DEFAULT_MAX_DISTANCE_METERS = 500.0


def distance_meters(a: Coordinates, b: Coordinates) -> float:
    """Haversine distance between two points, in meters."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = math.radians(b.latitude - a.latitude)
    dlon = math.radians(b.longitude - a.longitude)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Rounding can push h a hair past 1 for antipodal points
    h = min(1.0, max(0.0, h))
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c * 1000.0


def distance_score(meters: float, max_distance_meters: float = DEFAULT_MAX_DISTANCE_METERS) -> float:
    """Linear proximity score: 1 at zero distance, 0 at or beyond the limit."""
    if max_distance_meters <= 0:
        return 0.0
    return max(0.0, 1.0 - meters / max_distance_meters)


def within_range(meters: float, max_distance_meters: float = DEFAULT_MAX_DISTANCE_METERS) -> bool:
    """Inclusive range check; a runner exactly at the limit stays eligible."""
    return meters <= max_distance_meters
