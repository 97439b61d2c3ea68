"""
Geo-distance helpers.

Great-circle distances between campus coordinates and their display
formatting. Pure functions, no I/O.
"""

import math
from typing import Iterable, Optional, Sequence, Tuple, TypeVar

from campus_shuttle.app.core.config import settings

# Radius of Earth in kilometers
EARTH_RADIUS_KM = 6371.0

# Minutes per kilometre for a shuttle averaging ~20 km/h
MINUTES_PER_KM = 3

CAMPUS_CENTER: Tuple[float, float] = (
    settings.campus_center_latitude,
    settings.campus_center_longitude,
)

L = TypeVar("L")


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers. NaN coordinates yield NaN.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def format_distance(km: Optional[float]) -> str:
    """
    Render a distance for display.

    ``None`` -> ``"--"``, under a kilometre in whole meters (``"500 m"``),
    otherwise kilometres to one decimal (``"2.3 km"``).
    """
    if km is None:
        return "--"
    if km < 1:
        return f"{round(km * 1000)} m"
    return f"{km:.1f} km"


def estimate_duration_minutes(km: float) -> int:
    """Fixed-speed travel estimate: ``ceil(km * 3)`` minutes."""
    return math.ceil(km * MINUTES_PER_KM)


def format_duration(minutes: Optional[float]) -> str:
    """Render ``"12 min"`` or ``"1h 5m"``; ``"--"`` when unknown."""
    if not minutes:
        return "--"
    if minutes < 60:
        return f"{round(minutes)} min"
    hours = math.floor(minutes / 60)
    mins = round(minutes % 60)
    return f"{hours}h {mins}m"


def nearest_location(
    lat: float,
    lon: float,
    locations: Iterable[L],
) -> Optional[Tuple[L, float]]:
    """
    Find the location closest to a coordinate.

    Locations need ``latitude`` and ``longitude`` attributes. Returns the
    location and its distance in km, or None when there are no locations.
    """
    best: Optional[Tuple[L, float]] = None
    for location in locations:
        km = distance_km(lat, lon, location.latitude, location.longitude)
        if best is None or km < best[1]:
            best = (location, km)
    return best


def coordinate_or_campus_center(
    lat: Optional[float],
    lon: Optional[float],
) -> Sequence[float]:
    """Use the campus center when a coordinate is unknown."""
    if lat is None or lon is None:
        return CAMPUS_CENTER
    return (lat, lon)
