"""
Geolocation provider contract.

A provider answers ``current_position()`` or fails because permission
was denied or no fix is available. Either failure falls back to the
campus center; this is the only place a failure is deliberately absorbed.
"""

import logging
from typing import NamedTuple, Optional, Protocol

from campus_shuttle.app.services.geo import CAMPUS_CENTER

logger = logging.getLogger(__name__)


class Coordinate(NamedTuple):
    latitude: float
    longitude: float


class GeolocationError(Exception):
    """Base class for position lookup failures."""


class GeolocationPermissionDenied(GeolocationError):
    pass


class GeolocationUnavailable(GeolocationError):
    pass


class GeolocationProvider(Protocol):
    async def current_position(self) -> Coordinate: ...


class StaticGeolocationProvider:
    """
    Provider built from a coordinate the client sent along with its request.

    A request without a coordinate behaves like a device that refused the
    location permission.
    """

    def __init__(self, latitude: Optional[float] = None, longitude: Optional[float] = None):
        self.latitude = latitude
        self.longitude = longitude

    async def current_position(self) -> Coordinate:
        if self.latitude is None or self.longitude is None:
            raise GeolocationPermissionDenied("No position shared by the client")
        return Coordinate(self.latitude, self.longitude)


CAMPUS_CENTER_COORDINATE = Coordinate(*CAMPUS_CENTER)


async def resolve_position(
    provider: GeolocationProvider,
    fallback: Coordinate = CAMPUS_CENTER_COORDINATE,
) -> Coordinate:
    """Current position from the provider, or the fallback on permission/availability errors."""
    try:
        return await provider.current_position()
    except GeolocationError as e:
        logger.info("Using fallback position: %s", e)
        return fallback
