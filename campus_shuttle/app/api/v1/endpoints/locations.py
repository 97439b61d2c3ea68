"""
Campus location endpoints.

Shuttle stops are what passengers pick from when requesting a ride.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from campus_shuttle.app.db.session import get_db
from campus_shuttle.app.core.dependencies import get_current_session
from campus_shuttle.app.schemas.location import LocationListResponse, LocationResponse, NearestLocationResponse
from campus_shuttle.app.schemas.session import Session
from campus_shuttle.app.services.geo import nearest_location, format_distance
from campus_shuttle.app.services.geolocation import (
    StaticGeolocationProvider, resolve_position
)
from campus_shuttle.app.services.ride_store import RideStore, store_errors

router = APIRouter(prefix="/locations", tags=["Locations"])


@router.get("", response_model=LocationListResponse)
async def list_locations(
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db)
):
    """All shuttle stops, alphabetically."""
    async with store_errors(db):
        stops = await RideStore(db).list_shuttle_stops()

    return LocationListResponse(
        locations=[LocationResponse.model_validate(stop) for stop in stops],
        total=len(stops)
    )


@router.get("/nearest", response_model=NearestLocationResponse)
async def get_nearest_location(
    lat: Optional[float] = Query(None, ge=-90, le=90, description="Caller latitude"),
    lon: Optional[float] = Query(None, ge=-180, le=180, description="Caller longitude"),
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db)
):
    """
    Nearest shuttle stop to the caller.

    Without a shared position the campus center is used instead.
    """
    position = await resolve_position(StaticGeolocationProvider(lat, lon))

    async with store_errors(db):
        stops = await RideStore(db).list_shuttle_stops()

    found = nearest_location(position.latitude, position.longitude, stops)
    used_fallback = lat is None or lon is None
    if found is None:
        return NearestLocationResponse(distance_text=format_distance(None), used_fallback=used_fallback)

    stop, km = found
    return NearestLocationResponse(
        location=LocationResponse.model_validate(stop),
        distance_km=round(km, 3),
        distance_text=format_distance(km),
        used_fallback=used_fallback,
    )
