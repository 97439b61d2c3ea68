"""
Campus location schemas.
"""

from pydantic import BaseModel
from typing import List, Optional


class LocationResponse(BaseModel):
    id: int
    name: str
    latitude: float
    longitude: float
    is_shuttle_stop: bool
    location_type: Optional[str] = None

    class Config:
        from_attributes = True


class LocationListResponse(BaseModel):
    locations: List[LocationResponse]
    total: int


class NearestLocationResponse(BaseModel):
    """Nearest stop to the caller, and whether the campus center stood in for their position."""
    location: Optional[LocationResponse] = None
    distance_km: Optional[float] = None
    distance_text: str
    used_fallback: bool
