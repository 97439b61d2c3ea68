"""
Authenticated actor session.

Built once per request from the bearer token and passed explicitly into
every operation that needs to know who is acting.
"""

from pydantic import BaseModel
from typing import Optional
from campus_shuttle.app.models.enums import UserRole


class Session(BaseModel):
    """Who is acting: user id, role and, for drivers, their driver record id."""
    user_id: int
    email: str
    role: UserRole
    driver_id: Optional[int] = None
    token: Optional[str] = None

    class Config:
        frozen = True

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DRIVER

    @property
    def is_passenger(self) -> bool:
        return self.role == UserRole.PASSENGER
