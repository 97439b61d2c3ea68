"""
User roles enumeration.

Defines the role types for the campus shuttle service.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        PASSENGER: Students and staff requesting rides (default role)
        DRIVER: Shuttle operators accepting and driving rides
        ADMIN: Transport office staff managing vehicles, drivers and stops
    """
    PASSENGER = "passenger"
    DRIVER = "driver"
    ADMIN = "admin"
