"""
Database seeding script for a fresh campus.

Creates the transport office ADMIN, the shuttle stops, two shuttles and a
driver for each. Run this after the API has started once (tables exist).
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from campus_shuttle.app.db.session import AsyncSessionLocal
from campus_shuttle.app.models.campus_location import CampusLocation
from campus_shuttle.app.models.driver import Driver
from campus_shuttle.app.models.user import User
from campus_shuttle.app.models.vehicle import Vehicle
from campus_shuttle.app.models.enums import UserRole
from campus_shuttle.app.models.ride_enums import DriverStatus, VehicleStatus
from campus_shuttle.app.core.security import get_password_hash
from sqlalchemy import select


STOPS = [
    ("Main Gate", 7.8520, 9.7800, "gate"),
    ("Library", 7.8545, 9.7840, "faculty"),
    ("Faculty of Science", 7.8555, 9.7860, "faculty"),
    ("Male Hostel", 7.8580, 9.7890, "hostel"),
    ("Female Hostel", 7.8570, 9.7815, "hostel"),
    ("Sports Complex", 7.8500, 9.7750, "sports"),
]

SHUTTLES = [
    ("Shuttle A", "FUW-001", "driver1@fuw.edu.ng", "Shuttle Driver One"),
    ("Shuttle B", "FUW-002", "driver2@fuw.edu.ng", "Shuttle Driver Two"),
]


async def seed_data():
    async with AsyncSessionLocal() as db:
        print("🌱 Starting campus seeding...")

        result = await db.execute(select(User).where(User.role == UserRole.ADMIN))
        if result.scalars().first():
            print("ℹ️  ADMIN user already exists, skipping seeding")
            return

        db.add(User(
            email="transport@fuw.edu.ng",
            full_name="Transport Office",
            hashed_password=get_password_hash("admin123"),
            role=UserRole.ADMIN,
            is_active=True,
        ))
        print("✅ Created ADMIN user (transport@fuw.edu.ng / admin123)")

        for name, lat, lon, kind in STOPS:
            db.add(CampusLocation(name=name, latitude=lat, longitude=lon, location_type=kind))
        print(f"✅ Created {len(STOPS)} shuttle stops")

        for vehicle_name, plate, email, full_name in SHUTTLES:
            vehicle = Vehicle(
                vehicle_name=vehicle_name,
                vehicle_number=plate,
                capacity=14,
                status=VehicleStatus.OFFLINE,
            )
            user = User(
                email=email,
                full_name=full_name,
                hashed_password=get_password_hash("driver123"),
                role=UserRole.DRIVER,
                is_active=True,
            )
            db.add_all([vehicle, user])
            await db.flush()

            db.add(Driver(user_id=user.id, vehicle_id=vehicle.id, status=DriverStatus.OFFLINE))
            print(f"✅ Created {vehicle_name} ({plate}) driven by {email} / driver123")

        await db.commit()

        print("\n🎉 Campus seeding completed successfully!")
        print("\nNote: passengers register via POST /v1/auth/register; drivers go online from the app")


if __name__ == "__main__":
    asyncio.run(seed_data())
