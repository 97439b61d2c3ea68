"""
Centralized Test Configuration.
"""

import pytest
from types import SimpleNamespace
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from campus_shuttle.app.main import app
from campus_shuttle.app.db.session import get_db, Base
from campus_shuttle.app.core.security import get_password_hash
from campus_shuttle.app.models.campus_location import CampusLocation
from campus_shuttle.app.models.driver import Driver
from campus_shuttle.app.models.enums import UserRole
from campus_shuttle.app.models.ride_enums import DriverStatus, VehicleStatus
from campus_shuttle.app.models.user import User
from campus_shuttle.app.models.vehicle import Vehicle
from campus_shuttle.app.schemas.session import Session
from campus_shuttle.app.core.dependencies import get_allocator
from campus_shuttle.app.services.allocation import AllocationResult, allocator_breaker
from campus_shuttle.app.services.change_feed import InMemoryChangeFeed
import campus_shuttle.app.core.redis_client as redis_client_module
import campus_shuttle.app.services.change_feed as change_feed_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PASSWORD = "password123"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.published = []
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}
            self.published = []

    async def aclose(self):
        self._closed = True
        self.store = {}


@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session."""
    # Patch the global redis client used by token revocation and health
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()
    allocator_breaker.reset_state()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def feed(monkeypatch):
    """Fresh in-process change feed per test."""
    fresh = InMemoryChangeFeed()
    monkeypatch.setattr(change_feed_module, "change_feed", fresh)
    return fresh


class StubAllocator:
    """Allocator with a scripted outcome; declines unless told otherwise."""

    def __init__(self):
        self.result = AllocationResult(success=False, reason="No drivers available")
        self.error = None
        self.calls = []

    async def allocate(self, ride_id):
        self.calls.append(ride_id)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture(autouse=True)
def allocator():
    stub = StubAllocator()
    app.dependency_overrides[get_allocator] = lambda: stub
    yield stub
    app.dependency_overrides.pop(get_allocator, None)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


def make_session(user: User, driver: Driver = None) -> Session:
    return Session(
        user_id=user.id,
        email=user.email,
        role=user.role,
        driver_id=driver.id if driver else None,
    )


async def build_campus(db_session):
    """
    Three stops, two passengers, an admin and two online drivers.

    Driver one's shuttle waits at the Library, driver two's at the Main Gate.
    """
    main_gate = CampusLocation(name="Main Gate", latitude=7.8520, longitude=9.7800, location_type="gate")
    library = CampusLocation(name="Library", latitude=7.8545, longitude=9.7840, location_type="faculty")
    hostel = CampusLocation(name="Male Hostel", latitude=7.8580, longitude=9.7890, location_type="hostel")
    annex = CampusLocation(
        name="Staff Quarters", latitude=7.8600, longitude=9.7700, is_shuttle_stop=False
    )
    db_session.add_all([main_gate, library, hostel, annex])

    def user(email, name, role):
        return User(
            email=email,
            full_name=name,
            hashed_password=get_password_hash(PASSWORD),
            role=role,
            is_active=True,
        )

    passenger = user("ada@student.fuw.edu.ng", "Ada Obi", UserRole.PASSENGER)
    other_passenger = user("musa@student.fuw.edu.ng", "Musa Bello", UserRole.PASSENGER)
    admin = user("admin@fuw.edu.ng", "Transport Office", UserRole.ADMIN)
    driver_user_one = user("emeka@fuw.edu.ng", "Emeka Eze", UserRole.DRIVER)
    driver_user_two = user("tunde@fuw.edu.ng", "Tunde Ade", UserRole.DRIVER)
    db_session.add_all([passenger, other_passenger, admin, driver_user_one, driver_user_two])

    vehicle_one = Vehicle(
        vehicle_name="Shuttle A", vehicle_number="FUW-001", capacity=14,
        status=VehicleStatus.AVAILABLE, current_latitude=7.8545, current_longitude=9.7840,
    )
    vehicle_two = Vehicle(
        vehicle_name="Shuttle B", vehicle_number="FUW-002", capacity=14,
        status=VehicleStatus.AVAILABLE, current_latitude=7.8520, current_longitude=9.7800,
    )
    db_session.add_all([vehicle_one, vehicle_two])
    await db_session.flush()

    driver_one = Driver(user_id=driver_user_one.id, vehicle_id=vehicle_one.id, status=DriverStatus.AVAILABLE)
    driver_two = Driver(user_id=driver_user_two.id, vehicle_id=vehicle_two.id, status=DriverStatus.AVAILABLE)
    db_session.add_all([driver_one, driver_two])
    await db_session.commit()

    return SimpleNamespace(
        main_gate=main_gate,
        library=library,
        hostel=hostel,
        annex=annex,
        passenger=passenger,
        other_passenger=other_passenger,
        admin=admin,
        driver_one=driver_one,
        driver_two=driver_two,
        vehicle_one=vehicle_one,
        vehicle_two=vehicle_two,
        passenger_session=make_session(passenger),
        other_passenger_session=make_session(other_passenger),
        admin_session=make_session(admin),
        driver_one_session=make_session(driver_user_one, driver_one),
        driver_two_session=make_session(driver_user_two, driver_two),
    )


@pytest.fixture
async def campus(db_session):
    return await build_campus(db_session)


async def login(client, email):
    response = await client.post("/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert response.status_code == 200, response.text
    return response.json()["access_token"]


def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def passenger_token(client, campus):
    return await login(client, campus.passenger.email)


@pytest.fixture
async def driver_one_token(client, campus):
    return await login(client, "emeka@fuw.edu.ng")


@pytest.fixture
async def driver_two_token(client, campus):
    return await login(client, "tunde@fuw.edu.ng")


@pytest.fixture
async def admin_token(client, campus):
    return await login(client, campus.admin.email)
