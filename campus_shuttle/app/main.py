"""
FastAPI Application Entry Point.

This is the main application file for the Campus Shuttle Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from campus_shuttle.app.core.config import settings
from campus_shuttle.app.api.v1.router import router as api_v1_router
from campus_shuttle.app.core.observability import ObservabilityMiddleware
from campus_shuttle.app.core.redis_client import ping_redis
from campus_shuttle.app.db.session import engine, Base
from campus_shuttle.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from campus_shuttle.app.services.change_feed import get_change_feed

# Import models to ensure they are registered with Base
from campus_shuttle.app.models.user import User
from campus_shuttle.app.models.audit_log import AuditLog
from campus_shuttle.app.models.vehicle import Vehicle
from campus_shuttle.app.models.driver import Driver
from campus_shuttle.app.models.campus_location import CampusLocation
from campus_shuttle.app.models.ride import Ride

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Starts the ride change feed listener and stops it on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    feed = get_change_feed()
    await feed.start()
    yield
    await feed.stop()
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Campus shuttle ride requests, driver allocation and live ride tracking",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Campus Shuttle Backend API",
        "docs": "/docs",
        "health": "/health",
    }
