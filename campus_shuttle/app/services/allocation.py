"""
Ride allocation.

An allocator tries to hand a freshly requested ride to the best available
driver. Allocation is best-effort: whatever happens, the ride already
exists as ``pending`` and drivers can still pick it up from their list.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from campus_shuttle.app.core.config import settings
from campus_shuttle.app.core.exceptions import (
    ActiveRideError,
    AppException,
    DriverUnavailableError,
    RideUnavailableError,
)
from campus_shuttle.app.core.reliability import CircuitBreaker, CircuitOpenError
from campus_shuttle.app.models.ride_enums import AllocationMethod, RideStatus
from campus_shuttle.app.services.change_feed import ChangeFeed
from campus_shuttle.app.services.lifecycle import RideLifecycleController
from campus_shuttle.app.services.matching import rank_candidates_for_ride
from campus_shuttle.app.services.ride_store import RideStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocationResult:
    success: bool
    driver_name: Optional[str] = None
    driver_id: Optional[int] = None
    reason: Optional[str] = None


class Allocator(Protocol):
    async def allocate(self, ride_id: int) -> AllocationResult: ...


class NearestDriverAllocator:
    """
    Assigns the nearest available driver, falling through to the next one
    when a candidate turns out to be taken.
    """

    def __init__(self, db: AsyncSession, feed: Optional[ChangeFeed] = None):
        self.db = db
        self.controller = RideLifecycleController(db, feed=feed)

    async def allocate(self, ride_id: int) -> AllocationResult:
        ride = await RideStore(self.db).get_ride(ride_id, refresh=True)
        if ride is None or ride.status != RideStatus.PENDING:
            return AllocationResult(success=False, reason="Ride is not pending")

        ranked = await rank_candidates_for_ride(self.db, ride)
        if not ranked:
            return AllocationResult(success=False, reason="No drivers available")

        for option in ranked:
            try:
                await self.controller.assign_ride(
                    ride_id, option.driver_id, AllocationMethod.SYSTEM_ALLOCATED
                )
            except (DriverUnavailableError, ActiveRideError) as e:
                logger.info("Skipping driver %s for ride %s: %s", option.driver_id, ride_id, e.message)
                continue
            except RideUnavailableError:
                return AllocationResult(success=False, reason="Ride no longer available")

            return AllocationResult(
                success=True,
                driver_name=option.candidate.driver_name,
                driver_id=option.driver_id,
            )

        return AllocationResult(success=False, reason="No drivers available")


class RemoteAllocator:
    """Delegates allocation to an HTTP service: ``POST {url}`` with ``{"p_ride_id": id}``."""

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self.client = client

    async def allocate(self, ride_id: int) -> AllocationResult:
        payload = {"p_ride_id": ride_id}
        if self.client is not None:
            response = await self.client.post(self.url, json=payload, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload)
        response.raise_for_status()

        try:
            body = response.json() or {}
        except ValueError as e:
            raise httpx.DecodingError(f"Allocator returned a non-JSON body: {e}", request=response.request)
        if not isinstance(body, dict):
            raise httpx.DecodingError("Allocator returned an unexpected body", request=response.request)

        return AllocationResult(
            success=bool(body.get("success")),
            driver_name=body.get("driver_name"),
            driver_id=body.get("driver_id"),
            reason=body.get("reason"),
        )


allocator_breaker = CircuitBreaker(
    failure_threshold=settings.allocator_failure_threshold,
    reset_timeout=settings.allocator_reset_timeout,
    name="allocator",
)


async def allocate_best_effort(
    allocator: Allocator,
    ride_id: int,
    breaker: CircuitBreaker = allocator_breaker,
) -> AllocationResult:
    """Run the allocator; failures are logged and reported as "no driver yet"."""
    try:
        return await breaker.call(allocator.allocate, ride_id)
    except CircuitOpenError:
        logger.warning("Allocator circuit open, ride %s left pending", ride_id)
        return AllocationResult(success=False, reason="Allocator unavailable")
    except (httpx.HTTPError, AppException) as e:
        logger.error("Allocation failed for ride %s: %s", ride_id, e)
        return AllocationResult(success=False, reason="Allocation failed")
    except Exception:
        # The ride is already committed as pending
        logger.exception("Allocator crashed for ride %s", ride_id)
        return AllocationResult(success=False, reason="Allocation failed")


def allocation_message(result: AllocationResult) -> str:
    if result.success and result.driver_name:
        return f"Your ride has been assigned to {result.driver_name}"
    if result.success:
        return "Your ride has been assigned to a driver"
    return "Looking for available drivers..."


def build_allocator(db: AsyncSession, feed: ChangeFeed) -> Allocator:
    """Allocator configured by ``settings.allocator_backend``."""
    if settings.allocator_backend == "remote" and settings.allocator_url:
        return RemoteAllocator(settings.allocator_url, timeout=settings.allocator_timeout_seconds)
    return NearestDriverAllocator(db, feed=feed)
