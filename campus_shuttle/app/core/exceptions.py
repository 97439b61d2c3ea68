"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
Ride lifecycle errors map onto the error taxonomy of the service:
store unavailable, conflict, invalid transition and validation.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class StoreUnavailableError(AppException):
    """Raised when the backing store cannot be reached or rejects a write."""

    def __init__(self, message: str = "Ride store is unavailable, please try again"):
        super().__init__(
            message=message,
            error_code="ERR_STORE_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )


class RideRequestError(AppException):
    """Raised when a ride request is malformed (e.g. same pickup and dropoff)."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_RIDE_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InvalidTransitionError(AppException):
    """Raised when a status change is not allowed by the ride lifecycle."""

    def __init__(self, ride_id: int, current: str, target: str):
        super().__init__(
            message=f"Cannot move ride from {current} to {target}",
            error_code="ERR_RIDE_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"ride_id": ride_id, "current_status": current, "target_status": target}
        )


class RideUnavailableError(AppException):
    """Raised when a conditional accept fails because another driver claimed the ride."""

    def __init__(self, ride_id: int):
        super().__init__(
            message="Ride no longer available",
            error_code="ERR_RIDE_003",
            status_code=status.HTTP_409_CONFLICT,
            details={"ride_id": ride_id}
        )


class StaleRideStateError(AppException):
    """Raised when a ride changed underneath a transition (conditional write missed)."""

    def __init__(self, ride_id: int, expected: str):
        super().__init__(
            message="Ride was updated by someone else, refresh and try again",
            error_code="ERR_RIDE_004",
            status_code=status.HTTP_409_CONFLICT,
            details={"ride_id": ride_id, "expected_status": expected}
        )


class ActiveRideError(AppException):
    """Raised when an operation is blocked by an active ride."""

    def __init__(self, message: str = "Complete your current ride first", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_RIDE_005",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class DriverUnavailableError(AppException):
    """Raised when a driver cannot take a ride (offline, busy or no vehicle)."""

    def __init__(self, message: str = "Driver is not available", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_DRIVER_001",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class RequestInFlightError(AppException):
    """Raised when the same actor submits the same ride action twice concurrently."""

    def __init__(self, key: str):
        super().__init__(
            message="A request for this ride is already in progress",
            error_code="ERR_RIDE_006",
            status_code=status.HTTP_409_CONFLICT,
            details={"key": key}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc)
            }
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Strip non-serializable context (e.g. exception objects) from validation errors."""
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
