"""
Domain errors raised by the ledger, escrow and dispute layers.

Every error carries a stable ``code`` and is turned into a JSON response
``{"detail": <message>, "code": <code>}`` by the handler registered in
``register_error_handlers``. Nothing below the routers raises HTTPException.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger


class DomainError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "DOMAIN_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(DomainError):
    """Malformed or missing input the schema layer could not catch."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class AuthorizationError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class ConflictError(DomainError):
    """The requested slot overlaps an active booking of the same provider."""

    status_code = status.HTTP_409_CONFLICT
    code = "SLOT_CONFLICT"

    def __init__(
        self,
        message: str,
        existing_booking_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.existing_booking_id = existing_booking_id
        details = dict(details or {})
        if existing_booking_id is not None:
            details["existingBookingId"] = str(existing_booking_id)
        super().__init__(message, details)


class StaleBooking(ConflictError):
    """Another request changed the booking between our read and our write."""

    code = "STALE_BOOKING"


class InvalidStateTransition(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_STATE_TRANSITION"

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        self.current = current
        self.target = target
        super().__init__(
            message or f"Cannot transition booking from '{current}' to '{target}'",
            {"current": current, "target": target},
        )


class AlreadyDisputed(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "ALREADY_DISPUTED"


class BookingNotEligible(DomainError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "BOOKING_NOT_ELIGIBLE"


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        logger.info(
            "{} {} -> {} {}", request.method, request.url.path, exc.code, exc.message
        )
        body: dict[str, Any] = {"detail": exc.message, "code": exc.code}
        if exc.details:
            body["details"] = exc.details
        return JSONResponse(body, status_code=exc.status_code)
