from __future__ import annotations

import re
from datetime import date as date_type
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from bookings.models import (
    BookingStatus,
    DisputeOutcome,
    DisputeStatus,
    Party,
    PaymentStatus,
)

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class CamelModel(BaseModel):
    """Client payloads and responses use camelCase; snake_case is accepted too."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class BookingCreate(CamelModel):
    provider_service_id: UUID
    date: date_type
    start_time: str
    service_address: str = Field(min_length=1, max_length=500)
    notes: str | None = Field(default=None, max_length=1000)

    # Sent by the mobile client; checked against the derived values
    user_id: UUID | None = None
    end_time: str | None = None
    total_price: Decimal | None = None

    @field_validator("start_time", "end_time", mode="after")
    @classmethod
    def require_hhmm(cls, v: str | None) -> str | None:
        if v is not None and not _HHMM.match(v):
            raise ValueError("time must be formatted as HH:MM (24h)")
        return v

    @field_validator("service_address", mode="after")
    @classmethod
    def require_address(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("service address is required")
        return v.strip()


class BookingStatusUpdate(CamelModel):
    status: BookingStatus
    reason: str | None = Field(default=None, max_length=1000)
    completion_notes: str | None = Field(default=None, max_length=2000)


class BookingCancel(CamelModel):
    reason: str | None = Field(default=None, max_length=1000)


class DisputeCreate(CamelModel):
    reason: str = Field(min_length=1, max_length=2000)


class DisputeResolve(CamelModel):
    outcome: DisputeOutcome
    # Provider share of the booking price, only for SPLIT
    split_ratio: Decimal | None = Field(default=None, gt=0, lt=1)
    notes: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def validate_split(self) -> DisputeResolve:
        if self.outcome == DisputeOutcome.SPLIT and self.split_ratio is None:
            raise ValueError("split_ratio is required for a SPLIT outcome")
        if self.outcome != DisputeOutcome.SPLIT and self.split_ratio is not None:
            raise ValueError("split_ratio is only allowed for a SPLIT outcome")
        return self


class ReviewCreate(CamelModel):
    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ReviewResponse(CamelModel):
    id: UUID
    booking_id: UUID
    user_id: UUID
    provider_id: UUID
    rating: int
    comment: str | None
    created_at: datetime


class BookingResponse(CamelModel):
    id: UUID
    user_id: UUID
    provider_service_id: UUID
    provider_id: UUID
    provider_user_id: UUID
    date: date_type
    start_time: str
    end_time: str
    status: BookingStatus
    total_price: Decimal
    payment_status: PaymentStatus
    payment_release_at: datetime | None = None
    payment_released_at: datetime | None = None
    provider_payout: Decimal | None = None
    platform_fee: Decimal | None = None
    refunded_amount: Decimal | None = None
    service_address: str
    notes: str | None = None
    completed_at: datetime | None = None
    completion_notes: str | None = None
    cancellation_requested_at: datetime | None = None
    cancellation_requested_by: Party | None = None
    cancellation_reason: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime
    review: ReviewResponse | None = None

    @classmethod
    def from_booking(cls, booking, review=None, **extra):
        """
        Build from a Booking row. The reverse `review` relation is never read
        off the row (unfetched it is a lazy queryset); pass it explicitly.
        """
        data = {
            name: getattr(booking, name)
            for name in BookingResponse.model_fields
            if name != "review"
        }
        data["review"] = (
            ReviewResponse.model_validate(review) if review is not None else None
        )
        return cls(**data, **extra)


class BookingEnriched(BookingResponse):
    customer_name: str | None = None
    provider_name: str | None = None


class BookingSlot(CamelModel):
    """Minimal occupied slot — reveals no user identity."""

    date: date_type
    start_time: str
    end_time: str


class BookingFilters(BaseModel):
    """Bind to a FastAPI route via Depends(BookingFilters)."""

    status: BookingStatus | None = None

    # Pagination
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class DisputeResponse(CamelModel):
    id: UUID
    booking_id: UUID
    reason: str
    filed_by: Party
    filed_by_user_id: UUID
    filed_at: datetime
    status: DisputeStatus
    resolution_outcome: DisputeOutcome | None = None
    split_ratio: Decimal | None = None
    resolved_at: datetime | None = None
    resolved_by: UUID | None = None
    resolution_notes: str | None = None


class DisputeResolution(CamelModel):
    dispute: DisputeResponse
    booking: BookingResponse
    payment_action: str  # "release" | "partial_release" | "reverse" | "none"


class ReviewEligibility(CamelModel):
    booking_id: UUID
    eligible: bool


class ReleaseSummary(CamelModel):
    released: int
    booking_ids: list[UUID]


class CategoryResponse(CamelModel):
    id: UUID
    name: str
    description: str | None = None
    icon: str | None = None
    is_active: bool
    sort_order: int


class ServiceTypeResponse(CamelModel):
    id: UUID
    name: str
    description: str | None = None
    category: CategoryResponse


class ProviderProfileResponse(CamelModel):
    id: UUID
    user_id: UUID
    description: str | None = None
    experience: int | None = None
    rating: Decimal | None = None
    total_reviews: int
    is_verified: bool
    is_active: bool
    specialties: list[str] = Field(default_factory=list)


class ProviderServiceResponse(CamelModel):
    id: UUID
    provider_id: UUID
    provider: ProviderProfileResponse
    service_type_id: UUID
    service_type: ServiceTypeResponse
    price: Decimal
    duration: int
    description: str | None = None
    images: list[str] = Field(default_factory=list)
    is_active: bool
