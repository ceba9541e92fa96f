from datetime import date
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status
from loguru import logger

from bookings import disputes, reviews
from bookings.cache import get_slots_cache, set_slots_cache
from bookings.catalog import get_provider_profile
from bookings.deps import (
    CurrentUser,
    UsersClient,
    can_change_booking,
    can_dispute_booking,
    can_read_or_manage_booking,
    can_review_booking,
    can_write_booking,
    get_current_user,
    get_users_client,
)
from bookings.errors import AuthorizationError, NotFoundError
from bookings.ledger import booking_ledger
from bookings.schemas import (
    BookingCancel,
    BookingCreate,
    BookingEnriched,
    BookingFilters,
    BookingResponse,
    BookingSlot,
    BookingStatusUpdate,
    DisputeCreate,
    ReviewCreate,
    ReviewEligibility,
    ReviewResponse,
)
from bookings.scopes import BookingScope
from bookings.slots import list_occupied_slots

router = APIRouter(prefix="/bookings", tags=["bookings"])


# ---------------------------------------------------------------------------
# Enrichment helper
# ---------------------------------------------------------------------------


async def _enrich(
    bookings: list,
    current_user: CurrentUser,
    users_client: UsersClient,
) -> list[BookingEnriched]:
    """
    Convert booking records into BookingEnriched by fetching customer and
    provider names from users-ms in one bulk call.
    Degrades gracefully — enriched fields become None on error.
    """
    if not bookings:
        return []

    parsed = [BookingResponse.model_validate(b, from_attributes=True) for b in bookings]

    user_ids = {b.user_id for b in parsed} | {b.provider_user_id for b in parsed}
    users_raw = await users_client.get_by_ids(user_ids, current_user)

    names: dict[str, str | None] = {
        u["id"]: u.get("full_name") or u.get("username") for u in users_raw
    }

    return [
        BookingEnriched(
            **b.model_dump(),
            customer_name=names.get(str(b.user_id)),
            provider_name=names.get(str(b.provider_user_id)),
        )
        for b in parsed
    ]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get("/slots", response_model=list[BookingSlot])
async def get_provider_slots(
    provider_id: UUID,
    day: date = Query(alias="date"),
    _: CurrentUser = Depends(get_current_user),
) -> list[BookingSlot]:
    """
    Returns occupied time windows for a provider on a day.
    Any authenticated user can call this — response contains NO user identity.
    """
    cached = await get_slots_cache(provider_id, day)
    if cached is not None:
        logger.debug("Cache hit for slots: provider_id={} day={}", provider_id, day)
        return [BookingSlot(**s) for s in cached]

    logger.debug("Cache miss for slots: provider_id={} day={}", provider_id, day)
    slots = await list_occupied_slots(provider_id, day)
    await set_slots_cache(provider_id, day, [s.model_dump(mode="json") for s in slots])
    return slots


@router.get("/user/{user_id}", response_model=list[BookingEnriched])
async def user_bookings(
    user_id: UUID,
    filters: BookingFilters = Depends(),
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
    users_client: UsersClient = Depends(get_users_client),
) -> list[BookingEnriched]:
    if user_id != current_user.id and not current_user.can_read_all:
        raise AuthorizationError("You can only list your own bookings")
    bookings = await booking_ledger.list_bookings(filters=filters, user_id=user_id)
    return await _enrich(bookings, current_user, users_client)


@router.get("/provider/{provider_id}", response_model=list[BookingEnriched])
async def provider_bookings(
    provider_id: UUID,
    filters: BookingFilters = Depends(),
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
    users_client: UsersClient = Depends(get_users_client),
) -> list[BookingEnriched]:
    """`provider_id` is the provider profile id, never the user id."""
    profile = await get_provider_profile(provider_id)
    if profile.user_id != current_user.id and not current_user.can_read_all:
        raise AuthorizationError("You can only list bookings of your own profile")
    bookings = await booking_ledger.list_bookings(
        filters=filters, provider_id=provider_id
    )
    return await _enrich(bookings, current_user, users_client)


@router.get("/{booking_id}", response_model=BookingEnriched)
async def get_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
    users_client: UsersClient = Depends(get_users_client),
) -> BookingEnriched:
    if current_user.can_read_all:
        booking = await booking_ledger.get_booking(booking_id)
    else:
        booking = None
        if BookingScope.MANAGE in current_user.scopes:
            booking = await booking_ledger.get_booking(
                booking_id, provider_user_id=current_user.id
            )
        if booking is None and BookingScope.READ in current_user.scopes:
            booking = await booking_ledger.get_booking(
                booking_id, user_id=current_user.id
            )

    if not booking:
        raise NotFoundError("Booking not found")

    results = await _enrich([booking], current_user, users_client)
    return results[0]


@router.get("/{booking_id}/review-eligibility", response_model=ReviewEligibility)
async def get_review_eligibility(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
) -> ReviewEligibility:
    booking = await booking_ledger.get_model(booking_id)
    if current_user.party_for(booking) is None:
        raise NotFoundError("Booking not found")
    eligible = await reviews.review_eligible(booking_id)
    return ReviewEligibility(booking_id=booking_id, eligible=eligible)


# ---------------------------------------------------------------------------
# Mutations — each returns the authoritative record
# ---------------------------------------------------------------------------


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    current_user: CurrentUser = Depends(can_write_booking),
) -> BookingResponse:
    return await booking_ledger.create_booking(payload, current_user)


@router.patch("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: UUID,
    payload: BookingStatusUpdate,
    current_user: CurrentUser = Depends(can_change_booking),
) -> BookingResponse:
    return await booking_ledger.transition(
        booking_id,
        payload.status,
        current_user,
        reason=payload.reason,
        completion_notes=payload.completion_notes,
    )


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    payload: BookingCancel | None = Body(default=None),
    current_user: CurrentUser = Depends(can_change_booking),
) -> BookingResponse:
    return await booking_ledger.cancel_booking(
        booking_id, current_user, reason=payload.reason if payload else None
    )


@router.post("/{booking_id}/dispute", response_model=BookingResponse)
async def dispute_booking(
    booking_id: UUID,
    payload: DisputeCreate,
    current_user: CurrentUser = Depends(can_dispute_booking),
) -> BookingResponse:
    _, booking = await disputes.file_dispute(booking_id, current_user, payload.reason)
    return booking


@router.post(
    "/{booking_id}/review",
    response_model=ReviewResponse,
    status_code=status.HTTP_201_CREATED,
)
async def review_booking(
    booking_id: UUID,
    payload: ReviewCreate,
    current_user: CurrentUser = Depends(can_review_booking),
) -> ReviewResponse:
    return await reviews.create_review(booking_id, payload, current_user)
