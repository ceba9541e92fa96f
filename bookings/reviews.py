from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from loguru import logger
from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from bookings.deps import CurrentUser
from bookings.errors import AuthorizationError, BookingNotEligible, NotFoundError
from bookings.ledger import booking_ledger
from bookings.models import Booking, BookingStatus, Party, ProviderProfile, Review
from bookings.schemas import ReviewCreate, ReviewResponse


def is_review_eligible(booking: Booking, has_review: bool) -> bool:
    return booking.status == BookingStatus.COMPLETED and not has_review


async def review_eligible(booking_id: UUID) -> bool:
    """True iff the booking is COMPLETED and has not been reviewed yet."""
    booking = await booking_ledger.get_model(booking_id)
    return is_review_eligible(
        booking, await Review.exists(booking_id=booking_id)
    )


async def create_review(
    booking_id: UUID, payload: ReviewCreate, author: CurrentUser
) -> ReviewResponse:
    booking = await booking_ledger.get_model(booking_id)
    party = author.party_for(booking)
    if party is None:
        raise NotFoundError("Booking not found")
    if party != Party.CUSTOMER:
        raise AuthorizationError("Only the customer who booked can leave a review")
    if not is_review_eligible(booking, await Review.exists(booking_id=booking_id)):
        raise BookingNotEligible(
            "Only completed bookings without a review can be reviewed"
        )

    try:
        async with in_transaction():
            review = await Review.create(
                booking_id=booking.id,
                user_id=author.id,
                provider_id=booking.provider_id,
                rating=payload.rating,
                comment=payload.comment,
            )
            profile = (
                await ProviderProfile.filter(id=booking.provider_id)
                .select_for_update()
                .first()
            )
            if profile is not None:
                total = profile.total_reviews + 1
                previous = profile.rating or Decimal(0)
                profile.rating = (
                    (previous * profile.total_reviews + payload.rating) / total
                ).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
                profile.total_reviews = total
                await profile.save(update_fields=["rating", "total_reviews"])
    except IntegrityError:
        # Unique booking_id: a concurrent review got in first
        raise BookingNotEligible("This booking has already been reviewed") from None

    logger.info(
        "Review {} ({} stars) left on booking {}", review.id, review.rating, booking.id
    )
    return ReviewResponse.model_validate(review)
