from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from loguru import logger
from tortoise.transactions import in_transaction

from bookings import escrow
from bookings.cache import invalidate_slots_cache
from bookings.deps import CurrentUser
from bookings.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StaleBooking,
    ValidationError,
)
from bookings.events import StatusChange, publish_status_change, record_status_change
from bookings.lifecycle import assert_transition
from bookings.models import (
    Booking,
    BookingStatus,
    ProviderProfile,
    ProviderService,
    Review,
)
from bookings.schemas import BookingCreate, BookingFilters, BookingResponse
from bookings.slots import check_availability, provider_day_lock, slot_bounds


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def apply_change(booking: Booking, now: datetime, **changes) -> None:
    """
    Write `changes` only if nobody else wrote the row since we read it.

    The version column is the precondition; on success the in-memory
    instance is brought in line with the row.
    """
    new_version = booking.version + 1
    updated = await Booking.filter(id=booking.id, version=booking.version).update(
        version=new_version, updated_at=now, **changes
    )
    if not updated:
        raise StaleBooking(
            "Booking was changed by another request; reload it and try again"
        )
    for name, value in changes.items():
        setattr(booking, name, value)
    booking.version = new_version
    booking.updated_at = now


async def after_status_change(booking: Booking, change: StatusChange) -> None:
    """Post-commit side effects: broadcast and drop the provider's slot cache."""
    await publish_status_change(change)
    await invalidate_slots_cache(booking.provider_id, booking.date)


class BookingLedger:
    async def get_model(self, booking_id: UUID) -> Booking:
        booking = await Booking.get_or_none(id=booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        return booking

    async def to_response(self, booking: Booking) -> BookingResponse:
        review = await Review.get_or_none(booking_id=booking.id)
        return BookingResponse.from_booking(booking, review)

    async def to_responses(self, bookings: list[Booking]) -> list[BookingResponse]:
        if not bookings:
            return []
        reviews = await Review.filter(booking_id__in=[b.id for b in bookings])
        by_booking = {r.booking_id: r for r in reviews}
        return [BookingResponse.from_booking(b, by_booking.get(b.id)) for b in bookings]

    async def create_booking(
        self,
        payload: BookingCreate,
        customer: CurrentUser,
        now: datetime | None = None,
    ) -> BookingResponse:
        """
        Persist a new PENDING booking after validating:
          - the caller books for themselves
          - the service exists and is bookable
          - client-sent end time / price match the derived values
          - no active booking of the provider overlaps (atomic, locked)
        """
        now = now or utcnow()
        if payload.user_id is not None and payload.user_id != customer.id:
            raise AuthorizationError("Bookings can only be created for yourself")

        service = await ProviderService.get_or_none(
            id=payload.provider_service_id
        ).prefetch_related("provider")
        if service is None:
            raise NotFoundError("Service not found")
        provider: ProviderProfile = service.provider
        if not (service.is_active and provider.is_active):
            raise ValidationError("Service is not available for booking")
        if provider.user_id == customer.id:
            raise ValidationError("Providers cannot book their own services")

        start_at, end_at = slot_bounds(payload.date, payload.start_time, service.duration)
        derived_end = end_at.strftime("%H:%M")
        if payload.end_time is not None and payload.end_time != derived_end:
            raise ValidationError(
                f"End time must be {derived_end} for a {service.duration}-minute service"
            )
        if payload.total_price is not None and Decimal(payload.total_price) != Decimal(
            service.price
        ):
            raise ValidationError(
                f"Price has changed to {service.price}; review the booking and retry"
            )

        # Serialize check-then-insert per provider: in-process lock for this
        # worker, profile row lock for other workers.
        async with provider_day_lock(provider.id, payload.date):
            async with in_transaction():
                await ProviderProfile.filter(id=provider.id).select_for_update().first()
                availability = await check_availability(
                    provider.id, start_at, end_at, for_update=True
                )
                if not availability.available:
                    raise ConflictError(
                        "Slot is no longer available for this provider",
                        existing_booking_id=availability.conflicting_booking_id,
                    )

                booking = Booking(
                    user_id=customer.id,
                    provider_service_id=service.id,
                    provider_id=provider.id,
                    provider_user_id=provider.user_id,
                    date=payload.date,
                    start_at=start_at,
                    end_at=end_at,
                    total_price=service.price,
                    service_address=payload.service_address,
                    notes=payload.notes,
                )
                escrow.hold_payment(booking)
                await booking.save()
                change = await record_status_change(
                    booking.id, None, BookingStatus.PENDING, now, actor_id=customer.id
                )

        await after_status_change(booking, change)
        return await self.to_response(booking)

    async def get_booking(
        self,
        booking_id: UUID,
        user_id: UUID | None = None,
        provider_user_id: UUID | None = None,
    ) -> BookingResponse | None:
        if user_id is not None:
            inst = await Booking.get_or_none(id=booking_id, user_id=user_id)
        elif provider_user_id is not None:
            inst = await Booking.get_or_none(
                id=booking_id, provider_user_id=provider_user_id
            )
        else:
            inst = await Booking.get_or_none(id=booking_id)

        if not inst:
            return None
        return await self.to_response(inst)

    async def list_bookings(
        self,
        filters: BookingFilters,
        user_id: UUID | None = None,
        provider_id: UUID | None = None,
    ) -> list[BookingResponse]:
        qs = Booking.all()

        if user_id is not None:
            qs = qs.filter(user_id=user_id)
        if provider_id is not None:
            qs = qs.filter(provider_id=provider_id)
        if filters.status is not None:
            qs = qs.filter(status=filters.status)

        offset = (filters.page - 1) * filters.page_size
        qs = qs.order_by("date", "start_at").offset(offset).limit(filters.page_size)

        return await self.to_responses(await qs)

    async def transition(
        self,
        booking_id: UUID,
        target: BookingStatus,
        actor: CurrentUser,
        reason: str | None = None,
        completion_notes: str | None = None,
        now: datetime | None = None,
    ) -> BookingResponse:
        """
        Move a booking along the state machine and apply its side effects:
          COMPLETED → stamp completed_at, schedule the escrow release
          CANCELLED → record who/why, refund the held payment
        All-or-nothing: the status write, audit row and refund share one
        transaction.
        """
        now = now or utcnow()
        booking = await self.get_model(booking_id)
        party = actor.party_for(booking)
        if party is None:
            # Unrelated users get the same answer as for a missing booking
            raise NotFoundError("Booking not found")

        old_status = booking.status
        assert_transition(old_status, target, party)

        changes: dict = {"status": target}
        if target == BookingStatus.COMPLETED:
            changes["completed_at"] = now
            changes["completion_notes"] = completion_notes
            changes.update(escrow.schedule_release(now))
        elif target == BookingStatus.CANCELLED:
            changes["cancellation_requested_at"] = now
            changes["cancellation_requested_by"] = party
            changes["cancellation_reason"] = reason

        async with in_transaction():
            await apply_change(booking, now, **changes)
            change = await record_status_change(
                booking.id, old_status, target, now, actor_id=actor.id
            )
            if target == BookingStatus.CANCELLED:
                await escrow.reverse(booking.id, now=now)

        logger.info(
            "Booking {} moved {} -> {} by {} {}",
            booking.id,
            old_status,
            target,
            party,
            actor.id,
        )
        await after_status_change(booking, change)
        return await self.to_response(await self.get_model(booking.id))

    async def cancel_booking(
        self,
        booking_id: UUID,
        actor: CurrentUser,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> BookingResponse:
        return await self.transition(
            booking_id, BookingStatus.CANCELLED, actor, reason=reason, now=now
        )


booking_ledger = BookingLedger()

