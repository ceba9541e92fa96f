"""
Dispute arbitration.

Filing freezes the booking in DISPUTED, which takes it out of the escrow
release sweep. An arbiter's resolution is final for that dispute and
settles the escrow:

    FAVOR_CUSTOMER  -> booking CANCELLED, payment reversed
    FAVOR_PROVIDER  -> booking COMPLETED, payment released in full
    SPLIT(r)        -> booking COMPLETED, provider gets share r, rest refunded

If the money already moved before the dispute was filed the outcome is
recorded and no payment action is taken.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from loguru import logger
from tortoise.transactions import in_transaction

from bookings import escrow, settings
from bookings.deps import CurrentUser
from bookings.errors import (
    AlreadyDisputed,
    AuthorizationError,
    BookingNotEligible,
    InvalidStateTransition,
    NotFoundError,
    StaleBooking,
)
from bookings.events import record_status_change
from bookings.ledger import after_status_change, apply_change, booking_ledger, utcnow
from bookings.lifecycle import RETRO_DISPUTABLE_STATUSES, is_active
from bookings.models import (
    Booking,
    BookingStatus,
    Dispute,
    DisputeOutcome,
    DisputeStatus,
    Party,
    PaymentStatus,
)
from bookings.schemas import BookingResponse, DisputeResolution, DisputeResponse


def dispute_deadline(booking: Booking) -> datetime | None:
    """End of the retroactive dispute window, or None if it never opened."""
    if booking.status == BookingStatus.COMPLETED:
        opened_at = booking.completed_at
    elif booking.status == BookingStatus.CANCELLED:
        opened_at = booking.cancellation_requested_at
    else:
        return None
    if opened_at is None:
        return None
    return opened_at + timedelta(hours=settings.DISPUTE_WINDOW_HOURS)


def assert_disputable(booking: Booking, now: datetime) -> None:
    if booking.status == BookingStatus.DISPUTED:
        raise AlreadyDisputed("Booking already has an open dispute")
    if is_active(booking.status):
        return
    if booking.status in RETRO_DISPUTABLE_STATUSES:
        deadline = dispute_deadline(booking)
        if deadline is not None and now <= deadline:
            return
        raise BookingNotEligible(
            f"The dispute window for this {booking.status.lower()} booking has closed"
        )
    raise BookingNotEligible(f"A {booking.status} booking cannot be disputed")


async def file_dispute(
    booking_id: UUID,
    actor: CurrentUser,
    reason: str,
    now: datetime | None = None,
) -> tuple[Dispute, BookingResponse]:
    now = now or utcnow()
    booking = await booking_ledger.get_model(booking_id)
    party = actor.party_for(booking)
    if party is None:
        raise NotFoundError("Booking not found")
    if party == Party.ADMIN:
        raise AuthorizationError("Only the customer or the provider can file a dispute")

    if await Dispute.exists(booking_id=booking.id, status=DisputeStatus.OPEN):
        raise AlreadyDisputed("Booking already has an open dispute")
    assert_disputable(booking, now)

    old_status = booking.status
    try:
        async with in_transaction():
            await apply_change(
                booking,
                now,
                status=BookingStatus.DISPUTED,
                status_before_dispute=old_status,
            )
            dispute = await Dispute.create(
                booking_id=booking.id,
                reason=reason,
                filed_by=party,
                filed_by_user_id=actor.id,
                filed_at=now,
            )
            change = await record_status_change(
                booking.id, old_status, BookingStatus.DISPUTED, now, actor_id=actor.id
            )
    except StaleBooking:
        # The other party may have filed first
        current = await booking_ledger.get_model(booking_id)
        if current.status == BookingStatus.DISPUTED:
            raise AlreadyDisputed("Booking already has an open dispute") from None
        raise

    logger.info(
        "Dispute {} filed on booking {} by {} ({} -> DISPUTED)",
        dispute.id,
        booking.id,
        party,
        old_status,
    )
    await after_status_change(booking, change)
    return dispute, await booking_ledger.to_response(
        await booking_ledger.get_model(booking.id)
    )


async def resolve_dispute(
    dispute_id: UUID,
    outcome: DisputeOutcome,
    arbiter: CurrentUser,
    split_ratio: Decimal | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> DisputeResolution:
    now = now or utcnow()
    dispute = await Dispute.get_or_none(id=dispute_id)
    if dispute is None:
        raise NotFoundError("Dispute not found")
    if dispute.status != DisputeStatus.OPEN:
        raise InvalidStateTransition(
            dispute.status, DisputeStatus.RESOLVED, "Dispute is already resolved"
        )
    if outcome == DisputeOutcome.SPLIT and split_ratio is None:
        raise BookingNotEligible("A split resolution needs a provider share")

    booking = await booking_ledger.get_model(dispute.booking_id)
    if booking.status != BookingStatus.DISPUTED:
        raise InvalidStateTransition(booking.status, BookingStatus.DISPUTED)

    if outcome == DisputeOutcome.FAVOR_CUSTOMER:
        target = BookingStatus.CANCELLED
    else:
        target = BookingStatus.COMPLETED

    changes: dict = {"status": target, "status_before_dispute": None}
    if target == BookingStatus.COMPLETED and booking.completed_at is None:
        changes["completed_at"] = now
    if target == BookingStatus.CANCELLED and booking.cancellation_requested_at is None:
        changes["cancellation_requested_at"] = now
        changes["cancellation_requested_by"] = Party.ADMIN
        changes["cancellation_reason"] = "Dispute resolved in favor of the customer"

    settle = booking.payment_status == PaymentStatus.HELD
    async with in_transaction():
        closed = await Dispute.filter(id=dispute.id, status=DisputeStatus.OPEN).update(
            status=DisputeStatus.RESOLVED,
            resolution_outcome=outcome,
            split_ratio=split_ratio,
            resolved_at=now,
            resolved_by=arbiter.id,
            resolution_notes=notes,
        )
        if not closed:
            raise InvalidStateTransition(
                DisputeStatus.RESOLVED,
                DisputeStatus.RESOLVED,
                "Dispute is already resolved",
            )
        await apply_change(booking, now, **changes)
        change = await record_status_change(
            booking.id, BookingStatus.DISPUTED, target, now, actor_id=arbiter.id
        )

        if not settle:
            payment = escrow.PaymentOutcome(
                action="none", payment_status=booking.payment_status
            )
        elif outcome == DisputeOutcome.FAVOR_CUSTOMER:
            payment = await escrow.reverse(booking.id, now=now)
        elif outcome == DisputeOutcome.FAVOR_PROVIDER:
            payment = await escrow.release(booking.id, now=now, force=True)
        else:
            payment = await escrow.partial_release(booking.id, split_ratio, now=now)

    logger.info(
        "Dispute {} resolved {} by {}: booking {} -> {}, payment action {}",
        dispute.id,
        outcome,
        arbiter.id,
        booking.id,
        target,
        payment.action,
    )
    await after_status_change(booking, change)

    dispute = await Dispute.get(id=dispute.id)
    return DisputeResolution(
        dispute=DisputeResponse.model_validate(dispute),
        booking=await booking_ledger.to_response(
            await booking_ledger.get_model(booking.id)
        ),
        payment_action=payment.action,
    )


async def list_disputes(
    status: DisputeStatus | None = None, booking_id: UUID | None = None
) -> list[DisputeResponse]:
    qs = Dispute.all()
    if status is not None:
        qs = qs.filter(status=status)
    if booking_id is not None:
        qs = qs.filter(booking_id=booking_id)
    return [DisputeResponse.model_validate(d) for d in await qs]
