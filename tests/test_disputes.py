"""Dispute filing windows and arbitration outcomes."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from bookings import escrow
from bookings.disputes import file_dispute, list_disputes, resolve_dispute
from bookings.errors import (
    AlreadyDisputed,
    AuthorizationError,
    BookingNotEligible,
    InvalidStateTransition,
    NotFoundError,
)
from bookings.ledger import booking_ledger
from bookings.models import (
    Booking,
    BookingStatus,
    DisputeOutcome,
    DisputeStatus,
    Party,
    PaymentStatus,
)
from bookings.schemas import BookingCreate

from .factories import (
    DAY,
    NOW,
    create_provider_service,
    make_admin,
    make_arbiter,
    make_customer,
    make_provider,
)

pytestmark = pytest.mark.usefixtures("db")

S = BookingStatus


async def _booking(*targets):
    service = await create_provider_service()
    booking = await booking_ledger.create_booking(
        BookingCreate(
            provider_service_id=service.id,
            date=DAY,
            start_time="09:00",
            service_address="1 Main St",
        ),
        make_customer(),
        now=NOW,
    )
    for target in targets:
        await booking_ledger.transition(booking.id, target, make_provider(), now=NOW)
    return booking


COMPLETED_PATH = (S.CONFIRMED, S.IN_PROGRESS, S.COMPLETED)


class TestFileDispute:
    @pytest.mark.asyncio
    async def test_customer_disputes_active_booking(self):
        booking = await _booking(S.CONFIRMED)
        dispute, disputed = await file_dispute(
            booking.id, make_customer(), "Provider keeps rescheduling", now=NOW
        )
        assert disputed.status == S.DISPUTED
        assert dispute.status == DisputeStatus.OPEN
        assert dispute.filed_by == Party.CUSTOMER

        row = await Booking.get(id=booking.id)
        assert row.status_before_dispute == S.CONFIRMED

    @pytest.mark.asyncio
    async def test_second_dispute_rejected(self):
        booking = await _booking()
        await file_dispute(booking.id, make_customer(), "First", now=NOW)
        with pytest.raises(AlreadyDisputed):
            await file_dispute(booking.id, make_provider(), "Second", now=NOW)

    @pytest.mark.asyncio
    async def test_completed_booking_disputable_within_window(self):
        booking = await _booking(*COMPLETED_PATH)
        _, disputed = await file_dispute(
            booking.id, make_customer(), "Job left unfinished", now=NOW + timedelta(hours=47)
        )
        assert disputed.status == S.DISPUTED

    @pytest.mark.asyncio
    async def test_completed_booking_not_disputable_after_window(self):
        booking = await _booking(*COMPLETED_PATH)
        with pytest.raises(BookingNotEligible):
            await file_dispute(
                booking.id, make_customer(), "Too late", now=NOW + timedelta(hours=49)
            )

    @pytest.mark.asyncio
    async def test_no_show_not_disputable(self):
        booking = await _booking(S.CONFIRMED, S.NO_SHOW)
        with pytest.raises(BookingNotEligible):
            await file_dispute(booking.id, make_customer(), "I was there", now=NOW)

    @pytest.mark.asyncio
    async def test_admin_cannot_file(self):
        booking = await _booking()
        with pytest.raises(AuthorizationError):
            await file_dispute(booking.id, make_admin(), "Admin complaint", now=NOW)

    @pytest.mark.asyncio
    async def test_unrelated_user_gets_not_found(self):
        booking = await _booking()
        with pytest.raises(NotFoundError):
            await file_dispute(
                booking.id, make_customer(user_id=uuid4()), "Nosy", now=NOW
            )

    @pytest.mark.asyncio
    async def test_disputed_booking_skipped_by_release_sweep(self):
        booking = await _booking(*COMPLETED_PATH)
        await file_dispute(booking.id, make_customer(), "Broken sink", now=NOW)
        assert await escrow.release_due(now=NOW + timedelta(days=3)) == []


class TestResolveDispute:
    @pytest.mark.asyncio
    async def test_favor_customer_cancels_and_refunds(self):
        booking = await _booking(S.CONFIRMED)
        dispute, _ = await file_dispute(booking.id, make_customer(), "No-show", now=NOW)

        result = await resolve_dispute(
            dispute.id, DisputeOutcome.FAVOR_CUSTOMER, make_arbiter(), now=NOW
        )
        assert result.payment_action == "reverse"
        assert result.booking.status == S.CANCELLED
        assert result.booking.payment_status == PaymentStatus.REFUNDED
        assert result.booking.refunded_amount == Decimal("50.00")
        assert result.booking.cancellation_requested_by == Party.ADMIN
        assert result.dispute.status == DisputeStatus.RESOLVED
        assert result.dispute.resolution_outcome == DisputeOutcome.FAVOR_CUSTOMER

    @pytest.mark.asyncio
    async def test_favor_provider_completes_and_releases(self):
        booking = await _booking(*COMPLETED_PATH)
        dispute, _ = await file_dispute(booking.id, make_customer(), "Meh", now=NOW)

        result = await resolve_dispute(
            dispute.id,
            DisputeOutcome.FAVOR_PROVIDER,
            make_arbiter(),
            notes="Work matches the photos",
            now=NOW,
        )
        assert result.payment_action == "release"
        assert result.booking.status == S.COMPLETED
        assert result.booking.payment_status == PaymentStatus.RELEASED
        assert result.booking.provider_payout == Decimal("42.50")
        assert result.dispute.resolution_notes == "Work matches the photos"

    @pytest.mark.asyncio
    async def test_split_partially_releases(self):
        booking = await _booking(S.CONFIRMED, S.IN_PROGRESS)
        dispute, _ = await file_dispute(booking.id, make_provider(), "Half done", now=NOW)

        result = await resolve_dispute(
            dispute.id,
            DisputeOutcome.SPLIT,
            make_arbiter(),
            split_ratio=Decimal("0.6"),
            now=NOW,
        )
        assert result.payment_action == "partial_release"
        assert result.booking.status == S.COMPLETED
        assert result.booking.completed_at == NOW
        assert result.booking.payment_status == PaymentStatus.PARTIALLY_RELEASED
        assert result.booking.refunded_amount == Decimal("20.00")
        assert result.dispute.split_ratio == Decimal("0.6")

    @pytest.mark.asyncio
    async def test_split_without_ratio_rejected(self):
        booking = await _booking()
        dispute, _ = await file_dispute(booking.id, make_customer(), "x", now=NOW)
        with pytest.raises(BookingNotEligible):
            await resolve_dispute(dispute.id, DisputeOutcome.SPLIT, make_arbiter())

    @pytest.mark.asyncio
    async def test_resolution_is_final(self):
        booking = await _booking()
        dispute, _ = await file_dispute(booking.id, make_customer(), "x", now=NOW)
        await resolve_dispute(
            dispute.id, DisputeOutcome.FAVOR_CUSTOMER, make_arbiter(), now=NOW
        )
        with pytest.raises(InvalidStateTransition):
            await resolve_dispute(
                dispute.id, DisputeOutcome.FAVOR_PROVIDER, make_arbiter(), now=NOW
            )

    @pytest.mark.asyncio
    async def test_money_already_released_is_not_moved_again(self):
        booking = await _booking(*COMPLETED_PATH)
        await escrow.release(booking.id, now=NOW + timedelta(hours=25))
        dispute, _ = await file_dispute(
            booking.id, make_customer(), "Found damage", now=NOW + timedelta(hours=30)
        )

        result = await resolve_dispute(
            dispute.id,
            DisputeOutcome.FAVOR_CUSTOMER,
            make_arbiter(),
            now=NOW + timedelta(hours=31),
        )
        assert result.payment_action == "none"
        assert result.booking.status == S.CANCELLED
        assert result.booking.payment_status == PaymentStatus.RELEASED

    @pytest.mark.asyncio
    async def test_unknown_dispute_not_found(self):
        with pytest.raises(NotFoundError):
            await resolve_dispute(uuid4(), DisputeOutcome.FAVOR_CUSTOMER, make_arbiter())


class TestListDisputes:
    @pytest.mark.asyncio
    async def test_filters_by_status(self):
        booking = await _booking()
        dispute, _ = await file_dispute(booking.id, make_customer(), "x", now=NOW)

        open_ = await list_disputes(status=DisputeStatus.OPEN)
        assert [d.id for d in open_] == [dispute.id]
        assert await list_disputes(status=DisputeStatus.RESOLVED) == []
        assert len(await list_disputes(booking_id=booking.id)) == 1
