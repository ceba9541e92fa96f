"""
Payment escrow bookkeeping.

Funds are HELD from creation until one of:
  - release:          COMPLETED, hold period elapsed, no open dispute
  - reverse:          cancellation or a dispute decided for the customer
  - partial_release:  a dispute split between the parties

Every settlement is a conditional UPDATE on payment_status=HELD, so a
booking is settled at most once no matter how often the sweep runs. A
release also requires the status and version it checked, so a dispute
filed mid-release wins. Fee and
payout are persisted at settlement time and never recomputed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from loguru import logger
from tortoise.expressions import F

from bookings import settings
from bookings.errors import BookingNotEligible, NotFoundError, ValidationError
from bookings.models import (
    Booking,
    BookingStatus,
    Dispute,
    DisputeStatus,
    PaymentStatus,
)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class FeeSplit:
    platform_fee: Decimal
    provider_payout: Decimal


@dataclass(frozen=True)
class PaymentOutcome:
    action: str  # "release" | "partial_release" | "reverse" | "none"
    payment_status: PaymentStatus
    provider_payout: Decimal | None = None
    platform_fee: Decimal | None = None
    refunded_amount: Decimal | None = None


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _parse_tiers(raw: str) -> list[tuple[Decimal, Decimal]]:
    tiers = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        threshold, rate = chunk.split(":")
        tiers.append((Decimal(threshold), Decimal(rate)))
    return sorted(tiers)


def fee_rate_for(amount: Decimal) -> Decimal:
    """Flat PLATFORM_FEE_RATE, or the rate of the highest tier threshold <= amount."""
    rate = settings.PLATFORM_FEE_RATE
    for threshold, tier_rate in _parse_tiers(settings.PLATFORM_FEE_TIERS):
        if amount >= threshold:
            rate = tier_rate
    return rate


def compute_fees(amount: Decimal, rate: Decimal | None = None) -> FeeSplit:
    """
    Split `amount` into platform fee and provider payout.

    The fee is rounded to cents and the payout takes the remainder, so
    payout + fee == amount exactly.
    """
    if rate is None:
        rate = fee_rate_for(amount)
    fee = _cents(amount * rate)
    return FeeSplit(platform_fee=fee, provider_payout=_cents(amount) - fee)


def hold_payment(booking: Booking) -> None:
    """Mark a not-yet-saved booking's price as held in escrow."""
    if booking.total_price is None or booking.total_price <= 0:
        raise ValidationError("Booking price must be positive to hold payment")
    booking.payment_status = PaymentStatus.HELD
    booking.payment_release_at = None
    booking.payment_released_at = None


def schedule_release(completed_at: datetime) -> dict:
    """Field changes that schedule the release of a just-completed booking."""
    return {
        "payment_release_at": completed_at
        + timedelta(hours=settings.PAYMENT_HOLD_HOURS)
    }


async def _get(booking_id: UUID) -> Booking:
    booking = await Booking.get_or_none(id=booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


def _settled(booking: Booking) -> PaymentOutcome:
    return PaymentOutcome(
        action="none",
        payment_status=booking.payment_status,
        provider_payout=booking.provider_payout,
        platform_fee=booking.platform_fee,
        refunded_amount=booking.refunded_amount,
    )


async def release(
    booking_id: UUID, now: datetime | None = None, force: bool = False
) -> PaymentOutcome:
    """
    Pay the provider out of escrow.

    Without `force` the booking must be COMPLETED with its release time
    passed. Calling this on an already released booking returns the
    persisted amounts and moves no money.
    """
    now = now or datetime.now(timezone.utc)
    booking = await _get(booking_id)

    if booking.payment_status == PaymentStatus.RELEASED:
        return _settled(booking)
    if booking.payment_status != PaymentStatus.HELD:
        raise BookingNotEligible(
            f"Payment is {booking.payment_status} and cannot be released"
        )
    if not force:
        if booking.status != BookingStatus.COMPLETED:
            raise BookingNotEligible(
                f"Only completed bookings are released (status: {booking.status})"
            )
        if booking.payment_release_at is None or booking.payment_release_at > now:
            raise BookingNotEligible("Payment hold period has not elapsed")
    if await Dispute.exists(booking_id=booking_id, status=DisputeStatus.OPEN):
        raise BookingNotEligible("Payment release is suspended by an open dispute")

    # A forced release comes from a resolver that has just written COMPLETED
    split = compute_fees(booking.total_price)
    updated = await Booking.filter(
        id=booking_id,
        payment_status=PaymentStatus.HELD,
        status=BookingStatus.COMPLETED,
        version=booking.version,
    ).update(
        payment_status=PaymentStatus.RELEASED,
        platform_fee=split.platform_fee,
        provider_payout=split.provider_payout,
        payment_released_at=now,
        version=F("version") + 1,
    )
    if not updated:
        current = await _get(booking_id)
        if current.payment_status == PaymentStatus.RELEASED:
            # Lost a race with another settlement; report what the winner stored.
            return _settled(current)
        raise BookingNotEligible(
            f"Booking changed during release (status: {current.status}, "
            f"payment: {current.payment_status})"
        )

    logger.info(
        "Released booking {}: payout={} fee={}",
        booking_id,
        split.provider_payout,
        split.platform_fee,
    )
    return PaymentOutcome(
        action="release",
        payment_status=PaymentStatus.RELEASED,
        provider_payout=split.provider_payout,
        platform_fee=split.platform_fee,
    )


async def reverse(booking_id: UUID, now: datetime | None = None) -> PaymentOutcome:
    """Refund the full held amount to the customer. No-op once settled."""
    booking = await _get(booking_id)
    if booking.payment_status != PaymentStatus.HELD:
        return _settled(booking)

    updated = await Booking.filter(
        id=booking_id, payment_status=PaymentStatus.HELD
    ).update(
        payment_status=PaymentStatus.REFUNDED,
        refunded_amount=booking.total_price,
        payment_release_at=None,
        version=F("version") + 1,
    )
    if not updated:
        return _settled(await _get(booking_id))

    logger.info("Reversed booking {}: refunded={}", booking_id, booking.total_price)
    return PaymentOutcome(
        action="reverse",
        payment_status=PaymentStatus.REFUNDED,
        refunded_amount=booking.total_price,
    )


async def partial_release(
    booking_id: UUID, provider_share: Decimal, now: datetime | None = None
) -> PaymentOutcome:
    """
    Release `provider_share` (0 < share < 1) of the price to the provider,
    less the platform fee on that part, and refund the rest.
    """
    if not Decimal(0) < provider_share < Decimal(1):
        raise ValidationError("Provider share must be between 0 and 1")
    now = now or datetime.now(timezone.utc)
    booking = await _get(booking_id)
    if booking.payment_status != PaymentStatus.HELD:
        return _settled(booking)

    released = _cents(booking.total_price * provider_share)
    refunded = _cents(booking.total_price) - released
    split = compute_fees(released)

    updated = await Booking.filter(
        id=booking_id, payment_status=PaymentStatus.HELD
    ).update(
        payment_status=PaymentStatus.PARTIALLY_RELEASED,
        platform_fee=split.platform_fee,
        provider_payout=split.provider_payout,
        refunded_amount=refunded,
        payment_released_at=now,
        version=F("version") + 1,
    )
    if not updated:
        return _settled(await _get(booking_id))

    logger.info(
        "Split booking {}: payout={} fee={} refunded={}",
        booking_id,
        split.provider_payout,
        split.platform_fee,
        refunded,
    )
    return PaymentOutcome(
        action="partial_release",
        payment_status=PaymentStatus.PARTIALLY_RELEASED,
        provider_payout=split.provider_payout,
        platform_fee=split.platform_fee,
        refunded_amount=refunded,
    )


async def release_due(
    now: datetime | None = None, limit: int | None = None
) -> list[UUID]:
    """
    Release every completed booking whose hold period has passed.

    Safe to run repeatedly and concurrently: each release is conditional on
    the payment still being HELD.
    """
    now = now or datetime.now(timezone.utc)
    limit = limit or settings.RELEASE_SWEEP_BATCH_SIZE
    due = await (
        Booking.filter(
            status=BookingStatus.COMPLETED,
            payment_status=PaymentStatus.HELD,
            payment_release_at__lte=now,
        )
        .order_by("payment_release_at")
        .limit(limit)
        .values_list("id", flat=True)
    )

    released: list[UUID] = []
    for booking_id in due:
        try:
            outcome = await release(booking_id, now=now)
        except (BookingNotEligible, NotFoundError) as exc:
            logger.info("Skipping release of booking {}: {}", booking_id, exc)
            continue
        if outcome.action == "release":
            released.append(booking_id)

    if released:
        logger.info("Release sweep paid out {} booking(s)", len(released))
    return released
