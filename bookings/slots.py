from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from bookings.errors import ValidationError
from bookings.lifecycle import ACTIVE_STATUSES
from bookings.models import Booking
from bookings.schemas import BookingSlot

_day_locks: weakref.WeakValueDictionary[tuple[UUID, date], asyncio.Lock] = (
    weakref.WeakValueDictionary()
)


@dataclass(frozen=True)
class SlotAvailability:
    available: bool
    conflicting_booking_id: UUID | None = None


def overlaps(
    start: datetime, end: datetime, other_start: datetime, other_end: datetime
) -> bool:
    """Half-open interval test: [start, end) and [other_start, other_end)."""
    return start < other_end and other_start < end


def slot_bounds(
    day: date, start_time: str, duration_minutes: int
) -> tuple[datetime, datetime]:
    """
    Turn a (date, "HH:MM", duration) request into [start_at, end_at).

    Wall-clock times are stored as UTC. A slot must end on the day it starts.
    """
    if duration_minutes <= 0:
        raise ValidationError("Service duration must be positive")
    hours, minutes = (int(p) for p in start_time.split(":"))
    start_at = datetime.combine(day, time(hours, minutes), tzinfo=timezone.utc)
    end_at = start_at + timedelta(minutes=duration_minutes)
    day_end = datetime.combine(day + timedelta(days=1), time(0), tzinfo=timezone.utc)
    if end_at > day_end:
        raise ValidationError(
            f"A {duration_minutes}-minute service starting at {start_time} "
            "would run past midnight"
        )
    return start_at, end_at


def provider_day_lock(provider_id: UUID, day: date) -> asyncio.Lock:
    """In-process lock serializing check-then-insert for one provider and day."""
    key = (provider_id, day)
    lock = _day_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _day_locks[key] = lock
    return lock


async def check_availability(
    provider_id: UUID,
    start_at: datetime,
    end_at: datetime,
    exclude_id: UUID | None = None,
    for_update: bool = False,
) -> SlotAvailability:
    """
    Available, or the id of an active booking overlapping [start_at, end_at).

    Pass for_update=True inside the insert transaction so the rows read are
    locked until commit.
    """
    qs = Booking.filter(
        provider_id=provider_id,
        status__in=list(ACTIVE_STATUSES),
        start_at__lt=end_at,
        end_at__gt=start_at,
    )
    if exclude_id is not None:
        qs = qs.exclude(id=exclude_id)
    if for_update:
        qs = qs.select_for_update()
    existing = await qs.order_by("start_at").first()
    if existing is None:
        return SlotAvailability(available=True)
    return SlotAvailability(available=False, conflicting_booking_id=existing.id)


async def list_occupied_slots(provider_id: UUID, day: date) -> list[BookingSlot]:
    """Return booked windows for a provider on a day — no user info exposed."""
    bookings = await Booking.filter(
        provider_id=provider_id,
        date=day,
        status__in=list(ACTIVE_STATUSES),
    ).order_by("start_at")
    return [
        BookingSlot(date=b.date, start_time=b.start_time, end_time=b.end_time)
        for b in bookings
    ]
