"""
Status-change events for the notification service.

Every ledger status write appends a BookingEvent row inside the same
transaction; the Redis publish happens after commit and never fails the
request.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from loguru import logger

from bookings.cache import get_redis
from bookings.models import BookingEvent, BookingStatus
from bookings.settings import BOOKING_EVENTS_CHANNEL


@dataclass(frozen=True)
class StatusChange:
    booking_id: UUID
    old_status: BookingStatus | None
    new_status: BookingStatus
    timestamp: datetime

    def to_payload(self) -> dict:
        return {
            "bookingId": str(self.booking_id),
            "oldStatus": self.old_status.value if self.old_status else None,
            "newStatus": self.new_status.value,
            "timestamp": self.timestamp.isoformat(),
        }


async def record_status_change(
    booking_id: UUID,
    old_status: BookingStatus | None,
    new_status: BookingStatus,
    at: datetime,
    actor_id: UUID | None = None,
) -> StatusChange:
    """Append the audit row. Call inside the ledger transaction."""
    await BookingEvent.create(
        booking_id=booking_id,
        old_status=old_status,
        new_status=new_status,
        actor_id=actor_id,
    )
    return StatusChange(booking_id, old_status, new_status, at)


async def publish_status_change(change: StatusChange) -> None:
    logger.info(
        "Booking {} status {} -> {}",
        change.booking_id,
        change.old_status,
        change.new_status,
    )
    try:
        await get_redis().publish(BOOKING_EVENTS_CHANNEL, json.dumps(change.to_payload()))
    except Exception:
        logger.warning(
            "Redis publish failed — status change for booking {} not broadcast",
            change.booking_id,
            exc_info=True,
        )
