from fastapi import APIRouter, Depends

from bookings import escrow
from bookings.deps import CurrentUser, can_release_payments
from bookings.schemas import ReleaseSummary

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/release-due", response_model=ReleaseSummary)
async def release_due_payments(
    _: CurrentUser = Depends(can_release_payments),
) -> ReleaseSummary:
    """Run one escrow release sweep now instead of waiting for the next tick."""
    released = await escrow.release_due()
    return ReleaseSummary(released=len(released), booking_ids=released)
