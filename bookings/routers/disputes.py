from uuid import UUID

from fastapi import APIRouter, Depends

from bookings import disputes
from bookings.deps import CurrentUser, can_arbitrate_disputes
from bookings.models import DisputeStatus
from bookings.schemas import DisputeResolution, DisputeResolve, DisputeResponse

router = APIRouter(prefix="/disputes", tags=["disputes"])


@router.get("/", response_model=list[DisputeResponse])
async def list_disputes(
    status: DisputeStatus | None = None,
    booking_id: UUID | None = None,
    _: CurrentUser = Depends(can_arbitrate_disputes),
) -> list[DisputeResponse]:
    return await disputes.list_disputes(status=status, booking_id=booking_id)


@router.post("/{dispute_id}/resolve", response_model=DisputeResolution)
async def resolve_dispute(
    dispute_id: UUID,
    payload: DisputeResolve,
    current_user: CurrentUser = Depends(can_arbitrate_disputes),
) -> DisputeResolution:
    return await disputes.resolve_dispute(
        dispute_id,
        payload.outcome,
        current_user,
        split_ratio=payload.split_ratio,
        notes=payload.notes,
    )
