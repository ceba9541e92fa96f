from uuid import UUID

from fastapi import APIRouter, Depends

from bookings import catalog
from bookings.deps import CurrentUser, get_current_user
from bookings.schemas import (
    CategoryResponse,
    ProviderProfileResponse,
    ProviderServiceResponse,
)

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("/categories", response_model=list[CategoryResponse])
async def categories(
    _: CurrentUser = Depends(get_current_user),
) -> list[CategoryResponse]:
    return await catalog.list_categories()


@router.get("/services", response_model=list[ProviderServiceResponse])
async def services(
    category_id: UUID | None = None,
    _: CurrentUser = Depends(get_current_user),
) -> list[ProviderServiceResponse]:
    return await catalog.list_services(category_id)


@router.get("/providers", response_model=ProviderProfileResponse)
async def provider_by_user(
    user_id: UUID | None = None,
    current_user: CurrentUser = Depends(get_current_user),
) -> ProviderProfileResponse:
    """Profile owned by `user_id`, the caller's own when omitted."""
    profile = await catalog.get_provider_by_user(user_id or current_user.id)
    return ProviderProfileResponse.model_validate(profile)


@router.get("/providers/{provider_id}", response_model=ProviderProfileResponse)
async def provider(
    provider_id: UUID,
    _: CurrentUser = Depends(get_current_user),
) -> ProviderProfileResponse:
    profile = await catalog.get_provider_profile(provider_id)
    return ProviderProfileResponse.model_validate(profile)
