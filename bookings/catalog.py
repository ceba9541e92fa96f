from __future__ import annotations

from uuid import UUID

from bookings.errors import NotFoundError
from bookings.models import Category, ProviderProfile, ProviderService
from bookings.schemas import CategoryResponse, ProviderServiceResponse


async def list_categories() -> list[CategoryResponse]:
    categories = await Category.filter(is_active=True)
    return [CategoryResponse.model_validate(c) for c in categories]


async def list_services(category_id: UUID | None = None) -> list[ProviderServiceResponse]:
    """Active services of active providers, optionally limited to one category."""
    qs = ProviderService.filter(is_active=True, provider__is_active=True)
    if category_id is not None:
        qs = qs.filter(service_type__category_id=category_id)
    services = await qs.prefetch_related("provider", "service_type__category")
    return [ProviderServiceResponse.model_validate(s) for s in services]


async def get_provider_profile(provider_id: UUID) -> ProviderProfile:
    profile = await ProviderProfile.get_or_none(id=provider_id)
    if profile is None:
        raise NotFoundError("Provider not found")
    return profile


async def get_provider_by_user(user_id: UUID) -> ProviderProfile:
    """The profile owned by `user_id`. A user has at most one."""
    profile = await ProviderProfile.get_or_none(user_id=user_id)
    if profile is None:
        raise NotFoundError("Provider not found")
    return profile
