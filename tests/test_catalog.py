"""Catalog reads: categories and bookable services."""

from __future__ import annotations

from uuid import uuid4

import pytest

from bookings.catalog import (
    get_provider_by_user,
    get_provider_profile,
    list_categories,
    list_services,
)
from bookings.errors import NotFoundError
from bookings.models import Category, ProviderProfile

from .factories import PROVIDER_USER_ID, create_provider_service

pytestmark = pytest.mark.usefixtures("db")


class TestCatalog:
    @pytest.mark.asyncio
    async def test_inactive_categories_hidden(self):
        await Category.create(name="Plumbing", sort_order=2)
        await Category.create(name="Retired", is_active=False)
        names = [c.name for c in await list_categories()]
        assert names == ["Plumbing"]

    @pytest.mark.asyncio
    async def test_services_include_provider_and_category(self):
        service = await create_provider_service()
        services = await list_services()
        assert len(services) == 1
        listed = services[0]
        assert listed.id == service.id
        assert listed.provider.specialties == ["kitchens"]
        assert listed.service_type.category.name == "Cleaning"

    @pytest.mark.asyncio
    async def test_services_filtered_by_category(self):
        service = await create_provider_service()
        await create_provider_service(provider_user_id=uuid4())
        service_type = await service.service_type
        filtered = await list_services(service_type.category_id)
        assert [s.id for s in filtered] == [service.id]

    @pytest.mark.asyncio
    async def test_inactive_provider_services_hidden(self):
        service = await create_provider_service()
        await ProviderProfile.filter(id=service.provider_id).update(is_active=False)
        assert await list_services() == []

    @pytest.mark.asyncio
    async def test_unknown_provider_not_found(self):
        with pytest.raises(NotFoundError):
            await get_provider_profile(uuid4())

    @pytest.mark.asyncio
    async def test_provider_found_by_owning_user(self):
        service = await create_provider_service()
        profile = await get_provider_by_user(PROVIDER_USER_ID)
        assert profile.id == service.provider_id

    @pytest.mark.asyncio
    async def test_user_without_profile_not_found(self):
        await create_provider_service()
        with pytest.raises(NotFoundError):
            await get_provider_by_user(uuid4())
