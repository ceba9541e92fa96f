"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files — pytest discovers this by convention.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient
from tortoise import Tortoise, connections

from bookings import cache
from bookings.deps import (
    can_arbitrate_disputes,
    can_change_booking,
    can_dispute_booking,
    can_read_or_manage_booking,
    can_release_payments,
    can_review_booking,
    can_write_booking,
    get_current_user,
    get_users_client,
)
from bookings.errors import register_error_handlers
from bookings.routers import booking, catalog, disputes, payments

from .factories import make_admin, make_customer, make_provider

# ---------------------------------------------------------------------------
# Default no-op mocks — prevent real HTTP / Redis calls in tests
# ---------------------------------------------------------------------------


def _noop_users_client():
    mock = MagicMock()
    mock.get_by_ids = AsyncMock(return_value=[])
    return mock


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    """Every test gets an in-memory stand-in for the shared Redis connection."""
    redis = AsyncMock()
    redis.get.return_value = None
    monkeypatch.setattr(cache, "_redis", redis)
    return redis


# ---------------------------------------------------------------------------
# Database — fresh in-memory SQLite per test
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def db():
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules={"models": ["bookings.models"]},
        use_tz=True,
    )
    await Tortoise.generate_schemas()
    yield
    await connections.close_all(discard=True)


# ---------------------------------------------------------------------------
# App builder — used by all client fixtures
# ---------------------------------------------------------------------------


def _router_app() -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)
    for module in (booking, disputes, payments, catalog):
        app.include_router(module.router)
    return app


def build_app(current_user, users_client=None) -> FastAPI:
    """
    Fresh FastAPI app with auth/scope dependencies overridden to return
    `current_user` unconditionally.

    Pass `users_client` to inject a custom mock.
    Defaults to a no-op mock that returns empty lists, avoiding real HTTP calls.
    """
    app = _router_app()

    async def _user():
        return current_user

    for dep in (
        can_read_or_manage_booking,
        can_write_booking,
        can_change_booking,
        can_dispute_booking,
        can_review_booking,
        can_arbitrate_disputes,
        can_release_payments,
        get_current_user,
    ):
        app.dependency_overrides[dep] = _user

    uc = users_client if users_client is not None else _noop_users_client()
    app.dependency_overrides[get_users_client] = lambda: uc

    return app


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def customer_client():
    return TestClient(build_app(make_customer()), raise_server_exceptions=True)


@pytest.fixture()
def provider_client():
    return TestClient(build_app(make_provider()), raise_server_exceptions=True)


@pytest.fixture()
def admin_client():
    return TestClient(build_app(make_admin()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """
    Bare app with NO dependency overrides.
    Use this when you want real scope/auth deps to run so you can assert 401/403/422.
    """
    return _router_app()


@pytest.fixture()
def client_factory():
    def _make(current_user, users_client=None) -> TestClient:
        return TestClient(
            build_app(current_user, users_client=users_client),
            raise_server_exceptions=True,
        )

    return _make
