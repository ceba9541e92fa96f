"""
Tests for bookings/deps.py — get_current_user, require_scopes, UsersClient, etc.
These tests use the real dep functions (no overrides) to get coverage.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import httpx
from fastapi import Depends
from fastapi.testclient import TestClient

from bookings.deps import (
    CurrentUser,
    UserRole,
    UsersClient,
    can_read_or_manage_booking,
    get_current_user,
    get_users_client,
)
from bookings.models import Party
from bookings.scopes import BookingScope

from .conftest import _router_app
from .factories import (
    CUSTOMER_ID,
    DISPUTE_ID,
    PROVIDER_USER_ID,
    dispute_response,
    make_admin,
    make_arbiter,
    make_customer,
    make_provider,
)

LEDGER_PATH = "bookings.routers.booking.booking_ledger"


def _app_with_scope_passthrough(captured: dict | None = None):
    """
    App that uses the real get_current_user dep but ignores scope checks
    (scope check is replaced with a passthrough that still calls get_current_user).
    """
    app = _router_app()

    async def _passthrough(user=Depends(get_current_user)):
        if captured is not None:
            captured["user"] = user
        return user

    app.dependency_overrides[can_read_or_manage_booking] = _passthrough
    return app


def _headers(**overrides) -> dict:
    base = {
        "X-User-Id": str(CUSTOMER_ID),
        "X-Username": "customer1",
        "X-User-Scopes": "bookings:read",
    }
    return {**base, **overrides}


class TestGetCurrentUser:
    def test_valid_headers_authenticate(self):
        """get_current_user reads gateway headers and returns CurrentUser."""
        app = _app_with_scope_passthrough()
        with patch(LEDGER_PATH) as mock_ledger:
            mock_ledger.list_bookings = AsyncMock(return_value=[])
            with TestClient(app) as c:
                resp = c.get(f"/bookings/user/{CUSTOMER_ID}", headers=_headers())
        assert resp.status_code == 200

    def test_invalid_user_id_returns_401(self):
        app = _app_with_scope_passthrough()
        with TestClient(app) as c:
            resp = c.get(
                f"/bookings/user/{CUSTOMER_ID}", headers=_headers(**{"X-User-Id": "nope"})
            )
        assert resp.status_code == 401

    def test_unknown_role_returns_401(self):
        app = _app_with_scope_passthrough()
        with TestClient(app) as c:
            resp = c.get(
                f"/bookings/user/{CUSTOMER_ID}",
                headers=_headers(**{"X-User-Role": "superhero"}),
            )
        assert resp.status_code == 401

    def test_role_header_parsed_case_insensitively(self):
        captured: dict = {}
        app = _app_with_scope_passthrough(captured)
        with patch(LEDGER_PATH) as mock_ledger:
            mock_ledger.list_bookings = AsyncMock(return_value=[])
            with TestClient(app) as c:
                c.get(
                    f"/bookings/user/{CUSTOMER_ID}",
                    headers=_headers(**{"X-User-Role": "provider"}),
                )
        assert captured["user"].role == UserRole.PROVIDER

    def test_empty_scopes_string_parsed_as_empty_list(self):
        captured: dict = {}
        app = _app_with_scope_passthrough(captured)
        with patch(LEDGER_PATH) as mock_ledger:
            mock_ledger.list_bookings = AsyncMock(return_value=[])
            with TestClient(app) as c:
                c.get(
                    f"/bookings/user/{CUSTOMER_ID}",
                    headers=_headers(**{"X-User-Scopes": ""}),
                )
        assert captured["user"].scopes == []
        assert captured["user"].role == UserRole.CUSTOMER


class TestScopeDependencies:
    def _app_for(self, current_user):
        app = _router_app()

        async def _user():
            return current_user

        app.dependency_overrides[get_current_user] = _user
        return app

    def test_provider_with_manage_scope_can_read(self):
        app = self._app_for(make_provider())
        with patch(LEDGER_PATH) as mock_ledger:
            mock_ledger.list_bookings = AsyncMock(return_value=[])
            with TestClient(app) as c:
                resp = c.get(f"/bookings/user/{PROVIDER_USER_ID}")
        assert resp.status_code == 200

    def test_customer_cannot_list_disputes(self):
        app = self._app_for(make_customer())
        with TestClient(app) as c:
            resp = c.get("/disputes/")
        assert resp.status_code == 403

    def test_arbiter_passes_dispute_scope(self):
        app = self._app_for(make_arbiter())
        with patch(
            "bookings.routers.disputes.disputes.list_disputes",
            AsyncMock(return_value=[dispute_response()]),
        ):
            with TestClient(app) as c:
                resp = c.get("/disputes/")
        assert resp.status_code == 200
        assert resp.json()[0]["id"] == str(DISPUTE_ID)

    def test_release_needs_payments_scope(self):
        app = self._app_for(make_arbiter())
        with TestClient(app) as c:
            resp = c.post("/payments/release-due")
        assert resp.status_code == 403
        assert "admin:payments" in resp.json()["detail"]
        assert "Run the escrow release sweep" in resp.json()["detail"]


class TestCurrentUser:
    def test_is_admin_from_role(self):
        assert make_admin().is_admin is True

    def test_is_admin_from_scope(self):
        user = CurrentUser(id=uuid4(), username="a", scopes=[BookingScope.ADMIN_WRITE])
        assert user.is_admin is True

    def test_is_admin_false_for_customer(self):
        assert make_customer().is_admin is False

    def test_admin_read_scope_can_read_all(self):
        user = CurrentUser(id=uuid4(), username="a", scopes=[BookingScope.ADMIN_READ])
        assert user.can_read_all is True
        assert user.is_admin is False

    def test_party_for_customer(self):
        booking = SimpleNamespace(user_id=CUSTOMER_ID, provider_user_id=PROVIDER_USER_ID)
        assert make_customer().party_for(booking) == Party.CUSTOMER

    def test_party_for_provider(self):
        booking = SimpleNamespace(user_id=CUSTOMER_ID, provider_user_id=PROVIDER_USER_ID)
        assert make_provider().party_for(booking) == Party.PROVIDER

    def test_provider_booking_elsewhere_acts_as_customer(self):
        booking = SimpleNamespace(user_id=PROVIDER_USER_ID, provider_user_id=uuid4())
        assert make_provider().party_for(booking) == Party.CUSTOMER

    def test_party_for_unrelated_user_is_none(self):
        booking = SimpleNamespace(user_id=CUSTOMER_ID, provider_user_id=PROVIDER_USER_ID)
        assert make_customer(user_id=uuid4()).party_for(booking) is None

    def test_party_for_admin(self):
        booking = SimpleNamespace(user_id=CUSTOMER_ID, provider_user_id=PROVIDER_USER_ID)
        assert make_admin().party_for(booking) == Party.ADMIN


class TestUsersClient:
    def test_returns_users_client_instance(self):
        assert isinstance(get_users_client(), UsersClient)

    def test_same_instance_returned_each_time(self):
        """get_users_client returns the module-level singleton."""
        assert get_users_client() is get_users_client()

    def test_headers_built_from_current_user(self):
        user = make_provider()
        headers = UsersClient()._headers(user)
        assert headers["X-User-Id"] == str(user.id)
        assert headers["X-Username"] == user.username
        assert headers["X-User-Role"] == "PROVIDER"
        assert "bookings:manage" in headers["X-User-Scopes"]

    def test_client_property_returns_async_client(self):
        """Accessing ._client triggers the lru_cache factory."""
        assert isinstance(UsersClient()._client, httpx.AsyncClient)

    async def _get_by_ids(self, transport: httpx.MockTransport, ids: set):
        client = UsersClient()
        http = httpx.AsyncClient(base_url="http://users", transport=transport)
        with patch("bookings.deps._get_users_http_client", return_value=http):
            return await client.get_by_ids(ids, make_customer())

    def test_get_by_ids_returns_users(self):
        import asyncio

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/users/bulk"
            return httpx.Response(200, json=[{"id": str(CUSTOMER_ID)}])

        users = asyncio.run(
            self._get_by_ids(httpx.MockTransport(handler), {CUSTOMER_ID})
        )
        assert users == [{"id": str(CUSTOMER_ID)}]

    def test_get_by_ids_fails_silently(self):
        import asyncio

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("users-ms down")

        users = asyncio.run(
            self._get_by_ids(httpx.MockTransport(handler), {CUSTOMER_ID})
        )
        assert users == []

    def test_get_by_ids_empty_set_skips_call(self):
        import asyncio

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        assert asyncio.run(self._get_by_ids(httpx.MockTransport(handler), set())) == []
