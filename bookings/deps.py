from dataclasses import dataclass, field
from enum import StrEnum
from functools import lru_cache
from urllib.parse import quote, unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status

from bookings import settings
from bookings.models import Party
from bookings.scopes import BOOKING_SCOPE_DESCRIPTIONS, BookingScope


class UserRole(StrEnum):
    CUSTOMER = "CUSTOMER"
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"


@dataclass
class CurrentUser:
    id: UUID
    username: str
    role: UserRole = UserRole.CUSTOMER
    scopes: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN or any(
            s in self.scopes for s in (BookingScope.ADMIN, BookingScope.ADMIN_WRITE)
        )

    @property
    def can_read_all(self) -> bool:
        return self.is_admin or BookingScope.ADMIN_READ in self.scopes

    def party_for(self, booking) -> Party | None:
        """
        Which side of `booking` this user acts for, or None if unrelated.

        A provider acts as PROVIDER only on bookings of their own profile;
        the same person booking someone else's service acts as CUSTOMER.
        """
        if self.is_admin:
            return Party.ADMIN
        if self.role == UserRole.PROVIDER and self.id == booking.provider_user_id:
            return Party.PROVIDER
        if self.id == booking.user_id:
            return Party.CUSTOMER
        return None


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
    x_user_role: str = Header(default=UserRole.CUSTOMER),
) -> CurrentUser:
    """
    Reads the headers injected by the gateway after forwardAuth validation.
    The JWT has already been verified — we just trust these headers.
    """
    try:
        user_id = UUID(x_user_id)
        role = UserRole(x_user_role.upper())
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    scopes = x_user_scopes.split(" ") if x_user_scopes else []

    return CurrentUser(
        id=user_id, username=unquote(x_username), role=role, scopes=scopes
    )


def require_scopes(*required: str):
    """
    Factory that returns a dependency enforcing one or more scopes.

    Usage:
        @router.get("/protected")
        async def route(user = Depends(require_scopes("bookings:read"))):
            ...
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        missing = [s for s in required if s not in current_user.scopes]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Missing required scopes: "
                + ", ".join(
                    f"{s} ({BOOKING_SCOPE_DESCRIPTIONS[s]})"
                    if s in BOOKING_SCOPE_DESCRIPTIONS
                    else s
                    for s in missing
                ),
            )
        return current_user

    return _dep


# ---------------------------------------------------------------------------
# Pre-built scope dependencies
# ---------------------------------------------------------------------------

can_write_booking = require_scopes(BookingScope.WRITE)
can_dispute_booking = require_scopes(BookingScope.DISPUTE)
can_review_booking = require_scopes(BookingScope.REVIEW)
can_arbitrate_disputes = require_scopes(BookingScope.ADMIN_DISPUTES)
can_release_payments = require_scopes(BookingScope.ADMIN_PAYMENTS)


async def can_read_or_manage_booking(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """
    Passes if the user can read bookings (customer/admin) OR manage bookings (provider).
    - bookings:read   → customer sees own bookings
    - bookings:manage → provider sees bookings for their profile
    - admin:bookings* → admin sees all
    """
    has_read = BookingScope.READ in current_user.scopes
    has_manage = BookingScope.MANAGE in current_user.scopes
    if not (has_read or has_manage or current_user.can_read_all):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{BookingScope.READ}' (customers), "
                f"'{BookingScope.MANAGE}' (providers), "
                f"or '{BookingScope.ADMIN_READ}' (admin)."
            ),
        )
    return current_user


async def can_change_booking(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Status changes need cancel (customer), manage (provider) or admin write."""
    if not (
        BookingScope.CANCEL in current_user.scopes
        or BookingScope.MANAGE in current_user.scopes
        or current_user.is_admin
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{BookingScope.CANCEL}' (customers), "
                f"'{BookingScope.MANAGE}' (providers), "
                f"or '{BookingScope.ADMIN_WRITE}' (admin)."
            ),
        )
    return current_user


# ---------------------------------------------------------------------------
# UsersClient — thin async wrapper around users-ms internal API
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_users_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.users_ms_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class UsersClient:
    """
    Thin async wrapper around the users-ms internal API.
    Forwards gateway-injected user headers so users-ms auth deps work normally.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_users_http_client()

    def _headers(self, user: CurrentUser) -> dict[str, str]:
        return {
            "X-User-Id": str(user.id),
            "X-Username": quote(user.username),
            "X-User-Scopes": " ".join(user.scopes),
            "X-User-Role": str(user.role),
        }

    async def get_by_ids(self, user_ids: set[UUID], user: CurrentUser) -> list[dict]:
        """Bulk-fetch users by ID for name enrichment. Fails silently."""
        if not user_ids:
            return []
        try:
            params = [("ids", str(uid)) for uid in user_ids]
            resp = await self._client.get(
                "/users/bulk", params=params, headers=self._headers(user)
            )
            if resp.status_code >= 400 or not resp.content:
                return []
            return resp.json()
        except (httpx.RequestError, ValueError):
            return []


_users_client = UsersClient()


def get_users_client() -> UsersClient:
    return _users_client
