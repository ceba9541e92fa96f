"""
Booking state machine and transition authorization.

Pure functions only: the ledger calls `assert_transition` before every
status write, so an illegal or unauthorized change never reaches the DB.
"""

from __future__ import annotations

from bookings.errors import AuthorizationError, InvalidStateTransition
from bookings.models import BookingStatus, Party

ACTIVE_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS}
)
TERMINAL_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
)
# Terminal states that may still be contested inside the dispute window
RETRO_DISPUTABLE_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED}
)

_VALID_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {
        BookingStatus.IN_PROGRESS,
        BookingStatus.CANCELLED,
        BookingStatus.NO_SHOW,
    },
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.NO_SHOW: set(),
    # Left only through dispute resolution
    BookingStatus.DISPUTED: set(),
}

_ALLOWED_ACTORS: dict[tuple[BookingStatus, BookingStatus], set[Party]] = {
    (BookingStatus.PENDING, BookingStatus.CONFIRMED): {Party.PROVIDER},
    (BookingStatus.PENDING, BookingStatus.CANCELLED): {Party.CUSTOMER, Party.PROVIDER},
    (BookingStatus.CONFIRMED, BookingStatus.CANCELLED): {
        Party.CUSTOMER,
        Party.PROVIDER,
    },
    (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS): {Party.PROVIDER},
    (BookingStatus.CONFIRMED, BookingStatus.NO_SHOW): {Party.PROVIDER},
    (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED): {Party.PROVIDER},
    (BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED): {Party.PROVIDER},
}


def allowed_targets(current: BookingStatus) -> set[BookingStatus]:
    return set(_VALID_TRANSITIONS.get(current, set()))


def is_active(status: BookingStatus) -> bool:
    return status in ACTIVE_STATUSES


def assert_transition(
    current: BookingStatus, target: BookingStatus, actor: Party
) -> None:
    """
    Raise if `actor` may not move a booking from `current` to `target`.

    The state check runs first so that an impossible transition is reported
    as such regardless of who asked. ADMIN passes every valid transition.
    DISPUTED is never a valid target here; disputes go through the dispute
    workflow.
    """
    if target == BookingStatus.DISPUTED:
        raise InvalidStateTransition(
            current,
            target,
            "Bookings are disputed through the dispute workflow, not a status update",
        )
    if target not in _VALID_TRANSITIONS.get(current, set()):
        allowed = sorted(s.value for s in allowed_targets(current))
        raise InvalidStateTransition(
            current,
            target,
            f"Cannot transition from '{current}' to '{target}'. Allowed: {allowed}",
        )
    if actor == Party.ADMIN:
        return
    if actor not in _ALLOWED_ACTORS.get((current, target), set()):
        raise AuthorizationError(
            f"A {actor.lower()} may not move a booking from '{current}' to '{target}'"
        )
