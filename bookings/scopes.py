from enum import StrEnum


class BookingScope(StrEnum):
    # Customer scopes
    READ = "bookings:read"  # view own bookings
    WRITE = "bookings:write"  # create a booking
    CANCEL = "bookings:cancel"  # cancel own booking
    DISPUTE = "bookings:dispute"  # contest a booking outcome
    REVIEW = "bookings:review"  # review a completed booking

    # Provider scopes
    MANAGE = "bookings:manage"  # confirm / start / complete / no_show own bookings

    # Admin scopes
    ADMIN = "admin:bookings"
    ADMIN_READ = "admin:bookings:read"
    ADMIN_WRITE = "admin:bookings:write"
    ADMIN_DISPUTES = "admin:disputes"  # arbitrate disputes
    ADMIN_PAYMENTS = "admin:payments"  # trigger escrow release


BOOKING_SCOPE_DESCRIPTIONS: dict[str, str] = {
    BookingScope.READ: "View your own bookings.",
    BookingScope.WRITE: "Book a provider service.",
    BookingScope.CANCEL: "Cancel your own pending or confirmed booking.",
    BookingScope.DISPUTE: "Open a dispute on a booking you are a party to.",
    BookingScope.REVIEW: "Review a completed booking.",
    BookingScope.MANAGE: "Confirm, start, complete, or mark no-show on your bookings.",
    BookingScope.ADMIN_READ: "Read any booking regardless of owner (admin).",
    BookingScope.ADMIN_WRITE: "Modify any booking status (admin).",
    BookingScope.ADMIN_DISPUTES: "Resolve booking disputes (arbiter).",
    BookingScope.ADMIN_PAYMENTS: "Run the escrow release sweep (admin).",
}
