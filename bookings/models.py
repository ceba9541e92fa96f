from enum import StrEnum

from tortoise import fields
from tortoise.models import Model


class BookingStatus(StrEnum):
    PENDING = "PENDING"  # just created, awaiting provider confirmation
    CONFIRMED = "CONFIRMED"  # provider accepted
    IN_PROGRESS = "IN_PROGRESS"  # provider started the job
    COMPLETED = "COMPLETED"  # provider finished, payment on hold
    CANCELLED = "CANCELLED"  # cancelled by customer, provider or arbiter
    DISPUTED = "DISPUTED"  # a party contested the booking
    NO_SHOW = "NO_SHOW"  # customer didn't show up


class PaymentStatus(StrEnum):
    HELD = "HELD"
    RELEASED = "RELEASED"
    PARTIALLY_RELEASED = "PARTIALLY_RELEASED"
    REFUNDED = "REFUNDED"


class Party(StrEnum):
    CUSTOMER = "CUSTOMER"
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"


class DisputeStatus(StrEnum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class DisputeOutcome(StrEnum):
    FAVOR_CUSTOMER = "FAVOR_CUSTOMER"
    FAVOR_PROVIDER = "FAVOR_PROVIDER"
    SPLIT = "SPLIT"


class TimestampedModel(Model):
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        abstract = True


# ---------------------------------------------------------------------------
# Catalog (read-only from this service's point of view)
# ---------------------------------------------------------------------------


class Category(TimestampedModel):
    id = fields.UUIDField(primary_key=True)
    name = fields.CharField(max_length=100)
    description = fields.TextField(null=True)
    icon = fields.CharField(max_length=64, null=True)
    is_active = fields.BooleanField(default=True)
    sort_order = fields.IntField(default=0)

    class Meta:  # type: ignore
        table = "categories"
        ordering = ["sort_order", "name"]


class ServiceType(TimestampedModel):
    id = fields.UUIDField(primary_key=True)
    name = fields.CharField(max_length=100)
    description = fields.TextField(null=True)
    category = fields.ForeignKeyField("models.Category", related_name="service_types")

    class Meta:  # type: ignore
        table = "service_types"


class ProviderProfile(TimestampedModel):
    """A user has at most one provider profile; bookings reference the profile id."""

    id = fields.UUIDField(primary_key=True)
    user_id = fields.UUIDField(unique=True)
    description = fields.TextField(null=True)
    experience = fields.IntField(null=True)  # years
    rating = fields.DecimalField(max_digits=3, decimal_places=2, null=True)
    total_reviews = fields.IntField(default=0)
    is_verified = fields.BooleanField(default=False)
    is_active = fields.BooleanField(default=True)
    specialties = fields.JSONField(default=list)

    class Meta:  # type: ignore
        table = "provider_profiles"


class ProviderService(TimestampedModel):
    id = fields.UUIDField(primary_key=True)
    provider = fields.ForeignKeyField("models.ProviderProfile", related_name="services")
    service_type = fields.ForeignKeyField(
        "models.ServiceType", related_name="provider_services"
    )
    price = fields.DecimalField(max_digits=10, decimal_places=2)
    duration = fields.IntField()  # minutes
    description = fields.TextField(null=True)
    images = fields.JSONField(default=list)
    is_active = fields.BooleanField(default=True)

    class Meta:  # type: ignore
        table = "provider_services"


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class Booking(TimestampedModel):
    id = fields.UUIDField(primary_key=True)

    user_id = fields.UUIDField()  # the customer who made the booking
    provider_service_id = fields.UUIDField()
    provider_id = fields.UUIDField()  # provider profile id
    provider_user_id = fields.UUIDField()  # denormalized snapshot of the profile owner

    date = fields.DateField()
    start_at = fields.DatetimeField()
    end_at = fields.DatetimeField()  # start_at + service duration, never mutated

    status = fields.CharEnumField(BookingStatus, default=BookingStatus.PENDING)
    status_before_dispute = fields.CharEnumField(BookingStatus, null=True)
    version = fields.IntField(default=1)

    total_price = fields.DecimalField(max_digits=10, decimal_places=2)  # snapshot
    payment_status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.HELD)
    payment_release_at = fields.DatetimeField(null=True)
    payment_released_at = fields.DatetimeField(null=True)
    provider_payout = fields.DecimalField(max_digits=10, decimal_places=2, null=True)
    platform_fee = fields.DecimalField(max_digits=10, decimal_places=2, null=True)
    refunded_amount = fields.DecimalField(max_digits=10, decimal_places=2, null=True)

    service_address = fields.TextField()
    notes = fields.TextField(null=True)

    completed_at = fields.DatetimeField(null=True)
    completion_notes = fields.TextField(null=True)

    cancellation_requested_at = fields.DatetimeField(null=True)
    cancellation_requested_by = fields.CharEnumField(Party, null=True)
    cancellation_reason = fields.TextField(null=True)

    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["-created_at"]

    @property
    def start_time(self) -> str:
        return self.start_at.strftime("%H:%M")

    @property
    def end_time(self) -> str:
        return self.end_at.strftime("%H:%M")


class Dispute(TimestampedModel):
    id = fields.UUIDField(primary_key=True)
    booking = fields.ForeignKeyField("models.Booking", related_name="disputes")

    reason = fields.TextField()
    filed_by = fields.CharEnumField(Party)
    filed_by_user_id = fields.UUIDField()
    filed_at = fields.DatetimeField()

    status = fields.CharEnumField(DisputeStatus, default=DisputeStatus.OPEN)
    resolution_outcome = fields.CharEnumField(DisputeOutcome, null=True)
    split_ratio = fields.DecimalField(max_digits=5, decimal_places=4, null=True)
    resolved_at = fields.DatetimeField(null=True)
    resolved_by = fields.UUIDField(null=True)
    resolution_notes = fields.TextField(null=True)

    class Meta:  # type: ignore
        table = "disputes"
        ordering = ["-filed_at"]


class Review(TimestampedModel):
    id = fields.UUIDField(primary_key=True)
    booking = fields.OneToOneField("models.Booking", related_name="review")
    user_id = fields.UUIDField()
    provider_id = fields.UUIDField()
    rating = fields.IntField()
    comment = fields.TextField(null=True)

    class Meta:  # type: ignore
        table = "reviews"


class BookingEvent(TimestampedModel):
    """Append-only status-change history."""

    id = fields.IntField(primary_key=True)
    booking_id = fields.UUIDField(db_index=True)
    old_status = fields.CharEnumField(BookingStatus, null=True)
    new_status = fields.CharEnumField(BookingStatus)
    actor_id = fields.UUIDField(null=True)

    class Meta:  # type: ignore
        table = "booking_events"
        ordering = ["id"]
