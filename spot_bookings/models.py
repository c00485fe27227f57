from enum import StrEnum

from tortoise import fields
from tortoise.models import Model


class BookingStatus(StrEnum):
    PENDING = "pending"  # created, awaiting payment capture
    CONFIRMED = "confirmed"  # payment captured
    CANCELLED = "cancelled"  # cancelled by requester, spot owner or admin
    COMPLETED = "completed"  # end date passed, set by the completion sweep
    UNAVAILABLE = "unavailable"  # owner blackout, not a real reservation


class Booking(Model):
    id = fields.UUIDField(primary_key=True)

    spot_id = fields.UUIDField(db_index=True)
    spot_owner_id = fields.UUIDField()  # denormalized snapshot from spots-ms
    requester_id = fields.UUIDField()  # guest, or the owner for blackouts

    start_date = fields.DateField()
    end_date = fields.DateField()

    guest_count = fields.IntField(default=0)
    cost = fields.DecimalField(max_digits=10, decimal_places=2)

    status = fields.CharEnumField(BookingStatus, default=BookingStatus.PENDING)

    notes = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["-created_at"]
