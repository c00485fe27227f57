from enum import StrEnum


class BookingScope(StrEnum):
    # Guest scopes
    READ = "bookings:read"  # view own bookings
    WRITE = "bookings:write"  # create or reschedule a booking
    CANCEL = "bookings:cancel"  # cancel own booking

    # Spot owner scopes
    MANAGE = "bookings:manage"  # see bookings, cancel and black out dates on own spots

    # Service scopes
    CONFIRM = "bookings:confirm"  # payments-ms marks a booking paid

    # Admin scopes
    ADMIN = "admin:bookings"
    ADMIN_READ = "admin:bookings:read"
    ADMIN_WRITE = "admin:bookings:write"
    ADMIN_DELETE = "admin:bookings:delete"
