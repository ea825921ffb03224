from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Column, DateTime, Enum, Float, Index, Integer, String, Text, text

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class BookingStatus(str, PyEnum):
    """
    Enumeration of possible booking statuses.

    Values
    ------
    pending
        Seat is held but not yet paid or confirmed.
    confirmed
        Booking is final and holds the seat.
    cancelled
        Booking has been cancelled and no longer holds the seat.
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentStatus(str, PyEnum):
    """
    Enumeration of payment states attached to a booking.

    Values
    ------
    pending
        Online payment has not completed yet.
    onsite
        The user chose to pay at the front desk.
    paid
        Payment received (online or confirmed onsite).
    """
    PENDING = "pending"
    ONSITE = "onsite"
    PAID = "paid"


# Statuses that hold a seat.
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class Booking(Base):
    """
    SQLAlchemy model representing one user's claim on one seat of a slot.

    Attributes
    ----------
    id : int
        Primary key.
    user_id : int
        Identifier of the user who owns the booking.
    space_id : int
        Space the slot belongs to.
    slot_id : int
        Booked time slot.
    seat_number : int
        Seat within the slot, in 1..capacity.
    status : BookingStatus
        pending, confirmed or cancelled.
    payment_status : PaymentStatus
        pending, onsite or paid.
    amount_due : float
        Price of the seat for the slot, service fee included.
    created_at : datetime
        Timestamp when the booking was created.
    updated_at : datetime
        Timestamp of the last status change.
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    space_id = Column(Integer, index=True, nullable=False)
    slot_id = Column(Integer, index=True, nullable=False)
    seat_number = Column(Integer, nullable=False)
    status = Column(
        Enum(BookingStatus, values_callable=_enum_values),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    payment_status = Column(
        Enum(PaymentStatus, values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    amount_due = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        # A seat can be held by at most one non-cancelled booking per slot.
        Index(
            "uq_booking_active_seat",
            "slot_id",
            "seat_number",
            unique=True,
            postgresql_where=text("status != 'cancelled'"),
            sqlite_where=text("status != 'cancelled'"),
        ),
    )


class Notification(Base):
    """
    SQLAlchemy model for a message shown in a user's notification inbox.

    Rows are written from booking events; users read, mark and dismiss
    their own.

    Attributes
    ----------
    id : int
        Primary key.
    user_id : int
        Recipient.
    booking_id : int
        Booking the notification is about, if any.
    type : str
        'success' for confirmations, 'info' otherwise.
    message : str
        Text shown to the user.
    is_read : bool
        Whether the user has marked it as read.
    created_at : datetime
        Timestamp when the notification was created.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    booking_id = Column(Integer, nullable=True)
    type = Column(String(20), nullable=False, default="info")
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_utcnow)
