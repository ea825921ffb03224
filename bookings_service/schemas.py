from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import BookingStatus, PaymentStatus


class BookingCreate(BaseModel):
    """
    Schema for claiming a seat in a slot.

    Attributes
    ----------
    slot_id : int
        Slot to book.
    seat_number : int
        Seat to claim; range-checked against the slot capacity by the resolver.
    pay_onsite : bool
        When true the booking waits for payment at the front desk instead
        of an online payment.
    """
    slot_id: int = Field(..., ge=1)
    seat_number: int
    pay_onsite: bool = False


class BookingTransition(BaseModel):
    """
    Schema for a status change request.

    Legality against the current status is decided by the resolver;
    asking for "pending" is always an invalid transition.
    """
    status: BookingStatus


class BookingRead(BaseModel):
    """
    Schema returned when reading booking information.
    """
    id: int
    user_id: int
    space_id: int
    slot_id: int
    seat_number: int
    status: BookingStatus
    payment_status: PaymentStatus
    amount_due: float
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OccupancyRead(BaseModel):
    """
    Seat map of one slot.

    Attributes
    ----------
    slot_id : int
        Slot the map belongs to.
    capacity : int
        Number of seats in the slot.
    seats : Dict[int, bool]
        Seat number -> True when held by a pending or confirmed booking.
    available : int
        Number of free seats.
    """
    slot_id: int
    capacity: int
    seats: Dict[int, bool]
    available: int


class SeatUsageRead(BaseModel):
    """
    Highest seat held by a pending or confirmed booking in one slot.

    The spaces service reads this before shrinking a space, so that no
    active booking ends up outside the slot's seat range.
    """
    slot_id: int
    max_seat_number: int
    active_bookings: int


class NotificationRead(BaseModel):
    """
    Schema returned when reading a user's notifications.
    """
    id: int
    user_id: int
    booking_id: Optional[int] = None
    type: str
    message: str
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
