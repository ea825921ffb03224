"""
Per-user notification inbox fed by booking events.
"""
from typing import Any, Callable, Dict, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import Notification

MESSAGES = {
    "booking.created": "Seat {seat_number} is reserved for you (booking #{booking_id}); {payment_hint}.",
    "booking.confirmed": "Booking #{booking_id} for seat {seat_number} is confirmed.",
    "booking.cancelled": "Booking #{booking_id} for seat {seat_number} was cancelled.",
}


def notification_for(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Turn a booking event payload into notification column values.

    Returns None for event types that do not notify anyone.
    """
    template = MESSAGES.get(payload["type"])
    if template is None:
        return None

    if payload["payment_status"] == "onsite":
        payment_hint = "pay at the front desk"
    else:
        payment_hint = "complete the payment to confirm it"

    return {
        "user_id": payload["user_id"],
        "booking_id": payload["booking_id"],
        "type": "success" if payload["type"] == "booking.confirmed" else "info",
        "message": template.format(payment_hint=payment_hint, **payload),
    }


class NotificationRecorder:
    """
    Booking event listener that stores one notification per event.

    Parameters
    ----------
    session_factory : Callable[[], Session]
        Opens a fresh session; the request's own session has already
        committed when events are published.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def __call__(self, payload: Dict[str, Any]) -> None:
        values = notification_for(payload)
        if values is None:
            return

        db = self.session_factory()
        try:
            db.add(Notification(**values))
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning(f"Could not store notification for booking {payload['booking_id']}: {exc}")
        finally:
            db.close()
