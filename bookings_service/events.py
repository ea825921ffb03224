"""
Booking change feed.

Published after a booking is created or changes status so seat maps
can refresh without polling. Delivery is best-effort and sits outside
the booking correctness contract.
"""
import json
import threading
from typing import Any, Callable, Dict, List

import redis
from loguru import logger

from common.cache import get_redis_client

Listener = Callable[[Dict[str, Any]], None]


def slot_channel(slot_id: int) -> str:
    return f"slot:{slot_id}:bookings"


def booking_payload(event_type: str, booking: Any) -> Dict[str, Any]:
    return {
        "type": event_type,
        "booking_id": booking.id,
        "slot_id": booking.slot_id,
        "space_id": booking.space_id,
        "seat_number": booking.seat_number,
        "user_id": booking.user_id,
        "status": getattr(booking.status, "value", booking.status),
        "payment_status": getattr(booking.payment_status, "value", booking.payment_status),
    }


class BookingEventStream:
    """
    Fan-out of booking events to in-process listeners and Redis pub/sub.

    Parameters
    ----------
    redis_client_factory : Callable
        Returns a Redis client or None when Redis is not configured.
    """

    def __init__(self, redis_client_factory: Callable[[], Any] = get_redis_client):
        self._redis_client_factory = redis_client_factory
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register an in-process listener.

        Returns
        -------
        Callable[[], None]
            Call it to unsubscribe.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event_type: str, booking: Any) -> Dict[str, Any]:
        payload = booking_payload(event_type, booking)

        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception(f"Booking event listener failed for {event_type}")

        client = self._redis_client_factory()
        if client is not None:
            try:
                client.publish(slot_channel(booking.slot_id), json.dumps(payload))
            except redis.RedisError as exc:
                logger.warning(f"Could not publish {event_type} for booking {booking.id}: {exc}")

        logger.debug(f"Published {event_type} for booking {booking.id}")
        return payload


booking_events = BookingEventStream()
