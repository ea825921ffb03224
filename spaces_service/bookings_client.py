"""
Reads seat usage from the bookings service.

A space may only shrink while every active booking still fits; the
bookings service owns those rows, so the spaces service asks it.
"""
import os
from typing import Dict

import httpx
from fastapi import HTTPException, status
from loguru import logger

from common.auth import make_service_account_token
from common.circuit_breaker import CircuitBreaker

BOOKINGS_SERVICE_URL = os.getenv(
    "BOOKINGS_SERVICE_URL",
    "http://bookings_service:8002",  # Docker internal hostname:port
)

SERVICE_ACCOUNT_USERNAME = "spaces_service"

# Circuit breaker instance for calling the Bookings service
bookings_circuit_breaker = CircuitBreaker(
    name="bookings_service",
    max_failures=3,
    reset_timeout_seconds=30,
)


def get_max_held_seats(space_id: int) -> Dict[int, int]:
    """
    Highest seat held by a pending or confirmed booking, per slot.

    Parameters
    ----------
    space_id : int
        Space whose slots are inspected.

    Returns
    -------
    Dict[int, int]
        slot_id -> highest held seat number; slots without active
        bookings are absent.

    Raises
    ------
    HTTPException
        503 if the bookings service cannot be reached or the circuit is
        open. Without an answer a shrink cannot be proven safe.
    """
    unavailable = HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Bookings service unavailable, cannot verify held seats",
    )
    if not bookings_circuit_breaker.allow_request():
        raise unavailable

    token = make_service_account_token(SERVICE_ACCOUNT_USERNAME)
    try:
        resp = httpx.get(
            f"{BOOKINGS_SERVICE_URL.rstrip('/')}/api/v1/bookings/seat-usage",
            params={"space_id": space_id},
            headers={"Authorization": f"Bearer {token}"},
            timeout=5.0,
        )
    except httpx.RequestError as exc:
        bookings_circuit_breaker.record_failure()
        logger.warning(f"Failed to contact bookings service for space {space_id}: {exc}")
        raise unavailable

    if resp.status_code != 200:
        bookings_circuit_breaker.record_failure()
        logger.warning(f"Bookings service returned {resp.status_code} for space {space_id}")
        raise unavailable

    bookings_circuit_breaker.record_success()
    return {row["slot_id"]: row["max_seat_number"] for row in resp.json()}
