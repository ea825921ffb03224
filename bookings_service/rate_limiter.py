# bookings_service/rate_limiter.py
import os
import threading
import time
from typing import Any, Dict, List

from fastapi import Depends, HTTPException, status

from common.auth import get_current_user_claims

WINDOW_SECONDS = int(os.getenv("BOOKING_RATE_WINDOW_SECONDS", "60"))
MAX_BOOKINGS_PER_WINDOW = int(os.getenv("BOOKING_RATE_MAX_REQUESTS", "20"))

_user_request_log: Dict[int, List[float]] = {}
_log_lock = threading.Lock()


def _forget_idle_users(window_start: float) -> None:
    # timestamps are appended in order, so the last one is the newest
    idle = [uid for uid, ts in _user_request_log.items() if not ts or ts[-1] < window_start]
    for uid in idle:
        del _user_request_log[uid]


def booking_rate_limiter(claims: Dict[str, Any] = Depends(get_current_user_claims)):
    """
    Rate limit booking-related writes per authenticated user.

    Service accounts and automated tests (TESTING=1) are not limited.
    """
    if os.getenv("TESTING") == "1" or claims["role"] == "service_account":
        return

    user_id = claims["user_id"]
    now = time.time()
    window_start = now - WINDOW_SECONDS

    with _log_lock:
        _forget_idle_users(window_start)
        timestamps = [ts for ts in _user_request_log.get(user_id, []) if ts >= window_start]

        if len(timestamps) >= MAX_BOOKINGS_PER_WINDOW:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many booking operations in a short time",
            )

        timestamps.append(now)
        _user_request_log[user_id] = timestamps
