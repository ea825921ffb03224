# users_service/rate_limiter.py
import os
import threading
import time
from typing import Dict, List

from fastapi import HTTPException, Request, status

# Simple sliding-window rate limiter: N requests / WINDOW seconds per IP+path
WINDOW_SECONDS = int(os.getenv("LOGIN_RATE_WINDOW_SECONDS", "60"))
MAX_REQUESTS_PER_WINDOW = int(os.getenv("LOGIN_RATE_MAX_REQUESTS", "10"))

_request_log: Dict[str, List[float]] = {}
_log_lock = threading.Lock()


def _forget_idle_keys(window_start: float) -> None:
    idle = [key for key, ts in _request_log.items() if not ts or ts[-1] < window_start]
    for key in idle:
        del _request_log[key]


def ip_rate_limiter(request: Request):
    """
    Rate limit based on client IP + path.

    Used for unauthenticated endpoints like:
    - POST /api/v1/users/register
    - POST /api/v1/users/login
    """
    # Skip rate limiting completely in automated tests
    if os.getenv("TESTING") == "1":
        return
    client_ip = request.client.host if request.client else "unknown"
    key = f"{client_ip}:{request.url.path}"

    now = time.time()
    window_start = now - WINDOW_SECONDS

    with _log_lock:
        _forget_idle_keys(window_start)
        # keep only timestamps inside the window
        timestamps = [ts for ts in _request_log.get(key, []) if ts >= window_start]

        if len(timestamps) >= MAX_REQUESTS_PER_WINDOW:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests from this IP, please slow down",
            )

        timestamps.append(now)
        _request_log[key] = timestamps
