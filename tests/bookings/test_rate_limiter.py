import os
import sys
import time

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from fastapi import HTTPException

from bookings_service import rate_limiter


@pytest.fixture(autouse=True)
def live_limiter(monkeypatch):
    monkeypatch.delenv("TESTING", raising=False)
    monkeypatch.setattr(rate_limiter, "_user_request_log", {})
    yield


def claims(user_id: int, role: str = "user") -> dict:
    return {"sub": f"{role}{user_id}", "role": role, "user_id": user_id}


def test_idle_users_are_forgotten():
    stale = time.time() - rate_limiter.WINDOW_SECONDS - 5
    rate_limiter._user_request_log[7] = [stale, stale + 1]
    rate_limiter._user_request_log[9] = []

    rate_limiter.booking_rate_limiter(claims(8))

    assert list(rate_limiter._user_request_log) == [8]
    assert len(rate_limiter._user_request_log[8]) == 1


def test_user_over_the_limit_gets_429(monkeypatch):
    monkeypatch.setattr(rate_limiter, "MAX_BOOKINGS_PER_WINDOW", 2)

    rate_limiter.booking_rate_limiter(claims(1))
    rate_limiter.booking_rate_limiter(claims(1))
    with pytest.raises(HTTPException) as exc_info:
        rate_limiter.booking_rate_limiter(claims(1))

    assert exc_info.value.status_code == 429
    rate_limiter.booking_rate_limiter(claims(2))


def test_service_accounts_are_not_limited(monkeypatch):
    monkeypatch.setattr(rate_limiter, "MAX_BOOKINGS_PER_WINDOW", 1)

    for _ in range(3):
        rate_limiter.booking_rate_limiter(claims(0, "service_account"))

    assert rate_limiter._user_request_log == {}
