import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import httpx
import pytest
from jose import jwt

from bookings_service import catalog as catalog_module
from bookings_service.catalog import HttpSlotCatalog, SlotInfo, StaticSlotCatalog
from bookings_service.errors import NotFound, StoreUnavailable
from common.circuit_breaker import CircuitBreaker

SECRET_KEY = "super-secret-yourspace-key"
ALGORITHM = "HS256"


class FakeResponse:
    def __init__(self, status_code: int, json_data=None):
        self.status_code = status_code
        self._json_data = json_data or {}

    def json(self):
        return self._json_data


SLOT_JSON = {
    "id": 7,
    "space_id": 2,
    "date": "2030-05-01",
    "start_time": "2030-05-01T09:00:00",
    "end_time": "2030-05-01T12:00:00",
    "capacity": None,
    "effective_capacity": 12,
    "price_per_hour": 4.5,
}


@pytest.fixture
def breaker():
    return CircuitBreaker(name="spaces_test", max_failures=2, reset_timeout_seconds=60)


def test_get_slot_parses_spaces_response(monkeypatch, breaker):
    calls = []

    def fake_get(url, headers=None, timeout=None):
        calls.append((url, headers))
        return FakeResponse(200, SLOT_JSON)

    monkeypatch.setattr(catalog_module.httpx, "get", fake_get)
    slots = HttpSlotCatalog(base_url="http://spaces.test/", breaker=breaker)

    slot = slots.get_slot(7)

    assert slot.slot_id == 7
    assert slot.space_id == 2
    assert slot.capacity == 12
    assert slot.price_per_hour == 4.5
    assert slot.hours == 3.0

    url, headers = calls[0]
    assert url == "http://spaces.test/api/v1/slots/7"
    token = headers["Authorization"].split(" ", 1)[1]
    claims = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    assert claims["role"] == "service_account"
    assert claims["sub"] == "bookings_service"


def test_missing_slot_is_not_found_and_keeps_circuit_closed(monkeypatch, breaker):
    monkeypatch.setattr(catalog_module.httpx, "get", lambda *a, **kw: FakeResponse(404))
    slots = HttpSlotCatalog(breaker=breaker)

    for _ in range(3):
        with pytest.raises(NotFound):
            slots.get_slot(1)

    assert breaker.state == "closed"


def test_connection_errors_open_the_circuit(monkeypatch, breaker):
    attempts = []

    def failing_get(url, headers=None, timeout=None):
        attempts.append(url)
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(catalog_module.httpx, "get", failing_get)
    slots = HttpSlotCatalog(breaker=breaker)

    for _ in range(2):
        with pytest.raises(StoreUnavailable):
            slots.get_slot(1)
    assert breaker.state == "open"

    # open circuit: fail fast without calling the service
    with pytest.raises(StoreUnavailable):
        slots.get_slot(1)
    assert len(attempts) == 2


def test_server_error_counts_as_failure(monkeypatch, breaker):
    monkeypatch.setattr(catalog_module.httpx, "get", lambda *a, **kw: FakeResponse(500))
    slots = HttpSlotCatalog(breaker=breaker)

    with pytest.raises(StoreUnavailable):
        slots.get_slot(1)

    assert breaker.failure_count == 1


def test_success_resets_failures(monkeypatch, breaker):
    responses = iter([FakeResponse(502), FakeResponse(200, SLOT_JSON)])
    monkeypatch.setattr(catalog_module.httpx, "get", lambda *a, **kw: next(responses))
    slots = HttpSlotCatalog(breaker=breaker)

    with pytest.raises(StoreUnavailable):
        slots.get_slot(7)
    assert slots.get_slot(7).capacity == 12

    assert breaker.failure_count == 0
    assert breaker.state == "closed"


def test_half_open_failure_reopens_circuit(breaker):
    breaker.record_failure()
    breaker.record_failure()
    assert not breaker.allow_request()

    breaker.last_failure_time = breaker.last_failure_time - breaker.reset_timeout
    assert breaker.allow_request()
    assert breaker.state == "half_open"

    breaker.record_failure()
    assert breaker.state == "open"
    assert not breaker.allow_request()


def test_static_catalog_lookup():
    slots = StaticSlotCatalog()
    slots.add(SlotInfo(slot_id=3, space_id=1, capacity=2))

    assert slots.get_slot(3).capacity == 2
    assert slots.get_slot(3).hours == 0.0
    with pytest.raises(NotFound):
        slots.get_slot(4)
