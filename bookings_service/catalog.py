"""
Slot lookup for the bookings service.

Slots and spaces live in the spaces service; the resolver only needs a
slot's effective seat count, owning space and price, which it gets
through a SlotCatalog.
"""
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Protocol

import httpx
from loguru import logger

from common.auth import make_service_account_token
from common.circuit_breaker import CircuitBreaker

from .errors import NotFound, StoreUnavailable

SPACES_SERVICE_URL = os.getenv(
    "SPACES_SERVICE_URL",
    "http://spaces_service:8001",  # Docker internal hostname:port
)

SERVICE_ACCOUNT_USERNAME = "bookings_service"


@dataclass(frozen=True)
class SlotInfo:
    slot_id: int
    space_id: int
    capacity: int
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    price_per_hour: float = 0.0

    @property
    def hours(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds() / 3600


class SlotCatalog(Protocol):
    def get_slot(self, slot_id: int) -> SlotInfo:
        ...


# Circuit breaker instance for calling the Spaces service
spaces_circuit_breaker = CircuitBreaker(
    name="spaces_service",
    max_failures=3,
    reset_timeout_seconds=30,
)


class HttpSlotCatalog:
    """
    SlotCatalog backed by the spaces service HTTP API.

    Parameters
    ----------
    base_url : str
        Root URL of the spaces service.
    breaker : CircuitBreaker
        Breaker guarding outbound calls.
    timeout : float
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str = SPACES_SERVICE_URL,
        breaker: CircuitBreaker = spaces_circuit_breaker,
        timeout: float = 5.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.breaker = breaker
        self.timeout = timeout

    def get_slot(self, slot_id: int) -> SlotInfo:
        """
        Fetch a slot from the spaces service.

        Raises
        ------
        NotFound
            If the spaces service does not know the slot.
        StoreUnavailable
            If the circuit is open, the call fails, or the response is
            not usable.
        """
        if not self.breaker.allow_request():
            raise StoreUnavailable("Spaces service temporarily unavailable (circuit open)")

        token = make_service_account_token(SERVICE_ACCOUNT_USERNAME)
        headers = {"Authorization": f"Bearer {token}"}

        try:
            resp = httpx.get(
                f"{self.base_url}/api/v1/slots/{slot_id}",
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.RequestError as exc:
            self.breaker.record_failure()
            logger.warning(f"Failed to contact spaces service for slot {slot_id}: {exc}")
            raise StoreUnavailable("Failed to contact spaces service")

        if resp.status_code == 404:
            # the service answered; a missing slot is not a failure
            self.breaker.record_success()
            raise NotFound("Slot not found")

        if resp.status_code != 200:
            self.breaker.record_failure()
            logger.warning(f"Spaces service returned {resp.status_code} for slot {slot_id}")
            raise StoreUnavailable("Spaces service returned an error")

        self.breaker.record_success()

        data = resp.json()
        return SlotInfo(
            slot_id=data["id"],
            space_id=data["space_id"],
            capacity=data["effective_capacity"],
            start_time=datetime.fromisoformat(data["start_time"]),
            end_time=datetime.fromisoformat(data["end_time"]),
            price_per_hour=float(data.get("price_per_hour") or 0.0),
        )


class StaticSlotCatalog:
    """In-memory SlotCatalog, used by tests and local profiling."""

    def __init__(self, slots: Optional[Dict[int, SlotInfo]] = None):
        self.slots: Dict[int, SlotInfo] = dict(slots or {})

    def add(self, slot: SlotInfo) -> SlotInfo:
        self.slots[slot.slot_id] = slot
        return slot

    def get_slot(self, slot_id: int) -> SlotInfo:
        try:
            return self.slots[slot_id]
        except KeyError:
            raise NotFound("Slot not found")
