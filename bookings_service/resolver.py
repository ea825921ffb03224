"""
Seat availability and booking admission.

For a slot the resolver computes which seats are free and claims a seat
for a user. The occupancy pre-check is advisory: the partial unique
index on (slot_id, seat_number) over non-cancelled bookings is what
guarantees a seat is never held twice, so two racing attempts resolve
to one booking and one SeatConflict even when both pre-checks saw the
seat free.
"""
import os
from typing import Any, Dict, Optional

from loguru import logger

from .catalog import SlotCatalog
from .errors import InvalidInput, InvalidTransition, NotFound, SeatConflict, StoreUnavailable
from .events import BookingEventStream
from .models import ACTIVE_STATUSES, Booking, BookingStatus, PaymentStatus
from .store import DataStore

BOOKING_WRITE_RETRIES = int(os.getenv("BOOKING_WRITE_RETRIES", "2"))
SERVICE_FEE = float(os.getenv("SERVICE_FEE", "2.0"))

SEAT_KEY = ("slot_id", "seat_number")

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: set(),
    BookingStatus.CANCELLED: set(),
}


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


class BookingResolver:
    """
    Admission control for seat bookings.

    A resolver is built per request from the caller's store session;
    it holds no user or session state of its own.

    Parameters
    ----------
    store : DataStore
        Booking persistence.
    catalog : SlotCatalog
        Source of slot capacity, owning space and price.
    events : Optional[BookingEventStream]
        Change feed notified after successful writes.
    write_retries : int
        How many times an insert that failed with StoreUnavailable is
        retried, each time after re-reading occupancy.
    service_fee : float
        Flat fee added to each booking's amount due.
    """

    def __init__(
        self,
        store: DataStore,
        catalog: SlotCatalog,
        events: Optional[BookingEventStream] = None,
        write_retries: int = BOOKING_WRITE_RETRIES,
        service_fee: float = SERVICE_FEE,
    ):
        self.store = store
        self.catalog = catalog
        self.events = events
        self.write_retries = max(0, write_retries)
        self.service_fee = service_fee

    # ---------- Occupancy ----------

    def compute_occupancy(self, slot_id: int, capacity: int) -> Dict[int, bool]:
        """
        Seat-by-seat availability for a slot.

        Parameters
        ----------
        slot_id : int
            Slot to inspect.
        capacity : int
            Number of seats; the result has exactly this many entries.

        Returns
        -------
        Dict[int, bool]
            Maps every seat number in 1..capacity to True when a pending
            or confirmed booking holds it.

        Raises
        ------
        InvalidInput
            If capacity is not a positive integer.
        """
        if capacity < 1:
            raise InvalidInput("capacity must be a positive integer")

        active = self.store.query(
            Booking,
            {"slot_id": slot_id, "status": ("in", ACTIVE_STATUSES)},
        )
        held = {b.seat_number for b in active}
        return {seat: seat in held for seat in range(1, capacity + 1)}

    def slot_occupancy(self, slot_id: int) -> Dict[int, bool]:
        slot = self.catalog.get_slot(slot_id)
        return self.compute_occupancy(slot_id, slot.capacity)

    # ---------- Booking ----------

    def _own_active_booking(self, slot_id: int, seat_number: int, user_id: int) -> Optional[Booking]:
        rows = self.store.query(
            Booking,
            {
                "slot_id": slot_id,
                "seat_number": seat_number,
                "user_id": user_id,
                "status": ("in", ACTIVE_STATUSES),
            },
        )
        return rows[0] if rows else None

    def attempt_book(
        self,
        slot_id: int,
        seat_number: int,
        user_id: int,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
    ) -> Booking:
        """
        Claim one seat of a slot for a user.

        Steps
        -----
        1. Validate the seat number against the slot capacity.
        2. Re-read occupancy and fail fast if the seat is held.
        3. Insert a pending booking guarded by the unique seat index.
        4. A uniqueness rejection means a concurrent attempt won.

        If the insert fails with StoreUnavailable, occupancy is re-read
        before anything is retried: a seat now held by this user's own
        booking means the earlier write landed, a seat held by someone
        else is a conflict, and a free seat is retried.

        Returns
        -------
        Booking
            The new booking, status pending.

        Raises
        ------
        InvalidInput
            seat_number outside 1..capacity.
        SeatConflict
            The seat is already held.
        NotFound
            The slot does not exist.
        StoreUnavailable
            The store or catalog kept failing.
        """
        if seat_number < 1:
            raise InvalidInput("seat_number must be between 1 and the slot capacity")

        slot = self.catalog.get_slot(slot_id)
        if seat_number > slot.capacity:
            raise InvalidInput(
                f"seat_number must be between 1 and {slot.capacity}"
            )

        row = {
            "user_id": user_id,
            "space_id": slot.space_id,
            "slot_id": slot_id,
            "seat_number": seat_number,
            "status": BookingStatus.PENDING,
            "payment_status": payment_status,
            "amount_due": round(slot.price_per_hour * slot.hours + self.service_fee, 2),
        }

        attempt = 0
        while True:
            occupancy = self.compute_occupancy(slot_id, slot.capacity)
            if occupancy[seat_number]:
                if attempt > 0:
                    landed = self._own_active_booking(slot_id, seat_number, user_id)
                    if landed is not None:
                        logger.info(
                            f"Booking {landed.id} for slot {slot_id} seat {seat_number} "
                            f"was stored by an earlier attempt"
                        )
                        # The timed-out attempt published nothing.
                        self._publish("booking.created", landed)
                        return landed
                logger.info(f"Seat {seat_number} of slot {slot_id} already held (pre-check)")
                raise SeatConflict("Seat just got booked, please select another")

            try:
                result = self.store.insert_if_absent(Booking, row, SEAT_KEY)
            except StoreUnavailable:
                if attempt >= self.write_retries:
                    logger.error(
                        f"Giving up booking slot {slot_id} seat {seat_number} "
                        f"after {attempt + 1} attempts"
                    )
                    raise
                attempt += 1
                logger.warning(
                    f"Insert for slot {slot_id} seat {seat_number} failed, "
                    f"re-checking occupancy (retry {attempt}/{self.write_retries})"
                )
                continue

            if result.conflict:
                logger.info(f"Seat {seat_number} of slot {slot_id} lost to a concurrent booking")
                raise SeatConflict("Seat just got booked, please select another")

            booking = result.row
            logger.info(
                f"Booking {booking.id} created: user {user_id} slot {slot_id} seat {seat_number}"
            )
            self._publish("booking.created", booking)
            return booking

    # ---------- Status transitions ----------

    def transition_status(
        self,
        booking_id: int,
        new_status: BookingStatus,
        patch: Optional[Dict[str, Any]] = None,
    ) -> Booking:
        """
        Move a booking forward in its lifecycle.

        Only pending -> confirmed and pending -> cancelled are allowed;
        confirmed and cancelled are terminal. The update is conditional
        on the status that was read, so of two racing transitions only
        one applies.

        Parameters
        ----------
        booking_id : int
            Booking to change.
        new_status : BookingStatus
            Target status.
        patch : Optional[Dict[str, Any]]
            Extra columns written together with the status
            (e.g. payment_status).

        Returns
        -------
        Booking
            The updated booking.

        Raises
        ------
        NotFound
            Unknown booking.
        InvalidTransition
            Target is not a legal successor of the current status.
        """
        new_status = BookingStatus(new_status)

        booking = self.get_booking(booking_id)
        current = BookingStatus(booking.status)
        if not can_transition(current, new_status):
            raise InvalidTransition(
                f"Cannot change booking from {current.value} to {new_status.value}"
            )

        values = dict(patch or {})
        values["status"] = new_status
        updated = self.store.update_status(
            Booking, booking_id, values, expected={"status": current}
        )
        if updated is None:
            # status changed between our read and the conditional write
            latest = self.get_booking(booking_id)
            raise InvalidTransition(
                f"Cannot change booking from {BookingStatus(latest.status).value} "
                f"to {new_status.value}"
            )

        logger.info(f"Booking {booking_id} moved {current.value} -> {new_status.value}")
        self._publish(f"booking.{new_status.value}", updated)
        return updated

    def get_booking(self, booking_id: int) -> Booking:
        rows = self.store.query(Booking, {"id": booking_id})
        if not rows:
            raise NotFound("Booking not found")
        return rows[0]

    def _publish(self, event_type: str, booking: Booking) -> None:
        if self.events is not None:
            self.events.publish(event_type, booking)
