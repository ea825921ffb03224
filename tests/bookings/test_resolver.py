import os
import sys
import threading
from datetime import datetime
from types import SimpleNamespace

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from bookings_service import models
from bookings_service.catalog import SlotInfo, StaticSlotCatalog
from bookings_service.database import Base, SessionLocal, engine
from bookings_service.errors import (
    InvalidInput,
    InvalidTransition,
    NotFound,
    SeatConflict,
    StoreUnavailable,
)
from bookings_service.events import BookingEventStream
from bookings_service.models import Booking, BookingStatus, PaymentStatus
from bookings_service.resolver import BookingResolver, can_transition
from bookings_service.store import SqlAlchemyStore

SLOT = SlotInfo(
    slot_id=1,
    space_id=10,
    capacity=4,
    start_time=datetime(2030, 1, 1, 9, 0),
    end_time=datetime(2030, 1, 1, 11, 0),
    price_per_hour=10.0,
)


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def sessions():
    opened = []

    def open_session():
        db = SessionLocal()
        opened.append(db)
        return db

    yield open_session
    for db in opened:
        db.close()


@pytest.fixture
def catalog():
    return StaticSlotCatalog({SLOT.slot_id: SLOT})


@pytest.fixture
def events():
    return BookingEventStream(redis_client_factory=lambda: None)


def make_resolver(db, catalog, events=None, store=None, **kwargs):
    return BookingResolver(store or SqlAlchemyStore(db), catalog, events, **kwargs)


def active_rows(db, slot_id=SLOT.slot_id, seat_number=None):
    q = db.query(Booking).filter(
        Booking.slot_id == slot_id,
        Booking.status != BookingStatus.CANCELLED,
    )
    if seat_number is not None:
        q = q.filter(Booking.seat_number == seat_number)
    return q.all()


class BlindPrecheckStore:
    """Delegates writes but reports every seat as free, like a stale read."""

    def __init__(self, inner):
        self.inner = inner

    def query(self, table, filters, ordering=None):
        return []

    def insert_if_absent(self, table, row, unique_key_columns):
        return self.inner.insert_if_absent(table, row, unique_key_columns)

    def update_status(self, table, row_id, patch, expected=None):
        return self.inner.update_status(table, row_id, patch, expected)


class LandedThenTimeoutStore:
    """The first insert is stored but the caller only sees a failure."""

    def __init__(self, inner):
        self.inner = inner
        self.insert_calls = 0

    def query(self, table, filters, ordering=None):
        return self.inner.query(table, filters, ordering)

    def insert_if_absent(self, table, row, unique_key_columns):
        self.insert_calls += 1
        result = self.inner.insert_if_absent(table, row, unique_key_columns)
        if self.insert_calls == 1:
            raise StoreUnavailable("timeout")
        return result

    def update_status(self, table, row_id, patch, expected=None):
        return self.inner.update_status(table, row_id, patch, expected)


class DownStore:
    def __init__(self, inner):
        self.inner = inner
        self.insert_calls = 0

    def query(self, table, filters, ordering=None):
        return self.inner.query(table, filters, ordering)

    def insert_if_absent(self, table, row, unique_key_columns):
        self.insert_calls += 1
        raise StoreUnavailable("down")

    def update_status(self, table, row_id, patch, expected=None):
        return self.inner.update_status(table, row_id, patch, expected)


# ---------- Occupancy ----------


def test_occupancy_has_one_entry_per_seat(sessions, catalog):
    resolver = make_resolver(sessions(), catalog)

    seats = resolver.compute_occupancy(SLOT.slot_id, SLOT.capacity)

    assert sorted(seats) == [1, 2, 3, 4]
    assert not any(seats.values())


def test_occupancy_rejects_non_positive_capacity(sessions, catalog):
    resolver = make_resolver(sessions(), catalog)

    with pytest.raises(InvalidInput):
        resolver.compute_occupancy(SLOT.slot_id, 0)


def test_occupancy_marks_pending_and_confirmed_but_not_cancelled(sessions, catalog):
    resolver = make_resolver(sessions(), catalog)

    b1 = resolver.attempt_book(SLOT.slot_id, 1, user_id=1)
    b2 = resolver.attempt_book(SLOT.slot_id, 2, user_id=2)
    b3 = resolver.attempt_book(SLOT.slot_id, 3, user_id=3)
    resolver.transition_status(b2.id, BookingStatus.CONFIRMED)
    resolver.transition_status(b3.id, BookingStatus.CANCELLED)

    seats = resolver.slot_occupancy(SLOT.slot_id)

    assert seats == {1: True, 2: True, 3: False, 4: False}
    assert b1.status == BookingStatus.PENDING


# ---------- Booking ----------


def test_attempt_book_creates_pending_booking_with_amount_due(sessions, catalog):
    resolver = make_resolver(sessions(), catalog)

    booking = resolver.attempt_book(SLOT.slot_id, 2, user_id=7)

    assert booking.id is not None
    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == PaymentStatus.PENDING
    assert booking.space_id == SLOT.space_id
    assert booking.seat_number == 2
    # 2 hours at 10.0 plus the 2.0 service fee
    assert booking.amount_due == pytest.approx(22.0)
    assert resolver.compute_occupancy(SLOT.slot_id, SLOT.capacity) == {
        1: False,
        2: True,
        3: False,
        4: False,
    }


def test_occupancy_is_stable_without_writes(sessions, catalog):
    resolver = make_resolver(sessions(), catalog)
    resolver.attempt_book(SLOT.slot_id, 3, user_id=1)

    first = resolver.compute_occupancy(SLOT.slot_id, SLOT.capacity)
    second = resolver.compute_occupancy(SLOT.slot_id, SLOT.capacity)

    assert first == second


def test_attempt_book_records_onsite_payment(sessions, catalog):
    resolver = make_resolver(sessions(), catalog)

    booking = resolver.attempt_book(
        SLOT.slot_id, 1, user_id=7, payment_status=PaymentStatus.ONSITE
    )

    assert booking.payment_status == PaymentStatus.ONSITE


@pytest.mark.parametrize("seat", [0, -1, 5])
def test_attempt_book_rejects_seat_outside_capacity(sessions, catalog, seat):
    db = sessions()
    resolver = make_resolver(db, catalog)

    with pytest.raises(InvalidInput):
        resolver.attempt_book(SLOT.slot_id, seat, user_id=1)

    assert db.query(Booking).count() == 0


def test_attempt_book_unknown_slot_is_not_found(sessions, catalog):
    resolver = make_resolver(sessions(), catalog)

    with pytest.raises(NotFound):
        resolver.attempt_book(999, 1, user_id=1)


def test_second_booking_on_held_seat_conflicts(sessions, catalog):
    db = sessions()
    resolver = make_resolver(db, catalog)
    resolver.attempt_book(SLOT.slot_id, 3, user_id=1)

    with pytest.raises(SeatConflict):
        resolver.attempt_book(SLOT.slot_id, 3, user_id=2)

    assert len(active_rows(db, seat_number=3)) == 1


def test_same_user_may_hold_several_seats(sessions, catalog):
    db = sessions()
    resolver = make_resolver(db, catalog)

    resolver.attempt_book(SLOT.slot_id, 1, user_id=1)
    resolver.attempt_book(SLOT.slot_id, 2, user_id=1)

    assert len(active_rows(db)) == 2


def test_cancelled_seat_can_be_booked_again(sessions, catalog):
    db = sessions()
    resolver = make_resolver(db, catalog)
    first = resolver.attempt_book(SLOT.slot_id, 1, user_id=1)
    resolver.transition_status(first.id, BookingStatus.CANCELLED)

    second = resolver.attempt_book(SLOT.slot_id, 1, user_id=2)

    assert second.id != first.id
    assert [b.id for b in active_rows(db, seat_number=1)] == [second.id]


def test_stale_precheck_still_admits_only_one_booking(sessions, catalog):
    db_a, db_b = sessions(), sessions()
    resolver_a = make_resolver(db_a, catalog, store=BlindPrecheckStore(SqlAlchemyStore(db_a)))
    resolver_b = make_resolver(db_b, catalog, store=BlindPrecheckStore(SqlAlchemyStore(db_b)))

    winner = resolver_a.attempt_book(SLOT.slot_id, 4, user_id=1)
    with pytest.raises(SeatConflict):
        resolver_b.attempt_book(SLOT.slot_id, 4, user_id=2)

    rows = active_rows(sessions(), seat_number=4)
    assert [b.id for b in rows] == [winner.id]


def test_concurrent_attempts_on_one_seat_yield_single_winner(catalog):
    attempts = 5
    barrier = threading.Barrier(attempts)
    outcomes = []
    lock = threading.Lock()

    def worker(user_id):
        db = SessionLocal()
        try:
            resolver = make_resolver(db, catalog)
            barrier.wait()
            try:
                booking = resolver.attempt_book(SLOT.slot_id, 1, user_id=user_id)
                result = ("booked", booking.id)
            except SeatConflict:
                result = ("conflict", None)
            with lock:
                outcomes.append(result)
        finally:
            db.close()

    threads = [threading.Thread(target=worker, args=(uid,)) for uid in range(1, attempts + 1)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(outcomes) == attempts
    assert sum(1 for kind, _ in outcomes if kind == "booked") == 1
    assert sum(1 for kind, _ in outcomes if kind == "conflict") == attempts - 1

    db = SessionLocal()
    try:
        assert len(active_rows(db, seat_number=1)) == 1
    finally:
        db.close()


def test_write_that_landed_before_timeout_is_not_duplicated(sessions, catalog):
    db = sessions()
    store = LandedThenTimeoutStore(SqlAlchemyStore(db))
    resolver = make_resolver(db, catalog, store=store, write_retries=2)

    booking = resolver.attempt_book(SLOT.slot_id, 2, user_id=5)

    assert store.insert_calls == 1
    assert booking.user_id == 5
    assert len(active_rows(db, seat_number=2)) == 1


def test_write_that_landed_before_timeout_publishes_one_created_event(sessions, catalog, events):
    db = sessions()
    store = LandedThenTimeoutStore(SqlAlchemyStore(db))
    resolver = make_resolver(db, catalog, events, store=store, write_retries=2)
    received = []
    events.subscribe(received.append)

    booking = resolver.attempt_book(SLOT.slot_id, 2, user_id=5)

    assert [(e["type"], e["booking_id"]) for e in received] == [("booking.created", booking.id)]


def test_retry_sees_seat_taken_by_someone_else(sessions, catalog):
    db_a, db_b = sessions(), sessions()
    rival = make_resolver(db_b, catalog)

    class RivalWinsDuringOutage(DownStore):
        def insert_if_absent(self, table, row, unique_key_columns):
            self.insert_calls += 1
            rival.attempt_book(SLOT.slot_id, 2, user_id=99)
            raise StoreUnavailable("timeout")

    store = RivalWinsDuringOutage(SqlAlchemyStore(db_a))
    resolver = make_resolver(db_a, catalog, store=store, write_retries=2)

    with pytest.raises(SeatConflict):
        resolver.attempt_book(SLOT.slot_id, 2, user_id=5)

    assert store.insert_calls == 1
    assert [b.user_id for b in active_rows(db_a, seat_number=2)] == [99]


def test_store_outage_gives_up_after_configured_retries(sessions, catalog):
    db = sessions()
    store = DownStore(SqlAlchemyStore(db))
    resolver = make_resolver(db, catalog, store=store, write_retries=2)

    with pytest.raises(StoreUnavailable):
        resolver.attempt_book(SLOT.slot_id, 1, user_id=1)

    assert store.insert_calls == 3
    assert db.query(Booking).count() == 0


# ---------- Status transitions ----------


def test_transition_table():
    assert can_transition(BookingStatus.PENDING, BookingStatus.CONFIRMED)
    assert can_transition(BookingStatus.PENDING, BookingStatus.CANCELLED)
    assert not can_transition(BookingStatus.PENDING, BookingStatus.PENDING)
    for terminal in (BookingStatus.CONFIRMED, BookingStatus.CANCELLED):
        for target in BookingStatus:
            assert not can_transition(terminal, target)


def test_confirm_then_cancel_is_rejected(sessions, catalog):
    resolver = make_resolver(sessions(), catalog)
    booking = resolver.attempt_book(SLOT.slot_id, 1, user_id=1)

    confirmed = resolver.transition_status(
        booking.id, BookingStatus.CONFIRMED, patch={"payment_status": PaymentStatus.PAID}
    )
    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.payment_status == PaymentStatus.PAID

    with pytest.raises(InvalidTransition):
        resolver.transition_status(booking.id, BookingStatus.CANCELLED)


def test_cancelled_booking_is_terminal(sessions, catalog):
    resolver = make_resolver(sessions(), catalog)
    booking = resolver.attempt_book(SLOT.slot_id, 1, user_id=1)
    resolver.transition_status(booking.id, BookingStatus.CANCELLED)

    with pytest.raises(InvalidTransition):
        resolver.transition_status(booking.id, BookingStatus.CONFIRMED)
    with pytest.raises(InvalidTransition):
        resolver.transition_status(booking.id, BookingStatus.PENDING)


def test_transition_unknown_booking_is_not_found(sessions, catalog):
    resolver = make_resolver(sessions(), catalog)

    with pytest.raises(NotFound):
        resolver.transition_status(12345, BookingStatus.CONFIRMED)


def test_transition_based_on_stale_read_is_rejected(sessions, catalog):
    db = sessions()
    resolver = make_resolver(db, catalog)
    booking_id = resolver.attempt_book(SLOT.slot_id, 1, user_id=1).id
    resolver.transition_status(booking_id, BookingStatus.CANCELLED)

    class StaleReadStore:
        def __init__(self, inner):
            self.inner = inner
            self.served_stale = False

        def query(self, table, filters, ordering=None):
            if not self.served_stale and filters == {"id": booking_id}:
                self.served_stale = True
                return [SimpleNamespace(id=booking_id, status=BookingStatus.PENDING)]
            return self.inner.query(table, filters, ordering)

        def insert_if_absent(self, table, row, unique_key_columns):
            return self.inner.insert_if_absent(table, row, unique_key_columns)

        def update_status(self, table, row_id, patch, expected=None):
            return self.inner.update_status(table, row_id, patch, expected)

    racer = make_resolver(db, catalog, store=StaleReadStore(SqlAlchemyStore(db)))

    with pytest.raises(InvalidTransition):
        racer.transition_status(booking_id, BookingStatus.CONFIRMED)

    db.expire_all()
    assert db.get(Booking, booking_id).status == BookingStatus.CANCELLED


# ---------- Store boundary ----------


def test_store_drops_unknown_fields_on_insert(sessions):
    store = SqlAlchemyStore(sessions())

    result = store.insert_if_absent(
        Booking,
        {
            "user_id": 1,
            "space_id": 1,
            "slot_id": 1,
            "seat_number": 1,
            "amount_due": 5.0,
            "not_a_column": "ignored",
        },
        ("slot_id", "seat_number"),
    )

    assert result.success
    assert result.row.status == BookingStatus.PENDING


def test_store_query_supports_operators_and_ordering(sessions, catalog):
    db = sessions()
    resolver = make_resolver(db, catalog)
    for seat in (3, 1, 2):
        resolver.attempt_book(SLOT.slot_id, seat, user_id=seat)

    store = SqlAlchemyStore(db)
    rows = store.query(
        models.Booking,
        {"slot_id": SLOT.slot_id, "seat_number": ("gte", 2)},
        ordering=[("seat_number", "desc")],
    )

    assert [b.seat_number for b in rows] == [3, 2]


def test_update_status_returns_none_for_missing_row(sessions):
    store = SqlAlchemyStore(sessions())

    assert store.update_status(Booking, 404, {"status": BookingStatus.CANCELLED}) is None


# ---------- Events ----------


def test_events_follow_booking_lifecycle(sessions, catalog, events):
    received = []
    unsubscribe = events.subscribe(received.append)
    resolver = make_resolver(sessions(), catalog, events)

    booking = resolver.attempt_book(SLOT.slot_id, 2, user_id=3)
    resolver.transition_status(booking.id, BookingStatus.CONFIRMED)
    unsubscribe()
    resolver.attempt_book(SLOT.slot_id, 3, user_id=3)

    assert [e["type"] for e in received] == ["booking.created", "booking.confirmed"]
    assert received[0]["seat_number"] == 2
    assert received[0]["status"] == "pending"
    assert received[1]["status"] == "confirmed"


def test_failing_listener_does_not_break_booking(sessions, catalog, events):
    def broken_listener(payload):
        raise RuntimeError("listener bug")

    events.subscribe(broken_listener)
    resolver = make_resolver(sessions(), catalog, events)

    booking = resolver.attempt_book(SLOT.slot_id, 1, user_id=1)

    assert booking.id is not None


def test_conflict_publishes_nothing(sessions, catalog, events):
    received = []
    resolver = make_resolver(sessions(), catalog, events)
    resolver.attempt_book(SLOT.slot_id, 1, user_id=1)
    events.subscribe(received.append)

    with pytest.raises(SeatConflict):
        resolver.attempt_book(SLOT.slot_id, 1, user_id=2)

    assert received == []
