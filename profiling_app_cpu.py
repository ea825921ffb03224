import cProfile
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
from jose import jwt

from bookings_service.catalog import SlotInfo, StaticSlotCatalog
from bookings_service.database import Base, engine
from bookings_service.main import app, get_slot_catalog
from common.auth import ALGORITHM, SECRET_KEY

client = TestClient(app)

SLOTS = 10
SEATS_PER_SLOT = 30

catalog = StaticSlotCatalog()


def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def auth_headers(user_id: int) -> dict:
    token = jwt.encode(
        {
            "sub": f"user{user_id}",
            "role": "user",
            "user_id": user_id,
            "exp": datetime.now(timezone.utc) + timedelta(minutes=30),
        },
        SECRET_KEY,
        algorithm=ALGORITHM,
    )
    return {"Authorization": f"Bearer {token}"}


def scenario_bookings():
    """
    Fill every seat of every slot, with a second user racing for each
    seat, and read the seat map after each booking.
    """
    start = datetime(2030, 1, 1, 9, 0)
    for slot_id in range(1, SLOTS + 1):
        catalog.add(
            SlotInfo(
                slot_id=slot_id,
                space_id=1,
                capacity=SEATS_PER_SLOT,
                start_time=start,
                end_time=start + timedelta(hours=2),
                price_per_hour=5.0,
            )
        )

    for slot_id in range(1, SLOTS + 1):
        for seat in range(1, SEATS_PER_SLOT + 1):
            body = {"slot_id": slot_id, "seat_number": seat}
            first = client.post("/api/v1/bookings", json=body, headers=auth_headers(seat))
            if first.status_code != 201:
                raise RuntimeError(f"Unexpected status on booking: {first.status_code}")

            second = client.post("/api/v1/bookings", json=body, headers=auth_headers(seat + 1000))
            if second.status_code != 409:
                raise RuntimeError(f"Expected a seat conflict, got {second.status_code}")

            client.get(
                f"/api/v1/slots/{slot_id}/occupancy", headers=auth_headers(seat)
            ).raise_for_status()


def main():
    app.dependency_overrides[get_slot_catalog] = lambda: catalog
    reset_db()
    scenario_bookings()


if __name__ == "__main__":
    # run cProfile and sort by cumulative time
    cProfile.run("main()", sort="cumtime")
