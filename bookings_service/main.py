import json
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import func
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from common.auth import get_current_user_claims, require_roles
from common.cache import get_async_redis_client, get_redis_client
from common.exception_handlers import register_exception_handlers
from common.logger_config import setup_logging

from . import models, schemas
from .catalog import HttpSlotCatalog, SlotCatalog
from .database import Base, SessionLocal, engine, get_db
from .errors import BookingError
from .events import BookingEventStream, booking_events, slot_channel
from .notifications import NotificationRecorder
from .rate_limiter import booking_rate_limiter
from .resolver import BookingResolver
from .store import SqlAlchemyStore

SERVICE_NAME = "bookings"

setup_logging(SERVICE_NAME)

# Create tables
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Bookings Service", version="1.0.0")
router_v1 = APIRouter(prefix="/api/v1")

register_exception_handlers(app, SERVICE_NAME)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "service": SERVICE_NAME,
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
            "kind": exc.kind,
            "detail": exc.detail,
        },
    )


@app.get("/")
def root():
    """
    Health-check endpoint for the Bookings service.

    Returns
    -------
    dict
        A small JSON payload indicating that the service is running.
    """
    return {"service": "bookings", "status": "running"}


admin_or_service = require_roles("admin", "service_account")

viewer_roles = require_roles("admin", "user", "service_account")

booker_roles = require_roles("admin", "user")


# ---------- Dependencies ----------

_slot_catalog = HttpSlotCatalog()

# Every booking event also lands in the owner's notification inbox.
booking_events.subscribe(NotificationRecorder(SessionLocal))


def get_slot_catalog() -> SlotCatalog:
    return _slot_catalog


def get_event_stream() -> BookingEventStream:
    return booking_events


def get_resolver(
    db: Session = Depends(get_db),
    catalog: SlotCatalog = Depends(get_slot_catalog),
    events: BookingEventStream = Depends(get_event_stream),
) -> BookingResolver:
    """
    Build a resolver bound to this request's database session.
    """
    return BookingResolver(SqlAlchemyStore(db), catalog, events)


def ensure_owner_or_admin(booking: models.Booking, claims: Dict) -> None:
    if claims["role"] == "admin":
        return
    if booking.user_id != claims["user_id"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to access this booking",
        )


# ---------- Occupancy ----------


@router_v1.get("/slots/{slot_id}/occupancy", response_model=schemas.OccupancyRead)
def get_occupancy(
    slot_id: int,
    resolver: BookingResolver = Depends(get_resolver),
    _: Dict = Depends(viewer_roles),
):
    """
    Seat map of a slot.

    Access
    ------
    - Allowed roles: admin, user, service_account.

    Parameters
    ----------
    slot_id : int
        Slot to inspect.
    resolver : BookingResolver
        Request-scoped resolver.

    Returns
    -------
    OccupancyRead
        Every seat of the slot with its held flag and the free-seat count.

    Raises
    ------
    BookingError
        NotFound for an unknown slot, StoreUnavailable if the store or
        the spaces service cannot be reached.
    """
    slot = resolver.catalog.get_slot(slot_id)
    seats = resolver.compute_occupancy(slot_id, slot.capacity)
    return {
        "slot_id": slot_id,
        "capacity": slot.capacity,
        "seats": seats,
        "available": sum(1 for held in seats.values() if not held),
    }


@router_v1.get("/slots/{slot_id}/events")
async def stream_slot_events(
    slot_id: int,
    request: Request,
    _: Dict = Depends(viewer_roles),
):
    """
    Server-Sent Events feed of booking changes for one slot.

    Each event is a JSON booking payload (type, booking_id, seat_number,
    status, ...). Requires Redis; returns 503 when it is not configured.
    """
    if get_redis_client() is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Realtime updates are not available",
        )

    channel = slot_channel(slot_id)
    logger.info(f"SSE client subscribed to {channel}")

    async def event_generator():
        client = get_async_redis_client()
        pubsub = client.pubsub()
        await pubsub.subscribe(channel)
        try:
            while not await request.is_disconnected():
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=15.0)
                if message is None:
                    continue
                payload = json.loads(message["data"])
                yield {"event": payload["type"], "data": json.dumps(payload)}
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            await client.aclose()
            logger.info(f"SSE client left {channel}")

    return EventSourceResponse(event_generator())


# ---------- Create booking ----------


@router_v1.post(
    "/bookings",
    response_model=schemas.BookingRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limiter)],
)
def create_booking(
    booking_in: schemas.BookingCreate,
    resolver: BookingResolver = Depends(get_resolver),
    claims: Dict = Depends(booker_roles),
):
    """
    Claim a seat in a slot for the authenticated user.

    Access
    ------
    - Allowed roles: admin, user.

    Behavior
    --------
    - Seat number must lie within the slot capacity (422 InvalidInput).
    - A seat already held, or lost to a concurrent request, fails with
      409 SeatConflict; the client should refresh the seat map.
    - pay_onsite=true records payment_status 'onsite'; otherwise the
      booking waits for online payment.
    - The booking owner is taken from the JWT claims.

    Returns
    -------
    BookingRead
        The new booking, status 'pending'.
    """
    payment_status = (
        models.PaymentStatus.ONSITE if booking_in.pay_onsite else models.PaymentStatus.PENDING
    )
    return resolver.attempt_book(
        booking_in.slot_id,
        booking_in.seat_number,
        claims["user_id"],
        payment_status=payment_status,
    )


# ---------- My bookings (current user) ----------


@router_v1.get("/bookings/me", response_model=List[schemas.BookingRead])
def list_my_bookings(
    db: Session = Depends(get_db),
    claims: Dict = Depends(booker_roles),
):
    """
    List bookings that belong to the authenticated user, newest first.
    """
    return (
        db.query(models.Booking)
        .filter(models.Booking.user_id == claims["user_id"])
        .order_by(models.Booking.created_at.desc(), models.Booking.id.desc())
        .all()
    )


# ---------- Admin / service: list all bookings ----------


@router_v1.get("/bookings", response_model=List[schemas.BookingRead])
def list_all_bookings(
    slot_id: Optional[int] = Query(default=None, ge=1),
    space_id: Optional[int] = Query(default=None, ge=1),
    user_id: Optional[int] = Query(default=None, ge=1),
    booking_status: Optional[models.BookingStatus] = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    _: Dict = Depends(admin_or_service),
):
    """
    Admin/Service Account: view all bookings with optional filters.

    Parameters
    ----------
    slot_id : Optional[int]
        Only bookings of this slot (admin "view bookings" per slot).
    space_id : Optional[int]
        Only bookings of this space.
    user_id : Optional[int]
        Only bookings of this user.
    booking_status : Optional[BookingStatus]
        Only bookings in this status (query parameter 'status').
    db : Session
        Database session.

    Returns
    -------
    List[BookingRead]
        Matching bookings ordered by slot then seat.
    """
    q = db.query(models.Booking)

    if slot_id is not None:
        q = q.filter(models.Booking.slot_id == slot_id)
    if space_id is not None:
        q = q.filter(models.Booking.space_id == space_id)
    if user_id is not None:
        q = q.filter(models.Booking.user_id == user_id)
    if booking_status is not None:
        q = q.filter(models.Booking.status == booking_status)

    return q.order_by(models.Booking.slot_id, models.Booking.seat_number).all()


@router_v1.get("/bookings/seat-usage", response_model=List[schemas.SeatUsageRead])
def seat_usage(
    space_id: int = Query(..., ge=1),
    db: Session = Depends(get_db),
    _: Dict = Depends(admin_or_service),
):
    """
    Highest held seat per slot of a space.

    Only pending and confirmed bookings count. Slots without active
    bookings are omitted.

    Returns
    -------
    List[SeatUsageRead]
        One entry per slot, ordered by slot id.
    """
    rows = (
        db.query(
            models.Booking.slot_id,
            func.max(models.Booking.seat_number),
            func.count(models.Booking.id),
        )
        .filter(
            models.Booking.space_id == space_id,
            models.Booking.status.in_(models.ACTIVE_STATUSES),
        )
        .group_by(models.Booking.slot_id)
        .order_by(models.Booking.slot_id)
        .all()
    )
    return [
        {"slot_id": slot_id, "max_seat_number": max_seat, "active_bookings": count}
        for slot_id, max_seat, count in rows
    ]


@router_v1.get("/bookings/{booking_id}", response_model=schemas.BookingRead)
def get_booking(
    booking_id: int,
    resolver: BookingResolver = Depends(get_resolver),
    claims: Dict = Depends(viewer_roles),
):
    booking = resolver.get_booking(booking_id)
    if claims["role"] != "service_account":
        ensure_owner_or_admin(booking, claims)
    return booking


# ---------- Status transitions ----------


@router_v1.post(
    "/bookings/{booking_id}/transition",
    response_model=schemas.BookingRead,
    dependencies=[Depends(booking_rate_limiter)],
)
def transition_booking(
    booking_id: int,
    body: schemas.BookingTransition,
    resolver: BookingResolver = Depends(get_resolver),
    claims: Dict = Depends(booker_roles),
):
    """
    Move a booking to 'confirmed' or 'cancelled'.

    Access
    ------
    - Admin: any legal transition. Confirming an onsite booking marks
      it paid.
    - Owner: may only cancel their own booking.

    Raises
    ------
    HTTPException
        403 if the caller may not perform this change.
    BookingError
        404 NotFound, or 409 InvalidTransition when the booking is
        already confirmed/cancelled or the target is not allowed.
    """
    booking = resolver.get_booking(booking_id)
    ensure_owner_or_admin(booking, claims)

    if claims["role"] != "admin" and body.status != models.BookingStatus.CANCELLED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only an admin can confirm a booking; pay online instead",
        )

    patch = None
    if (
        body.status == models.BookingStatus.CONFIRMED
        and booking.payment_status == models.PaymentStatus.ONSITE
    ):
        patch = {"payment_status": models.PaymentStatus.PAID}

    return resolver.transition_status(booking_id, body.status, patch=patch)


@router_v1.post(
    "/bookings/{booking_id}/pay",
    response_model=schemas.BookingRead,
    dependencies=[Depends(booking_rate_limiter)],
)
def pay_booking(
    booking_id: int,
    resolver: BookingResolver = Depends(get_resolver),
    claims: Dict = Depends(get_current_user_claims),
):
    """
    Record a successful online payment and confirm the booking.

    The payment itself happens at the external provider; this endpoint
    is what the provider redirect lands on.

    Raises
    ------
    HTTPException
        403 if the caller does not own the booking, 400 if the booking
        is set to be paid onsite or is already paid.
    BookingError
        409 InvalidTransition if the booking is no longer pending.
    """
    booking = resolver.get_booking(booking_id)
    if booking.user_id != claims["user_id"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to pay for this booking",
        )
    if booking.payment_status != models.PaymentStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Booking payment is already {booking.payment_status.value}",
        )

    return resolver.transition_status(
        booking_id,
        models.BookingStatus.CONFIRMED,
        patch={"payment_status": models.PaymentStatus.PAID},
    )


# ---------- Notifications (current user) ----------


def get_own_notification_or_404(db: Session, notification_id: int, claims: Dict) -> models.Notification:
    notification = (
        db.query(models.Notification)
        .filter(models.Notification.id == notification_id)
        .first()
    )
    # someone else's notification is reported as missing
    if not notification or notification.user_id != claims["user_id"]:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        )
    return notification


@router_v1.get("/notifications/me", response_model=List[schemas.NotificationRead])
def list_my_notifications(
    unread_only: bool = False,
    db: Session = Depends(get_db),
    claims: Dict = Depends(booker_roles),
):
    """
    List the authenticated user's notifications, newest first.

    Parameters
    ----------
    unread_only : bool
        If True, leave out notifications already marked as read.
    """
    q = db.query(models.Notification).filter(models.Notification.user_id == claims["user_id"])
    if unread_only:
        q = q.filter(models.Notification.is_read.is_(False))
    return q.order_by(models.Notification.created_at.desc(), models.Notification.id.desc()).all()


@router_v1.put("/notifications/{notification_id}/read", response_model=schemas.NotificationRead)
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    claims: Dict = Depends(booker_roles),
):
    notification = get_own_notification_or_404(db, notification_id, claims)
    notification.is_read = True
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


@router_v1.delete("/notifications/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def dismiss_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    claims: Dict = Depends(booker_roles),
):
    """
    Dismiss (delete) one of the authenticated user's notifications.
    """
    notification = get_own_notification_or_404(db, notification_id, claims)
    db.delete(notification)
    db.commit()
    return


app.include_router(router_v1)
