from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, status
from loguru import logger
from sqlalchemy.orm import Session

from common.auth import require_roles
from common.cache import delete_prefix, get_cached_json, set_cached_json
from common.exception_handlers import register_exception_handlers
from common.logger_config import setup_logging

from . import models, schemas
from .bookings_client import get_max_held_seats
from .database import Base, engine, get_db

SERVICE_NAME = "spaces"

setup_logging(SERVICE_NAME)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Spaces Service", version="1.0.0")
router_v1 = APIRouter(prefix="/api/v1")

register_exception_handlers(app, SERVICE_NAME)


@app.get("/")
def root():
    """
    Health-check endpoint for the Spaces service.

    Returns
    -------
    dict
        A small JSON payload indicating that the service is running.
    """
    return {"service": "spaces", "status": "running"}


admin_only = require_roles("admin")

viewer_roles = require_roles(
    "admin",
    "user",
    "service_account",  # bookings service resolves slot capacity through us
)


def get_space_or_404(db: Session, space_id: int) -> models.Space:
    space = db.query(models.Space).filter(models.Space.id == space_id).first()
    if not space or not space.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Space not found")
    return space


def ensure_unique_name(db: Session, name: str, ignore_space_id: Optional[int] = None) -> None:
    q = db.query(models.Space).filter(models.Space.name == name)
    if ignore_space_id is not None:
        q = q.filter(models.Space.id != ignore_space_id)
    if db.query(q.exists()).scalar():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Space with this name already exists",
        )


def ensure_held_seats_fit(space: models.Space, new_capacity: int) -> None:
    """
    Refuse to shrink a space below a seat that an active booking holds.

    Only slots without a capacity override follow the space capacity,
    so only those are checked.

    Raises
    ------
    HTTPException
        400 if an active booking would end up outside its slot's seat
        range, 503 if the bookings service cannot be asked.
    """
    if new_capacity >= space.capacity:
        return
    following = {s.id for s in space.slots if s.capacity is None}
    if not following:
        return

    held = get_max_held_seats(space.id)
    for slot_id in sorted(following):
        max_seat = held.get(slot_id, 0)
        if max_seat > new_capacity:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=(
                    f"capacity cannot be lower than {max_seat}: "
                    f"seat {max_seat} of slot {slot_id} is booked"
                ),
            )


# ---------- Create space ----------


@router_v1.post("/spaces", response_model=schemas.SpaceRead, status_code=status.HTTP_201_CREATED)
def create_space(
    space_in: schemas.SpaceCreate,
    db: Session = Depends(get_db),
    _: Dict = Depends(admin_only),
):
    """
    Create a new coworking space.

    Access
    ------
    - Allowed roles: admin.

    Parameters
    ----------
    space_in : SpaceCreate
        New space details.
    db : Session
        Database session.

    Returns
    -------
    SpaceRead
        The created space.

    Raises
    ------
    HTTPException
        If a space with the same name already exists.
    """
    ensure_unique_name(db, space_in.name)

    space = models.Space(**space_in.model_dump())
    db.add(space)
    db.commit()
    db.refresh(space)
    delete_prefix("spaces:")
    logger.info(f"Space {space.id} '{space.name}' created with {space.capacity} seats")
    return space


# ---------- List / get spaces ----------


@router_v1.get("/spaces", response_model=List[schemas.SpaceRead])
def list_spaces(
    type: Optional[models.SpaceType] = None,
    db: Session = Depends(get_db),
):
    """
    List active spaces, optionally filtered by type.

    This endpoint is public so the landing page can show spaces
    before sign-in. Results are cached per type filter.

    Parameters
    ----------
    type : Optional[SpaceType]
        Only return spaces of this kind.
    db : Session
        Database session.

    Returns
    -------
    List[SpaceRead]
        Active spaces ordered by name.
    """
    cache_key = f"spaces:list:{type.value if type else 'all'}"
    cached = get_cached_json(cache_key)
    if cached is not None:
        return cached

    query = db.query(models.Space).filter(models.Space.is_active.is_(True))
    if type is not None:
        query = query.filter(models.Space.type == type)
    spaces = query.order_by(models.Space.name).all()

    data = [schemas.SpaceRead.model_validate(s).model_dump(mode="json") for s in spaces]
    set_cached_json(cache_key, data, ttl_seconds=60)
    return data


@router_v1.get("/spaces/{space_id}", response_model=schemas.SpaceRead)
def get_space(space_id: int, db: Session = Depends(get_db)):
    cache_key = f"spaces:item:{space_id}"
    cached = get_cached_json(cache_key)
    if cached is not None:
        return cached
    space = get_space_or_404(db, space_id)
    data = schemas.SpaceRead.model_validate(space).model_dump(mode="json")
    set_cached_json(cache_key, data, ttl_seconds=300)
    return data


# ---------- Update / delete spaces (admin) ----------


@router_v1.put("/spaces/{space_id}", response_model=schemas.SpaceRead)
def update_space(
    space_id: int,
    update_data: schemas.SpaceUpdate,
    db: Session = Depends(get_db),
    _: Dict = Depends(admin_only),
):
    """
    Update an existing space.

    Behavior
    --------
    - Applies only the fields provided.
    - Keeps the name unique.
    - Refuses to shrink capacity below an existing slot override.
    - Refuses to shrink capacity below a seat still held by an active
      booking in a slot that follows the space capacity.

    Raises
    ------
    HTTPException
        400 if the new name conflicts or the new capacity is too small,
        404 if the space is missing, 503 if held seats cannot be checked.
    """
    space = get_space_or_404(db, space_id)
    changes = update_data.model_dump(exclude_unset=True, exclude_none=True)

    if "name" in changes and changes["name"] != space.name:
        ensure_unique_name(db, changes["name"], ignore_space_id=space.id)

    if "capacity" in changes:
        largest_override = max(
            (s.capacity for s in space.slots if s.capacity is not None), default=0
        )
        if changes["capacity"] < largest_override:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="capacity cannot be lower than an existing slot capacity",
            )
        ensure_held_seats_fit(space, changes["capacity"])

    for field, value in changes.items():
        setattr(space, field, value)

    db.add(space)
    db.commit()
    db.refresh(space)
    delete_prefix("spaces:")
    return space


@router_v1.delete("/spaces/{space_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_space(
    space_id: int,
    db: Session = Depends(get_db),
    _: Dict = Depends(admin_only),
):
    """
    Soft-delete a space by marking it inactive.
    """
    space = get_space_or_404(db, space_id)
    space.is_active = False
    db.add(space)
    db.commit()
    delete_prefix("spaces:")
    return


# ---------- Slots ----------


@router_v1.post(
    "/spaces/{space_id}/slots",
    response_model=schemas.SlotRead,
    status_code=status.HTTP_201_CREATED,
)
def create_slot(
    space_id: int,
    slot_in: schemas.SlotCreate,
    db: Session = Depends(get_db),
    _: Dict = Depends(admin_only),
):
    """
    Open a new bookable time slot on a space.

    Access
    ------
    - Allowed roles: admin.

    Behavior
    --------
    - end_time must be strictly after start_time.
    - The slot date is derived from start_time.
    - A capacity override must stay within 1..space.capacity.
    - The same (space, start, end) window cannot be opened twice.

    Raises
    ------
    HTTPException
        400 on an invalid window, override or duplicate; 404 if the
        space does not exist.
    """
    space = get_space_or_404(db, space_id)

    if slot_in.end_time <= slot_in.start_time:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end_time must be after start_time",
        )

    if slot_in.capacity is not None and slot_in.capacity > space.capacity:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Slot capacity cannot exceed the space capacity",
        )

    duplicate = (
        db.query(models.Slot)
        .filter(
            models.Slot.space_id == space.id,
            models.Slot.start_time == slot_in.start_time,
            models.Slot.end_time == slot_in.end_time,
        )
        .first()
    )
    if duplicate:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A slot with this time window already exists",
        )

    slot = models.Slot(
        space_id=space.id,
        date=slot_in.start_time.date(),
        start_time=slot_in.start_time,
        end_time=slot_in.end_time,
        capacity=slot_in.capacity,
    )
    db.add(slot)
    db.commit()
    db.refresh(slot)
    logger.info(f"Slot {slot.id} opened on space {space.id} for {slot.date}")
    return slot


@router_v1.get("/spaces/{space_id}/slots", response_model=List[schemas.SlotRead])
def list_space_slots(
    space_id: int,
    on_date: Optional[date] = Query(default=None, alias="date"),
    from_date: Optional[date] = None,
    db: Session = Depends(get_db),
    _: Dict = Depends(viewer_roles),
):
    """
    List the slots of a space ordered by start time.

    Parameters
    ----------
    space_id : int
        Space whose slots are listed.
    on_date : Optional[date]
        Only slots on this calendar day (query parameter 'date').
    from_date : Optional[date]
        Only slots on or after this day (e.g. today for "upcoming").
    db : Session
        Database session.

    Returns
    -------
    List[SlotRead]
        Matching slots.
    """
    get_space_or_404(db, space_id)

    query = db.query(models.Slot).filter(models.Slot.space_id == space_id)
    if on_date is not None:
        query = query.filter(models.Slot.date == on_date)
    if from_date is not None:
        query = query.filter(models.Slot.date >= from_date)
    return query.order_by(models.Slot.start_time).all()


@router_v1.get("/slots/{slot_id}", response_model=schemas.SlotRead)
def get_slot(
    slot_id: int,
    db: Session = Depends(get_db),
    _: Dict = Depends(viewer_roles),
):
    """
    Retrieve one slot with its effective capacity and hourly price.

    The bookings service calls this with a service-account token to
    learn how many seats a slot has before computing occupancy.
    """
    slot = db.query(models.Slot).filter(models.Slot.id == slot_id).first()
    if not slot or not slot.space.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Slot not found")
    return slot


@router_v1.delete("/slots/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_slot(
    slot_id: int,
    db: Session = Depends(get_db),
    _: Dict = Depends(admin_only),
):
    slot = db.query(models.Slot).filter(models.Slot.id == slot_id).first()
    if not slot:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Slot not found")
    db.delete(slot)
    db.commit()
    logger.info(f"Slot {slot_id} deleted")
    return


app.include_router(router_v1)
