from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import SpaceType


class SpaceBase(BaseModel):
    """
    Base schema for space information.

    Shared fields used when creating and reading spaces.
    """
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None)
    type: SpaceType = Field(default=SpaceType.COMMON)
    capacity: int = Field(..., ge=1)
    price_per_hour: float = Field(default=0.0, ge=0)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be empty")
        return v


class SpaceCreate(SpaceBase):
    pass


class SpaceUpdate(BaseModel):
    """
    Schema for partial updates to a space.

    All fields are optional and only provided values will be updated.
    """
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    type: Optional[SpaceType] = None
    capacity: Optional[int] = Field(default=None, ge=1)
    price_per_hour: Optional[float] = Field(default=None, ge=0)


class SpaceRead(SpaceBase):
    """
    Schema returned when reading space data.
    """
    id: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class SlotCreate(BaseModel):
    """
    Schema used by admins to open a new slot on a space.

    The slot's calendar date is taken from start_time. Times carrying
    an offset are stored as naive UTC, like every slot time.
    """
    start_time: datetime
    end_time: datetime
    capacity: Optional[int] = Field(default=None, ge=1)

    @field_validator("start_time", "end_time")
    @classmethod
    def to_naive_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is not None:
            v = v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class SlotRead(BaseModel):
    """
    Schema returned when reading slot data.

    effective_capacity is the seat count bookings are checked against:
    the slot override when present, otherwise the space capacity.
    """
    id: int
    space_id: int
    date: date
    start_time: datetime
    end_time: datetime
    capacity: Optional[int]
    effective_capacity: int
    price_per_hour: float

    model_config = ConfigDict(from_attributes=True)
