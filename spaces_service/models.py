from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SpaceType(str, PyEnum):
    """
    Kind of shared workspace.

    Values
    ------
    cubicle
        Individual desk area.
    meeting
        Bookable meeting room.
    common
        Open common area with shared seating.
    """
    CUBICLE = "cubicle"
    MEETING = "meeting"
    COMMON = "common"


class Space(Base):
    """
    SQLAlchemy model representing a bookable coworking space.

    Attributes
    ----------
    id : int
        Primary key.
    name : str
        Human-readable, unique space name (e.g. 'Quiet Cubicles').
    description : str
        Optional free-text description shown to users.
    type : SpaceType
        Kind of space (cubicle, meeting, common).
    capacity : int
        Number of seats; seats are numbered 1..capacity.
    price_per_hour : float
        Hourly price charged per seat.
    is_active : bool
        Soft-delete flag; inactive spaces are hidden from listings.
    created_at : datetime
        Timestamp recording when the space was created.
    """
    __tablename__ = "spaces"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    type = Column(Enum(SpaceType), nullable=False, default=SpaceType.COMMON)
    capacity = Column(Integer, nullable=False)
    price_per_hour = Column(Float, nullable=False, default=0.0)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    slots = relationship("Slot", back_populates="space", cascade="all, delete-orphan")


class Slot(Base):
    """
    SQLAlchemy model representing a bookable time window of a space.

    Attributes
    ----------
    id : int
        Primary key.
    space_id : int
        Owning space.
    date : date
        Calendar day of the slot, derived from start_time.
    start_time : datetime
        Start of the window.
    end_time : datetime
        End of the window.
    capacity : int
        Optional seat-count override; when NULL the space capacity applies.
    created_at : datetime
        Timestamp recording when the slot was created.
    """
    __tablename__ = "slots"

    id = Column(Integer, primary_key=True, index=True)
    space_id = Column(Integer, ForeignKey("spaces.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    capacity = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    space = relationship("Space", back_populates="slots")

    __table_args__ = (
        # Prevent duplicate slot times for the same space
        UniqueConstraint("space_id", "start_time", "end_time", name="uq_space_timeslot"),
    )

    @property
    def effective_capacity(self) -> int:
        return self.capacity if self.capacity is not None else self.space.capacity

    @property
    def price_per_hour(self) -> float:
        return self.space.price_per_hour
