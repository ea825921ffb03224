from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, Text, UniqueConstraint

from .database import Base


class Feedback(Base):
    """
    SQLAlchemy model representing a member's rating of a space.

    Attributes
    ----------
    id : int
        Primary key.
    user_id : int
        Identifier of the user who left the feedback.
    space_id : int
        Identifier of the space being rated.
    rating : int
        Numerical rating, constrained to the range 1–5.
    comment : str
        Free-text comment, may be empty.
    created_at : datetime
        Timestamp when the feedback was created.
    updated_at : datetime
        Timestamp of the last edit.
    """
    __tablename__ = "feedback"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    space_id = Column(Integer, index=True, nullable=False)
    rating = Column(Integer, nullable=False)  # 1–5
    comment = Column(Text, nullable=False, default="")

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, nullable=True, onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("user_id", "space_id", name="uq_feedback_user_space"),
    )
