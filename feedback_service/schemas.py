from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FeedbackBase(BaseModel):
    """
    Base schema for feedback content.

    Includes the rated space, the rating and an optional comment.
    """
    space_id: int = Field(..., ge=1)
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(default="", max_length=1000)

    @field_validator("comment")
    @classmethod
    def strip_comment(cls, v: str) -> str:
        return v.strip()


class FeedbackCreate(FeedbackBase):
    pass


class FeedbackUpdate(BaseModel):
    """
    Schema for partially updating existing feedback.

    All fields are optional; when present they are validated in the
    same way as on creation.
    """
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("comment")
    @classmethod
    def strip_comment(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else v


class FeedbackRead(FeedbackBase):
    """
    Schema returned when reading feedback.
    """
    id: int
    user_id: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SpaceRatingSummary(BaseModel):
    """
    Aggregate rating for one space.

    Attributes
    ----------
    space_id : int
        The rated space.
    count : int
        Number of feedback entries.
    average_rating : float, optional
        Mean rating rounded to two decimals, None when unrated.
    """
    space_id: int
    count: int
    average_rating: Optional[float] = None
