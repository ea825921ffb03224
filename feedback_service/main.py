from typing import Dict, List

from fastapi import APIRouter, Depends, FastAPI, HTTPException, status
from loguru import logger
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from common.auth import get_current_user_claims, require_roles
from common.exception_handlers import register_exception_handlers
from common.logger_config import setup_logging

from . import models, schemas
from .database import Base, engine, get_db

SERVICE_NAME = "feedback"

setup_logging(SERVICE_NAME)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Feedback Service", version="1.0.0")
router_v1 = APIRouter(prefix="/api/v1")

register_exception_handlers(app, SERVICE_NAME)


@app.get("/")
def root():
    """
    Health-check endpoint for the Feedback service.

    Returns
    -------
    dict
        A small JSON payload indicating that the service is running.
    """
    return {"service": "feedback", "status": "running"}


member_roles = require_roles("admin", "user")


def get_feedback_or_404(db: Session, feedback_id: int) -> models.Feedback:
    """
    Load a feedback entry by ID or raise HTTP 404.

    Raises
    ------
    HTTPException
        If the feedback does not exist.
    """
    feedback = db.query(models.Feedback).filter(models.Feedback.id == feedback_id).first()
    if not feedback:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Feedback not found",
        )
    return feedback


# ---------- Create feedback (authenticated member) ----------


@router_v1.post(
    "/feedback",
    response_model=schemas.FeedbackRead,
    status_code=status.HTTP_201_CREATED,
)
def create_feedback(
    feedback_in: schemas.FeedbackCreate,
    db: Session = Depends(get_db),
    claims: Dict = Depends(member_roles),
):
    """
    Rate a space.

    Access
    ------
    - Allowed roles: admin, user.

    Behavior
    --------
    - Each user can leave one feedback entry per space.
    - The authenticated user's ID is used as the author.

    Parameters
    ----------
    feedback_in : FeedbackCreate
        Space ID, rating, and comment.
    db : Session
        Database session.
    claims : Dict
        Decoded JWT claims containing user_id and role.

    Returns
    -------
    FeedbackRead
        The newly created feedback.

    Raises
    ------
    HTTPException
        If the user already rated this space.
    """
    duplicate = HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="You have already left feedback for this space",
    )
    existing = (
        db.query(models.Feedback)
        .filter(
            models.Feedback.user_id == claims["user_id"],
            models.Feedback.space_id == feedback_in.space_id,
        )
        .first()
    )
    if existing:
        raise duplicate

    feedback = models.Feedback(
        user_id=claims["user_id"],
        space_id=feedback_in.space_id,
        rating=feedback_in.rating,
        comment=feedback_in.comment,
    )
    db.add(feedback)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race against the same user's concurrent submission
        db.rollback()
        raise duplicate
    db.refresh(feedback)
    logger.info(f"User {feedback.user_id} rated space {feedback.space_id}: {feedback.rating}")
    return feedback


# ---------- Public: list feedback for a space ----------


@router_v1.get("/feedback/space/{space_id}", response_model=List[schemas.FeedbackRead])
def list_space_feedback(
    space_id: int,
    db: Session = Depends(get_db),
):
    """
    Public endpoint: list feedback for a specific space, newest first.
    """
    return (
        db.query(models.Feedback)
        .filter(models.Feedback.space_id == space_id)
        .order_by(models.Feedback.created_at.desc(), models.Feedback.id.desc())
        .all()
    )


@router_v1.get("/feedback/space/{space_id}/summary", response_model=schemas.SpaceRatingSummary)
def space_rating_summary(
    space_id: int,
    db: Session = Depends(get_db),
):
    count, average = (
        db.query(func.count(models.Feedback.id), func.avg(models.Feedback.rating))
        .filter(models.Feedback.space_id == space_id)
        .one()
    )
    return {
        "space_id": space_id,
        "count": count,
        "average_rating": round(float(average), 2) if average is not None else None,
    }


@router_v1.get("/feedback/me", response_model=List[schemas.FeedbackRead])
def list_my_feedback(
    db: Session = Depends(get_db),
    claims: Dict = Depends(get_current_user_claims),
):
    return (
        db.query(models.Feedback)
        .filter(models.Feedback.user_id == claims["user_id"])
        .order_by(models.Feedback.created_at.desc(), models.Feedback.id.desc())
        .all()
    )


# ---------- Update feedback (owner) ----------


@router_v1.put("/feedback/{feedback_id}", response_model=schemas.FeedbackRead)
def update_feedback(
    feedback_id: int,
    update_data: schemas.FeedbackUpdate,
    db: Session = Depends(get_db),
    claims: Dict = Depends(member_roles),
):
    """
    Update an existing feedback entry's rating and/or comment.

    Access
    ------
    - Feedback author only.

    Parameters
    ----------
    feedback_id : int
        ID of the feedback to update.
    update_data : FeedbackUpdate
        New rating and/or comment.
    db : Session
        Database session.
    claims : Dict
        Decoded JWT claims.

    Returns
    -------
    FeedbackRead
        Updated feedback.

    Raises
    ------
    HTTPException
        If the feedback does not exist or belongs to someone else.
    """
    feedback = get_feedback_or_404(db, feedback_id)

    if feedback.user_id != claims["user_id"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to update this feedback",
        )

    if update_data.rating is not None:
        feedback.rating = update_data.rating
    if update_data.comment is not None:
        feedback.comment = update_data.comment

    db.add(feedback)
    db.commit()
    db.refresh(feedback)
    return feedback


# ---------- Delete feedback (owner or admin) ----------


@router_v1.delete("/feedback/{feedback_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_feedback(
    feedback_id: int,
    db: Session = Depends(get_db),
    claims: Dict = Depends(member_roles),
):
    """
    Permanently delete a feedback entry.

    Access
    ------
    - Feedback author.
    - Admin.

    Raises
    ------
    HTTPException
        If the feedback does not exist or the user is not allowed.
    """
    feedback = get_feedback_or_404(db, feedback_id)

    is_admin = claims["role"] == "admin"
    is_owner = feedback.user_id == claims["user_id"]

    if not (is_admin or is_owner):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to delete this feedback",
        )

    db.delete(feedback)
    db.commit()
    logger.info(f"Feedback {feedback_id} deleted by user {claims['user_id']}")
    return


app.include_router(router_v1)
