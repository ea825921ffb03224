import os
import re
import secrets
from datetime import timedelta
from typing import List

from fastapi import APIRouter, Depends, FastAPI, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from loguru import logger
from sqlalchemy.orm import Session

from common.exception_handlers import register_exception_handlers
from common.logger_config import setup_logging

from . import models, schemas
from .auth import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    authenticate_user,
    create_access_token,
    get_current_user,
    get_password_hash,
    get_user_by_email,
    landing_page_for,
    require_roles,
    verify_password,
)
from .database import Base, engine, get_db
from .models import UserRole
from .rate_limiter import ip_rate_limiter

SERVICE_NAME = "users"

setup_logging(SERVICE_NAME)

# Create tables on startup
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Users Service", version="1.0.0")
router_v1 = APIRouter(prefix="/api/v1")

register_exception_handlers(app, SERVICE_NAME)

# Admin signup (set in environment for production)
ADMIN_SIGNUP_CODE = os.getenv("ADMIN_SIGNUP_CODE")


@app.get("/")
def root():
    return {"service": "users", "status": "running"}


# ---------- Password Strength ----------

def validate_password_strength(password: str):
    """
    Validate password complexity rules.

    A valid password must:
    - Be at least 8 characters long
    - Be at most 72 bytes (bcrypt limit)
    - Contain at least one letter
    - Contain at least one digit

    Raises
    ------
    HTTPException
        If the password does not meet the strength requirements.
    """
    if len(password) < 8:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must be at least 8 characters long",
        )
    if len(password.encode("utf-8")) > 72:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must be at most 72 bytes long",
        )
    if not re.search(r"[A-Za-z]", password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must contain at least one letter",
        )
    if not re.search(r"\d", password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must contain at least one digit",
        )


def resolve_signup_role(db: Session, user_in: schemas.UserCreate) -> UserRole:
    """
    Decide which role a new account receives.

    - 'user' is always granted.
    - 'admin' is granted to the very first account (bootstrap), or when
      the request carries the configured admin signup code.

    Raises
    ------
    HTTPException
        403 when 'admin' is requested without a valid code.
    """
    if user_in.role != UserRole.ADMIN:
        return UserRole.USER

    if db.query(models.User).count() == 0:
        return UserRole.ADMIN

    if (
        ADMIN_SIGNUP_CODE
        and user_in.admin_code
        and secrets.compare_digest(user_in.admin_code, ADMIN_SIGNUP_CODE)
    ):
        return UserRole.ADMIN

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="A valid admin signup code is required to register as admin",
    )


# ---------- Registration ----------

@router_v1.post(
    "/users/register",
    response_model=schemas.UserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(ip_rate_limiter)],
)
def register_user(user_in: schemas.UserCreate, db: Session = Depends(get_db)):
    """
    Register a new account.

    Behavior:
    - Email must be unique (compared lower-cased).
    - Password strength is validated before hashing.
    - Role is 'user' unless 'admin' is requested and allowed
      (first account, or matching admin signup code).

    Parameters
    ----------
    user_in : UserCreate
        Incoming registration data.
    db : Session
        Database session.

    Returns
    -------
    UserRead
        The newly created user.

    Raises
    ------
    HTTPException
        If the email already exists, the password is weak, or admin
        signup is not allowed.
    """
    email = user_in.email.strip().lower()
    if get_user_by_email(db, email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )

    validate_password_strength(user_in.password)
    assigned_role = resolve_signup_role(db, user_in)

    user = models.User(
        full_name=user_in.full_name,
        email=email,
        hashed_password=get_password_hash(user_in.password),
        role=assigned_role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Registered user {user.id} with role {assigned_role.value}")
    return user

# ---------- Login (token) ----------

@router_v1.post("/users/login", response_model=schemas.Token, dependencies=[Depends(ip_rate_limiter)])
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
):
    """
    Authenticate with email + password and return a JWT access token.

    The response also tells the client where to send the user next:
    '/admin' for administrators, '/dashboard' for everyone else.

    Parameters
    ----------
    form_data : OAuth2PasswordRequestForm
        Login credentials; the 'username' field carries the email.
    db : Session
        Database session.

    Returns
    -------
    Token
        Access token, role and landing page.

    Raises
    ------
    HTTPException
        If authentication fails.
    """
    user = authenticate_user(db, form_data.username, form_data.password)
    if not user:
        logger.info("Failed login attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
        )

    access_token = create_access_token(
        data={
            "sub": user.email,
            "role": user.role.value,
            "user_id": user.id,
        },
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "role": user.role,
        "redirect_to": landing_page_for(user.role),
    }


# ---------- Current user profile ----------

@router_v1.get("/users/me", response_model=schemas.UserRead)
def get_my_profile(current_user: models.User = Depends(get_current_user)):
    return current_user


@router_v1.put("/users/me", response_model=schemas.UserRead)
def update_my_profile(
    update_data: schemas.UserUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Update the authenticated user's profile and settings.

    Editable fields: full_name, phone, avatar_url, theme, language,
    notifications_enabled.

    Returns
    -------
    UserRead
        Updated user profile.
    """
    changes = update_data.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(current_user, field, value)

    db.add(current_user)
    db.commit()
    db.refresh(current_user)
    return current_user


@router_v1.put("/users/me/password", status_code=status.HTTP_204_NO_CONTENT)
def change_my_password(
    body: schemas.PasswordChange,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Change the authenticated user's password.

    Raises
    ------
    HTTPException
        400 if the current password is wrong or the new one is weak.
    """
    if not verify_password(body.current_password, current_user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )
    validate_password_strength(body.new_password)
    current_user.hashed_password = get_password_hash(body.new_password)
    db.add(current_user)
    db.commit()
    return


@router_v1.delete("/users/me", status_code=status.HTTP_204_NO_CONTENT)
def delete_my_account(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Delete the authenticated user's own account.

    Restrictions
    -----------
    - The last ADMIN cannot delete their own account.

    Raises
    ------
    HTTPException
        400 if attempting to delete the last admin user.
    """
    if current_user.role == UserRole.ADMIN:
        other_admins_count = (
            db.query(models.User)
            .filter(
                models.User.role == UserRole.ADMIN,
                models.User.id != current_user.id,
            )
            .count()
        )
        if other_admins_count == 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete the last admin user. Create another admin first.",
            )

    db.delete(current_user)
    db.commit()
    logger.info(f"User {current_user.id} deleted their account")
    return


# ---------- Admin ----------

admin_only = require_roles([UserRole.ADMIN])


@router_v1.get("/users", response_model=List[schemas.UserRead])
def list_users(
    db: Session = Depends(get_db),
    _: models.User = Depends(admin_only),
):
    """
    Admin: Retrieve all users ordered by id.
    """
    return db.query(models.User).order_by(models.User.id).all()


@router_v1.put("/users/{user_id}/role", response_model=schemas.UserRead)
def change_user_role(
    user_id: int,
    role_update: schemas.UserRoleUpdate,
    db: Session = Depends(get_db),
    current_admin: models.User = Depends(admin_only),
):
    """
    Admin only: Update a user's role.

    An admin cannot demote themselves; another admin has to do it, so
    the system always keeps at least one admin.

    Raises
    ------
    HTTPException
        404 if the user does not exist, 400 on self-demotion.
    """
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="User not found"
        )
    if user.id == current_admin.id and role_update.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Admins cannot remove their own admin role",
        )
    user.role = role_update.role
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"User {user.id} role set to {user.role.value} by admin {current_admin.id}")
    return user


app.include_router(router_v1)
