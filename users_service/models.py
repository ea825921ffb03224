from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String

from .database import Base


class UserRole(str, PyEnum):
    """
    Enumeration of the roles a person can hold.

    Roles
    -----
    admin
        Manages spaces and slots and sees every booking; lands on /admin.
    user
        Books seats and manages their own profile; lands on /dashboard.
    """
    ADMIN = "admin"
    USER = "user"


class Theme(str, PyEnum):
    LIGHT = "light"
    DARK = "dark"


class User(Base):
    """
    SQLAlchemy model for application users and their profile.

    Attributes
    ----------
    id : int
        Primary key.
    full_name : str
        Display name.
    email : str
        Unique, lower-cased login identifier.
    hashed_password : str
        Bcrypt-hashed password.
    role : UserRole
        admin or user.
    phone : str
        Optional phone number.
    avatar_url : str
        Optional URL of the profile picture.
    theme : Theme
        Preferred UI theme.
    language : str
        Preferred UI language code.
    notifications_enabled : bool
        Whether the user wants booking notifications.
    is_active : bool
        Flag indicating whether the user is active.
    created_at : datetime
        Timestamp of user creation.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.USER)
    phone = Column(String(30), nullable=True)
    avatar_url = Column(String(500), nullable=True)
    theme = Column(Enum(Theme), nullable=False, default=Theme.LIGHT)
    language = Column(String(10), nullable=False, default="en")
    notifications_enabled = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
