from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .models import Theme, UserRole


# ---------- Input schemas ----------
class UserCreate(BaseModel):
    """
    Schema for user registration input.

    role defaults to 'user'. Asking for 'admin' only succeeds for the
    very first account or with the admin signup code.
    """
    full_name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    password: str
    role: UserRole = UserRole.USER
    admin_code: Optional[str] = None

    @field_validator("full_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("full_name must not be empty")
        return v


class UserUpdate(BaseModel):
    """
    Schema for updating the authenticated user's profile and settings.

    All fields are optional; only provided values are applied.
    """
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    phone: Optional[str] = Field(default=None, max_length=30)
    avatar_url: Optional[str] = Field(default=None, max_length=500)
    theme: Optional[Theme] = None
    language: Optional[str] = Field(default=None, min_length=2, max_length=10)
    notifications_enabled: Optional[bool] = None


class PasswordChange(BaseModel):
    """
    Schema for changing one's own password.

    Attributes
    ----------
    current_password : str
        Password in use today, re-checked before the change.
    new_password : str
        Replacement password, subject to the strength rules.
    """
    current_password: str
    new_password: str


class UserRoleUpdate(BaseModel):
    """
    Schema used by admins to change a user's role.
    """
    role: UserRole


# ---------- Output schemas ----------

class UserRead(BaseModel):
    """
    Schema returned when reading user information.

    Exposes safe, non-sensitive fields and hides the password hash.
    """
    id: int
    full_name: str
    email: EmailStr
    role: UserRole
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    theme: Theme
    language: str
    notifications_enabled: bool
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

# ---------- Token schemas ----------

class Token(BaseModel):
    """
    Schema for login responses.

    Attributes
    ----------
    access_token : str
        Encoded JWT.
    token_type : str
        Token type, usually 'bearer'.
    role : UserRole
        Role embedded in the token.
    redirect_to : str
        Landing page for the role ('/admin' or '/dashboard').
    """
    access_token: str
    token_type: str = "bearer"
    role: UserRole
    redirect_to: str
