import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from common.auth import ALGORITHM, SECRET_KEY

from . import models
from .database import get_db

ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# --- Password hashing ---
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/users/login")

ROLE_LANDING_PAGES = {
    models.UserRole.ADMIN: "/admin",
    models.UserRole.USER: "/dashboard",
}


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plaintext password against a bcrypt hash.

    Parameters
    ----------
    plain_password : str
        Raw password provided by the user.
    hashed_password : str
        Previously stored bcrypt hash.

    Returns
    -------
    bool
        True if the password matches, False otherwise.
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def landing_page_for(role: models.UserRole) -> str:
    """Page a user is sent to after signing in."""
    return ROLE_LANDING_PAGES.get(role, "/dashboard")


# ---------- DB helpers ----------

def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email.strip().lower()).first()


def authenticate_user(db: Session, email: str, password: str) -> Optional[models.User]:
    """
    Authenticate a user given email and password.

    Parameters
    ----------
    db : Session
        Database session.
    email : str
        Email provided by the client (the OAuth2 'username' field).
    password : str
        Plaintext password provided by the client.

    Returns
    -------
    Optional[User]
        The authenticated user if credentials are valid and the account
        is active, otherwise None.
    """
    user = get_user_by_email(db, email)
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


# ---------- JWT helpers ----------

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed JWT access token.

    Parameters
    ----------
    data : dict
        Claims to embed in the token ('sub', 'role', 'user_id').
    expires_delta : Optional[timedelta]
        Optional custom expiration interval.

    Returns
    -------
    str
        Encoded JWT string.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    """
    Resolve the current user from a JWT bearer token.

    Steps
    -----
    - Decode the JWT using the shared SECRET_KEY.
    - Load the user by the 'user_id' claim.
    - Reject the token if its role no longer matches the stored role.

    Raises
    ------
    HTTPException
        If the token is invalid, expired, or the user does not exist.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("user_id")
        token_role: Optional[str] = payload.get("role")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    user = db.query(models.User).filter(models.User.id == int(user_id)).first()
    if user is None or not user.is_active:
        raise credentials_exception

    if token_role is not None and token_role != user.role.value:
        raise credentials_exception

    return user


# ---------- RBAC helper ----------

def require_roles(allowed_roles: List[models.UserRole]):
    """
    Build a dependency that enforces role-based access control.

    Parameters
    ----------
    allowed_roles : List[UserRole]
        Roles that are allowed to access the protected endpoint.

    Returns
    -------
    Callable
        A FastAPI dependency that verifies the current user's role
        and raises HTTP 403 if not permitted.
    """

    async def dependency(current_user: models.User = Depends(get_current_user)):
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Operation not permitted for this role",
            )
        return current_user

    return dependency
