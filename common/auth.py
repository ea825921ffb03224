# common/auth.py
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

# MUST MATCH across every service
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "super-secret-yourspace-key")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

SERVICE_ACCOUNT_ROLE = "service_account"
SERVICE_ACCOUNT_USER_ID = 0

security = HTTPBearer()


def make_service_account_token(service_name: str) -> str:
    """
    Mint a short-lived token used for inter-service calls.

    Parameters
    ----------
    service_name : str
        Name of the calling service, stored in the 'sub' claim.

    Returns
    -------
    str
        Encoded JWT carrying the least-privilege service_account role.
    """
    payload = {
        "sub": service_name,
        "role": SERVICE_ACCOUNT_ROLE,
        "user_id": SERVICE_ACCOUNT_USER_ID,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


async def get_current_user_claims(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Dict[str, Any]:
    """
    Decode a JWT bearer token and extract user claims.

    The token is expected in the Authorization header as a Bearer token.
    Each request carries its own identity; no user object is cached
    between requests.

    Parameters
    ----------
    credentials : HTTPAuthorizationCredentials
        Authorization header parsed by FastAPI's HTTPBearer.

    Returns
    -------
    Dict[str, Any]
        A dictionary containing:
        - 'username' : str
        - 'user_id' : int
        - 'role' : str

    Raises
    ------
    HTTPException
        If the token is missing, invalid, or cannot be decoded.
    """
    token = credentials.credentials

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        username = payload.get("sub")
        role = payload.get("role")
        user_id = payload.get("user_id")
        if username is None or role is None or user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    return {"username": username, "user_id": int(user_id), "role": role}


def require_roles(*allowed_roles: str) -> Callable:
    """
    Build a dependency that enforces a set of allowed roles.

    Parameters
    ----------
    allowed_roles : str
        One or more role names that are permitted to access a route.

    Returns
    -------
    Callable
        A FastAPI dependency that checks the caller's role and raises
        HTTP 403 if access is not allowed.
    """

    async def dependency(claims: Dict[str, Any] = Depends(get_current_user_claims)) -> Dict[str, Any]:
        if claims["role"] not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not enough permissions",
            )
        return claims

    return dependency
