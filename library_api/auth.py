"""Authentication helpers.

Passwords are hashed with bcrypt through passlib. Bearer tokens are JWTs
signed with the server secret; the ``sub`` claim carries the user id and
the token expires after ``settings.jwt_expiration_minutes`` (one day by
default). Routes that mutate state depend on ``get_current_user_id``.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from library_api.config import settings
from library_api.errors import NotAuthenticated
from library_api.timestamps import utcnow

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# auto_error is off so a missing header goes through our own error body
bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = utcnow() + (expires_delta or timedelta(minutes=settings.jwt_expiration_minutes))
    to_encode = {"sub": user_id, "exp": expire}
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str:
    """Return the user id carried by a valid token, else raise ``NotAuthenticated``."""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise NotAuthenticated("Token is not valid") from e
    user_id = payload.get("sub")
    if not user_id:
        raise NotAuthenticated("Token is not valid")
    return user_id


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Dependency resolving the caller's user id from the Authorization header."""
    if credentials is None or not credentials.credentials:
        raise NotAuthenticated("No token, authorization denied")
    return decode_access_token(credentials.credentials)
