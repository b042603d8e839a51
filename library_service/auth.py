from datetime import timedelta
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from library_service import models
from library_service.config import settings
from library_service.database import get_db


bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return check_password_hash(password_hash, password)


def create_access_token(user: models.User, expires_minutes: Optional[int] = None) -> str:
    """
    Issue a signed JWT for user.

    Claims: sub (user id as a string), username, role, iat and exp.
    """
    issued_at = models.utcnow()
    minutes = expires_minutes if expires_minutes is not None else settings.jwt_expiration_minutes
    payload = {
        "sub": str(user.id),
        "username": user.username,
        "role": user.role,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[dict]:
    """Return the token's claims, or None when it is malformed or expired."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.InvalidTokenError:
        return None


def _user_from_credentials(
    credentials: Optional[HTTPAuthorizationCredentials], db: Session
) -> models.User:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token required. Send 'Authorization: Bearer <token>'.",
        )

    claims = decode_access_token(credentials.credentials)
    if claims is None or not str(claims.get("sub", "")).isdigit():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired token",
        )

    user = db.query(models.User).filter(models.User.id == int(claims["sub"])).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired token",
        )
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    """
    Dependency resolving the authenticated user from a bearer token.

    The role is read from the database rather than the token, so a
    demoted admin loses access without waiting for the token to expire.

    Raises:
        HTTPException: 401 if the token is missing, 403 if it is invalid,
        expired, or names a user that no longer exists
    """
    return _user_from_credentials(credentials, db)


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_db),
) -> Optional[models.User]:
    """Like get_current_user, but anonymous requests resolve to None."""
    if credentials is None:
        return None
    return _user_from_credentials(credentials, db)


def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    if user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: Admin role required",
        )
    return user
