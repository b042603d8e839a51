from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from library_service import accounts, models, schemas
from library_service.auth import create_access_token, get_optional_user
from library_service.database import get_db


router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/setup-status", response_model=schemas.SetupStatus)
def setup_status(db: Session = Depends(get_db)):
    """Tell the client whether the first administrator still has to be created."""
    return {"setup_needed": accounts.setup_needed(db)}


@router.post(
    "/register",
    response_model=schemas.User,
    status_code=status.HTTP_201_CREATED,
)
def register(
    user: schemas.UserCreate,
    db: Session = Depends(get_db),
    current_user: Optional[models.User] = Depends(get_optional_user),
):
    """
    Register a user and its matching member record.

    Open to anyone until an administrator exists (initial setup);
    afterwards only administrators may register new users.
    """
    if not accounts.setup_needed(db):
        if current_user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication token required. Send 'Authorization: Bearer <token>'.",
            )
        if current_user.role != "admin":
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied: Admin role required",
            )

    return accounts.register_user(db, user.username, user.password, user.role)


@router.post("/login", response_model=schemas.Token)
def login(credentials: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = accounts.authenticate(db, credentials.username, credentials.password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )
    return {"access_token": create_access_token(user), "token_type": "bearer", "user": user}
