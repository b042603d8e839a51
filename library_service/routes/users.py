from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from library_service import accounts, models, schemas
from library_service.auth import get_current_user, require_admin
from library_service.database import get_db


router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=List[schemas.User], dependencies=[Depends(require_admin)])
def list_users(db: Session = Depends(get_db)):
    return accounts.list_users(db)


@router.put(
    "/{user_id}",
    response_model=schemas.User,
    dependencies=[Depends(require_admin)],
)
def update_user(user_id: int, user: schemas.UserUpdate, db: Session = Depends(get_db)):
    """
    Rename a user or change its role (admin only).

    Raises:
        403 when the change would leave no administrator
    """
    return accounts.update_user(db, user_id, user.username, user.role)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    """Delete a user (admin only). Admins cannot delete themselves."""
    accounts.delete_user(db, user_id, acting_user=current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{user_id}/password")
def change_password(
    user_id: int,
    body: schemas.PasswordChange,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    accounts.change_password(
        db,
        current_user,
        user_id,
        body.new_password,
        current_password=body.current_password,
    )
    return {"message": "Password updated successfully"}
