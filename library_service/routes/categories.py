from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from library_service import catalog, schemas
from library_service.auth import require_admin
from library_service.database import get_db


router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("", response_model=List[schemas.Category])
def list_categories(db: Session = Depends(get_db)):
    return catalog.list_categories(db)


@router.post(
    "",
    response_model=schemas.Category,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
def create_category(category: schemas.CategoryCreate, db: Session = Depends(get_db)):
    """Create a category (admin only). Names are unique, ignoring case."""
    return catalog.create_category(db, category.name)


@router.put(
    "/{category_id}",
    response_model=schemas.Category,
    dependencies=[Depends(require_admin)],
)
def update_category(
    category_id: int, category: schemas.CategoryCreate, db: Session = Depends(get_db)
):
    return catalog.update_category(db, category_id, category.name)


@router.delete(
    "/{category_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin)],
)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    """Delete a category; books tagged with it simply lose the tag."""
    catalog.delete_category(db, category_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
