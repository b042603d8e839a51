from typing import Callable

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from library_service import catalog, schemas
from library_service.database import get_db
from library_service.dependencies import get_clock


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("", response_model=schemas.DashboardStats)
def dashboard(db: Session = Depends(get_db), clock: Callable = Depends(get_clock)):
    """
    Headline statistics.

    active_loans counts every open loan; overdue_loans is the subset whose
    due date has passed.
    """
    return catalog.dashboard_stats(db, clock())
