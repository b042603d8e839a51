from datetime import date
from typing import Callable, Literal, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from library_service import csv_io
from library_service.auth import require_admin
from library_service.database import get_db
from library_service.dependencies import get_clock


router = APIRouter(prefix="/export", tags=["export"], dependencies=[Depends(require_admin)])


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/books")
def export_books(
    start_date: Optional[date] = Query(None, description="Created on or after (YYYY-MM-DD)"),
    end_date: Optional[date] = Query(None, description="Created on or before (YYYY-MM-DD)"),
    db: Session = Depends(get_db),
):
    return _csv_response(csv_io.export_books(db, start_date, end_date), "books_export.csv")


@router.get("/members")
def export_members(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    return _csv_response(csv_io.export_members(db, start_date, end_date), "members_export.csv")


@router.get("/loans")
def export_loans(
    start_date: Optional[date] = Query(None, description="Borrowed on or after"),
    end_date: Optional[date] = Query(None, description="Borrowed on or before"),
    status_filter: Optional[Literal["active", "overdue", "returned"]] = Query(
        None, alias="status"
    ),
    db: Session = Depends(get_db),
    clock: Callable = Depends(get_clock),
):
    content = csv_io.export_loans(db, clock(), start_date, end_date, status=status_filter)
    return _csv_response(content, "loans_export.csv")
