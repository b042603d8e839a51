import logging
from typing import Callable, Literal, Optional

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from library_service import catalog, csv_io, loans, schemas
from library_service.auth import get_current_user
from library_service.database import get_db
from library_service.dependencies import PageParams, get_clock, page_params


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/members", tags=["members"])


@router.get("", response_model=schemas.MemberPage)
def list_members(
    search: Optional[str] = Query(None, description="Matches name, email or phone"),
    sort_by: Optional[str] = Query(None, description="id, name, email or created_at"),
    sort_order: Optional[Literal["asc", "desc"]] = Query(None),
    paging: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
):
    page = catalog.list_members(
        db,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=paging.page,
        limit=paging.limit,
    )
    return page.to_dict()


@router.post(
    "",
    response_model=schemas.Member,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(get_current_user)],
)
def create_member(member: schemas.MemberCreate, db: Session = Depends(get_db)):
    """
    Register a library member (requires login).

    Emails are stored lower-cased and must be unique (409 otherwise).
    """
    return catalog.create_member(db, member)


@router.post(
    "/bulk-import",
    response_model=schemas.ImportResult,
    dependencies=[Depends(get_current_user)],
)
def bulk_import_members(file: UploadFile = File(...), db: Session = Depends(get_db)):
    content = file.file.read()
    logger.info("CSV upload %s (%d bytes) for member import", file.filename, len(content))

    result = csv_io.import_members(db, content)
    logger.info("Member import: %s", result["message"])
    if result["errors"]:
        return JSONResponse(status_code=status.HTTP_207_MULTI_STATUS, content=result)
    return result


@router.get("/{member_id}", response_model=schemas.Member)
def get_member(member_id: int, db: Session = Depends(get_db)):
    return catalog.get_member(db, member_id)


@router.put(
    "/{member_id}",
    response_model=schemas.Member,
    dependencies=[Depends(get_current_user)],
)
def update_member(
    member_id: int, member_update: schemas.MemberUpdate, db: Session = Depends(get_db)
):
    return catalog.update_member(db, member_id, member_update)


@router.delete(
    "/{member_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(get_current_user)],
)
def delete_member(member_id: int, db: Session = Depends(get_db)):
    """
    Delete a member (requires login).

    The member's loans are deleted too; any book it still had out
    becomes available again.
    """
    catalog.delete_member(db, member_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{member_id}/loans", response_model=schemas.LoanPage)
def get_member_loans(
    member_id: int,
    status_filter: Optional[Literal["active", "overdue", "returned"]] = Query(
        None, alias="status"
    ),
    paging: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    clock: Callable = Depends(get_clock),
):
    """Loan history of one member, newest first."""
    catalog.get_member(db, member_id)
    page = loans.list_loans(
        db,
        clock(),
        status=status_filter,
        member_id=member_id,
        page=paging.page,
        limit=paging.limit,
    )
    return page.to_dict()
