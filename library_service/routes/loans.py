from typing import Callable, List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from library_service import loans, schemas
from library_service.auth import get_current_user, require_admin
from library_service.database import get_db
from library_service.dependencies import (
    PageParams,
    get_clock,
    get_session_factory,
    page_params,
)
from library_service.errors import NotFound
from library_service.models import Loan
from library_service.scheduler import run_overdue_check


router = APIRouter(prefix="/loans", tags=["loans"])


@router.post(
    "",
    response_model=schemas.Loan,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(get_current_user)],
)
def borrow_book(
    loan_data: schemas.LoanCreate,
    db: Session = Depends(get_db),
    clock: Callable = Depends(get_clock),
):
    """
    Lend a book to a member (requires login).

    Business Logic:
    1. Book and member must exist (404 otherwise)
    2. The book must not have an open loan (409 otherwise)
    3. The loan is due fourteen days after borrowing
    4. The book is marked unavailable in the same transaction
    """
    return loans.borrow(db, loan_data.book_id, loan_data.member_id, clock())


@router.post(
    "/return",
    response_model=schemas.Loan,
    dependencies=[Depends(get_current_user)],
)
def return_book_by_id(
    body: schemas.LoanReturnByBook,
    db: Session = Depends(get_db),
    clock: Callable = Depends(get_clock),
):
    """Return whichever loan is open for the given book (requires login)."""
    return loans.return_book(db, body.book_id, clock())


@router.post(
    "/sweep",
    response_model=schemas.SweepResult,
    dependencies=[Depends(require_admin)],
)
def sweep_overdue_loans(
    session_factory=Depends(get_session_factory),
    clock: Callable = Depends(get_clock),
):
    """Run one overdue sweep now instead of waiting for the timer (admin only)."""
    flipped = run_overdue_check(session_factory=session_factory, clock=clock)
    return {"count": len(flipped), "loan_ids": flipped}


@router.get("", response_model=schemas.LoanPage)
def list_loans(
    status_filter: Optional[Literal["active", "overdue", "returned"]] = Query(
        None, alias="status"
    ),
    search: Optional[str] = Query(None, description="Matches book title or member name"),
    paging: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    clock: Callable = Depends(get_clock),
):
    """
    List loans with book title and member name, newest first.

    The status filter and the status of each row are evaluated against
    the current time, not read from the stored column.
    """
    page = loans.list_loans(
        db,
        clock(),
        status=status_filter,
        search=search,
        page=paging.page,
        limit=paging.limit,
    )
    return page.to_dict()


@router.get("/overdue", response_model=List[schemas.LoanWithDetails])
def list_overdue_loans(db: Session = Depends(get_db), clock: Callable = Depends(get_clock)):
    """Every overdue loan, the longest overdue first."""
    return loans.overdue_loans(db, clock())


@router.get("/{loan_id}", response_model=schemas.LoanWithDetails)
def get_loan(
    loan_id: int, db: Session = Depends(get_db), clock: Callable = Depends(get_clock)
):
    loan = db.query(Loan).filter(Loan.id == loan_id).first()
    if loan is None:
        raise NotFound(f"Loan with id {loan_id} not found")
    return loans.loan_details(loan, clock())


@router.post(
    "/{loan_id}/return",
    response_model=schemas.Loan,
    dependencies=[Depends(get_current_user)],
)
def return_loan(
    loan_id: int, db: Session = Depends(get_db), clock: Callable = Depends(get_clock)
):
    """
    Mark a loan as returned (requires login).

    Raises:
        404 if the loan does not exist, 409 if it was already returned
    """
    return loans.return_loan(db, loan_id, clock())
