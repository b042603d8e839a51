"""
Loan lifecycle engine.

A loan is in one of three states:

- active:   return_date is null and due_date >= now
- overdue:  return_date is null and due_date < now
- returned: return_date is set (terminal)

Every operation takes the evaluation time explicitly, so due-date and
overdue-boundary behaviour is deterministic. Each transition runs in a
single transaction: the loan row and the book's availability flag change
together or not at all. Errors are raised to the caller; nothing here
logs, retries or swallows them.
"""

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, contains_eager

from library_service.errors import AlreadyReturned, BookUnavailable, NotFound, ValidationError
from library_service.models import Book, Loan, Member
from library_service.pagination import Page, paginate


LOAN_PERIOD = timedelta(days=14)


class LoanStatus(str, Enum):
    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"


def _as_utc(now: datetime) -> datetime:
    # Columns hold naive UTC; aware inputs are converted, naive ones trusted.
    if now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


def _check_id(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"Valid {name} is required")
    return value


@contextmanager
def _transition(session: Session):
    try:
        yield
        session.commit()
    except Exception:
        session.rollback()
        raise


def due_date_for(borrow_date: datetime) -> datetime:
    """Calendar arithmetic: fourteen days after borrowing, to the second."""
    return borrow_date + LOAN_PERIOD


def is_overdue(loan: Loan, now: datetime) -> bool:
    return loan.return_date is None and loan.due_date < _as_utc(now)


def classify(loan: Loan, now: datetime) -> LoanStatus:
    if loan.return_date is not None:
        return LoanStatus.RETURNED
    if is_overdue(loan, now):
        return LoanStatus.OVERDUE
    return LoanStatus.ACTIVE


def status_condition(status, now: datetime):
    """SQL condition selecting loans whose live classification is status."""
    try:
        status = LoanStatus(status)
    except ValueError:
        raise ValidationError("status must be one of: active, overdue, returned")

    now = _as_utc(now)
    if status is LoanStatus.RETURNED:
        return Loan.return_date.isnot(None)
    if status is LoanStatus.OVERDUE:
        return and_(Loan.return_date.is_(None), Loan.due_date < now)
    return and_(Loan.return_date.is_(None), Loan.due_date >= now)


def borrow(session: Session, book_id: int, member_id: int, now: datetime) -> Loan:
    """
    Lend a book to a member.

    The member row, then the book row, is locked before the availability
    check, the same order delete_member takes, so concurrent borrows of a
    book queue up and a borrow cannot slip in under a member delete. The
    partial unique index on open loans catches whatever slips past a store
    without row locks.

    Raises:
        ValidationError: non-positive or non-integer ids
        NotFound: unknown book or member, including one deleted mid-borrow
        BookUnavailable: the book already has an open loan
    """
    _check_id(book_id, "book_id")
    _check_id(member_id, "member_id")
    now = _as_utc(now)

    try:
        with _transition(session):
            member = session.query(Member).filter(Member.id == member_id).with_for_update().first()
            book = session.query(Book).filter(Book.id == book_id).with_for_update().first()
            if book is None:
                raise NotFound(f"Book with id {book_id} not found")
            if member is None:
                raise NotFound(f"Member with id {member_id} not found")

            open_loan = (
                session.query(Loan)
                .filter(Loan.book_id == book_id, Loan.return_date.is_(None))
                .first()
            )
            if open_loan is not None:
                raise BookUnavailable(f"Book with id {book_id} is currently not available")

            loan = Loan(
                book=book,
                member=member,
                borrow_date=now,
                due_date=due_date_for(now),
                status=LoanStatus.ACTIVE.value,
            )
            session.add(loan)
            book.available = False
    except IntegrityError as exc:
        # Foreign key failures mean the book or member vanished underneath us.
        if session.query(Book.id).filter(Book.id == book_id).first() is None:
            raise NotFound(f"Book with id {book_id} not found") from exc
        if session.query(Member.id).filter(Member.id == member_id).first() is None:
            raise NotFound(f"Member with id {member_id} not found") from exc
        raise BookUnavailable(f"Book with id {book_id} is currently not available") from exc

    session.refresh(loan)
    return loan


def return_loan(session: Session, loan_id: int, now: datetime) -> Loan:
    """
    Close an open loan and make its book available again.

    A second return of the same loan is an error, never a no-op.

    Raises:
        ValidationError: bad id, or now precedes the borrow date
        NotFound: unknown loan
        AlreadyReturned: the loan is already closed
    """
    _check_id(loan_id, "loan_id")
    now = _as_utc(now)

    with _transition(session):
        loan = session.query(Loan).filter(Loan.id == loan_id).with_for_update().first()
        if loan is None:
            raise NotFound(f"Loan with id {loan_id} not found")
        if loan.return_date is not None:
            raise AlreadyReturned(f"Loan with id {loan_id} has already been returned")
        if now < loan.borrow_date:
            raise ValidationError("Return date cannot be earlier than the borrow date")

        loan.return_date = now
        loan.status = LoanStatus.RETURNED.value
        loan.book.available = True

    session.refresh(loan)
    return loan


def return_book(session: Session, book_id: int, now: datetime) -> Loan:
    """Return whichever loan is currently open for book_id."""
    _check_id(book_id, "book_id")

    book = session.query(Book).filter(Book.id == book_id).first()
    if book is None:
        raise NotFound(f"Book with id {book_id} not found")

    open_loan = (
        session.query(Loan)
        .filter(Loan.book_id == book_id, Loan.return_date.is_(None))
        .first()
    )
    if open_loan is None:
        raise NotFound("No active loan found for this book")

    return return_loan(session, open_loan.id, now)


def sync_availability(session: Session, book_ids: Optional[Iterable[int]] = None) -> int:
    """
    Mark books available again when no open loan references them.

    Runs as one UPDATE inside the caller's transaction, after rows that may
    have taken loans with them (a member delete cascading in the database)
    have been flushed. Without book_ids every lent-out book is checked.
    Returns the number of books changed.
    """
    open_books = select(Loan.book_id).where(Loan.return_date.is_(None))
    statement = (
        update(Book)
        .where(Book.available.is_(False), Book.id.not_in(open_books))
        .values(available=True)
        .execution_options(synchronize_session=False)
    )
    if book_ids is not None:
        statement = statement.where(Book.id.in_(list(book_ids)))
    return session.execute(statement).rowcount


def sweep_overdue(session_factory, now: datetime, batch_size: int = 500) -> List[int]:
    """
    Flip the materialized status of newly overdue loans to "overdue".

    Works in batches, each in its own short transaction, so borrow and
    return requests are never held behind a lock on the whole table.
    Returns the ids that were flipped.
    """
    if batch_size < 1:
        raise ValidationError("batch_size must be a positive integer")
    now = _as_utc(now)

    flipped: List[int] = []
    while True:
        session = session_factory()
        try:
            with _transition(session):
                ids = [
                    row.id
                    for row in session.query(Loan.id)
                    .filter(
                        Loan.status == LoanStatus.ACTIVE.value,
                        Loan.return_date.is_(None),
                        Loan.due_date < now,
                    )
                    .order_by(Loan.id)
                    .limit(batch_size)
                    .with_for_update(skip_locked=True)
                ]
                if ids:
                    session.query(Loan).filter(
                        Loan.id.in_(ids), Loan.return_date.is_(None)
                    ).update({Loan.status: LoanStatus.OVERDUE.value}, synchronize_session=False)
        finally:
            session.close()

        flipped.extend(ids)
        if len(ids) < batch_size:
            return flipped


def loan_details(loan: Loan, now: datetime) -> dict:
    """Flatten a loan with its book and member for display and export."""
    return {
        "id": loan.id,
        "book_id": loan.book_id,
        "member_id": loan.member_id,
        "borrow_date": loan.borrow_date,
        "due_date": loan.due_date,
        "return_date": loan.return_date,
        "status": classify(loan, now).value,
        "book_title": loan.book.title,
        "book_author": loan.book.author,
        "book_isbn": loan.book.isbn,
        "member_name": loan.member.name,
        "member_email": loan.member.email,
    }


def _joined_loans(session: Session):
    return (
        session.query(Loan)
        .join(Book, Loan.book_id == Book.id)
        .join(Member, Loan.member_id == Member.id)
        .options(contains_eager(Loan.book), contains_eager(Loan.member))
    )


def query_loans(
    session: Session,
    now: datetime,
    status: Optional[str] = None,
    search: Optional[str] = None,
    member_id: Optional[int] = None,
    book_id: Optional[int] = None,
):
    """Loans joined with book and member, filtered, newest first."""
    query = _joined_loans(session)

    if status:
        query = query.filter(status_condition(status, now))
    if search:
        pattern = f"%{search.lower()}%"
        query = query.filter(
            or_(func.lower(Book.title).like(pattern), func.lower(Member.name).like(pattern))
        )
    if member_id is not None:
        query = query.filter(Loan.member_id == member_id)
    if book_id is not None:
        query = query.filter(Loan.book_id == book_id)

    return query.order_by(Loan.borrow_date.desc(), Loan.id.desc())


def list_loans(
    session: Session,
    now: datetime,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 25,
    member_id: Optional[int] = None,
    book_id: Optional[int] = None,
) -> Page:
    query = query_loans(
        session, now, status=status, search=search, member_id=member_id, book_id=book_id
    )
    return paginate(query, page, limit, transform=lambda loan: loan_details(loan, now))


def overdue_loans(session: Session, now: datetime) -> List[dict]:
    loans = (
        _joined_loans(session)
        .filter(status_condition(LoanStatus.OVERDUE, now))
        .order_by(Loan.due_date.asc(), Loan.id.asc())
        .all()
    )
    return [loan_details(loan, now) for loan in loans]
