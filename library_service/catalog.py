"""
Book, member and category operations plus dashboard statistics.

Functions take an open session and commit their own writes. Lookups that
miss raise NotFound; unique-value clashes raise Conflict.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from library_service import loans
from library_service.errors import Conflict, NotFound, ValidationError
from library_service.models import Book, Category, Loan, Member, book_categories
from library_service.pagination import Page, paginate


BOOK_SORT_COLUMNS = {
    "id": Book.id,
    "title": Book.title,
    "author": Book.author,
    "isbn": Book.isbn,
    "available": Book.available,
}

MEMBER_SORT_COLUMNS = {
    "id": Member.id,
    "name": Member.name,
    "email": Member.email,
    "created_at": Member.created_at,
}


def _ordering(columns: dict, sort_by: Optional[str], sort_order: Optional[str]):
    column = columns.get((sort_by or "id").lower(), columns["id"])
    if (sort_order or "asc").lower() == "desc":
        return column.desc()
    return column.asc()


def _commit(session: Session, conflict_message: str) -> None:
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise Conflict(conflict_message) from exc


# Categories


def list_categories(session: Session) -> List[Category]:
    return session.query(Category).order_by(Category.name.asc()).all()


def get_category(session: Session, category_id: int) -> Category:
    category = session.query(Category).filter(Category.id == category_id).first()
    if category is None:
        raise NotFound(f"Category with id {category_id} not found")
    return category


def _check_category_name(session: Session, name: str, exclude_id: Optional[int] = None):
    query = session.query(Category).filter(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    if query.first() is not None:
        raise Conflict(f"Category '{name}' already exists")


def create_category(session: Session, name: str) -> Category:
    _check_category_name(session, name)
    category = Category(name=name)
    session.add(category)
    _commit(session, f"Category '{name}' already exists")
    session.refresh(category)
    return category


def update_category(session: Session, category_id: int, name: str) -> Category:
    category = get_category(session, category_id)
    _check_category_name(session, name, exclude_id=category_id)
    category.name = name
    _commit(session, f"Category '{name}' already exists")
    session.refresh(category)
    return category


def delete_category(session: Session, category_id: int) -> None:
    category = get_category(session, category_id)
    session.delete(category)
    session.commit()


def get_or_create_category(session: Session, name: str) -> Category:
    """Case-insensitive lookup by name; creates the category if missing."""
    category = session.query(Category).filter(func.lower(Category.name) == name.lower()).first()
    if category is None:
        category = Category(name=name)
        session.add(category)
        session.flush()
    return category


def _resolve_categories(session: Session, category_ids: Iterable[int]) -> List[Category]:
    wanted = list(dict.fromkeys(category_ids))
    if not wanted:
        return []
    found = {c.id: c for c in session.query(Category).filter(Category.id.in_(wanted)).all()}
    for category_id in wanted:
        if category_id not in found:
            raise NotFound(f"Category with id {category_id} not found")
    return [found[category_id] for category_id in wanted]


# Books


def list_books(
    session: Session,
    search: Optional[str] = None,
    available: Optional[bool] = None,
    category_ids: Optional[List[int]] = None,
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = None,
    page: int = 1,
    limit: int = 25,
) -> Page:
    """
    Search books by title, author or ISBN with optional filters.

    category_ids matches books tagged with any of the given categories.
    """
    query = session.query(Book).options(selectinload(Book.categories))

    if search:
        pattern = f"%{search.lower()}%"
        query = query.filter(
            or_(
                func.lower(Book.title).like(pattern),
                func.lower(Book.author).like(pattern),
                func.lower(Book.isbn).like(pattern),
            )
        )
    if available is not None:
        query = query.filter(Book.available == available)
    if category_ids:
        tagged = select(book_categories.c.book_id).where(
            book_categories.c.category_id.in_(category_ids)
        )
        query = query.filter(Book.id.in_(tagged))

    query = query.order_by(_ordering(BOOK_SORT_COLUMNS, sort_by, sort_order), Book.id.asc())
    return paginate(query, page, limit)


def get_book(session: Session, book_id: int) -> Book:
    book = session.query(Book).filter(Book.id == book_id).first()
    if book is None:
        raise NotFound(f"Book with id {book_id} not found")
    return book


def _check_isbn(session: Session, isbn: Optional[str], exclude_id: Optional[int] = None):
    if not isbn:
        return
    query = session.query(Book).filter(Book.isbn == isbn)
    if exclude_id is not None:
        query = query.filter(Book.id != exclude_id)
    if query.first() is not None:
        raise Conflict(f"Book with ISBN {isbn} already exists")


def create_book(session: Session, data) -> Book:
    """
    Create a book from a BookCreate schema.

    Raises:
        NotFound: one of data.category_ids does not exist
        Conflict: the ISBN is already used by another book
    """
    _check_isbn(session, data.isbn)
    categories = _resolve_categories(session, data.category_ids)

    book = Book(**data.model_dump(exclude={"category_ids"}), available=True)
    book.categories = categories
    session.add(book)
    _commit(session, f"Book with ISBN {data.isbn} already exists")
    session.refresh(book)
    return book


def update_book(session: Session, book_id: int, data) -> Book:
    """
    Apply a partial BookUpdate.

    Availability is not part of the update; it follows loan state only.
    """
    book = get_book(session, book_id)
    update_data = data.model_dump(exclude_unset=True)

    category_ids = update_data.pop("category_ids", None)
    for required in ("title", "author"):
        if required in update_data and update_data[required] is None:
            raise ValidationError(f"{required.capitalize()} cannot be empty")

    if update_data.get("isbn") and update_data["isbn"] != book.isbn:
        _check_isbn(session, update_data["isbn"], exclude_id=book_id)

    for key, value in update_data.items():
        setattr(book, key, value)
    if category_ids is not None:
        book.categories = _resolve_categories(session, category_ids)

    _commit(session, f"Book with ISBN {book.isbn} already exists")
    session.refresh(book)
    return book


def delete_book(session: Session, book_id: int) -> None:
    book = get_book(session, book_id)
    session.delete(book)
    session.commit()


# Members


def list_members(
    session: Session,
    search: Optional[str] = None,
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = None,
    page: int = 1,
    limit: int = 25,
) -> Page:
    query = session.query(Member)

    if search:
        pattern = f"%{search.lower()}%"
        query = query.filter(
            or_(
                func.lower(Member.name).like(pattern),
                func.lower(Member.email).like(pattern),
                func.lower(Member.phone).like(pattern),
            )
        )

    query = query.order_by(_ordering(MEMBER_SORT_COLUMNS, sort_by, sort_order), Member.id.asc())
    return paginate(query, page, limit)


def get_member(session: Session, member_id: int) -> Member:
    member = session.query(Member).filter(Member.id == member_id).first()
    if member is None:
        raise NotFound(f"Member with id {member_id} not found")
    return member


def find_member_by_email(session: Session, email: str) -> Optional[Member]:
    return session.query(Member).filter(func.lower(Member.email) == email.lower()).first()


def _check_email(session: Session, email: str, exclude_id: Optional[int] = None):
    existing = find_member_by_email(session, email)
    if existing is not None and existing.id != exclude_id:
        raise Conflict(f"Member with email {email} already exists")


def create_member(session: Session, data) -> Member:
    _check_email(session, data.email)
    member = Member(**data.model_dump())
    session.add(member)
    _commit(session, f"Member with email {data.email} already exists")
    session.refresh(member)
    return member


def update_member(session: Session, member_id: int, data) -> Member:
    member = get_member(session, member_id)
    update_data = data.model_dump(exclude_unset=True)

    for required in ("name", "email"):
        if required in update_data and update_data[required] is None:
            raise ValidationError(f"{required.capitalize()} cannot be empty")
    if "email" in update_data and update_data["email"] != member.email:
        _check_email(session, update_data["email"], exclude_id=member_id)

    for key, value in update_data.items():
        setattr(member, key, value)

    _commit(session, f"Member with email {member.email} already exists")
    session.refresh(member)
    return member


def delete_member(session: Session, member_id: int) -> None:
    """
    Delete a member together with all of its loans.

    The member row is locked first, as borrow does, and availability is
    recomputed in SQL after the delete is flushed, so a book whose open loan
    disappeared in the database cascade becomes available in the same commit.
    """
    try:
        member = (
            session.query(Member).filter(Member.id == member_id).with_for_update().first()
        )
        if member is None:
            raise NotFound(f"Member with id {member_id} not found")

        session.delete(member)
        session.flush()
        loans.sync_availability(session)
        session.commit()
    except Exception:
        session.rollback()
        raise


# Dashboard


def dashboard_stats(session: Session, now: datetime) -> dict:
    """
    Headline counts for the dashboard.

    active_loans counts every open loan, overdue ones included.
    """
    open_loans = Loan.return_date.is_(None)
    return {
        "total_books": session.query(func.count(Book.id)).scalar(),
        "available_books": session.query(func.count(Book.id))
        .filter(Book.available.is_(True))
        .scalar(),
        "total_members": session.query(func.count(Member.id)).scalar(),
        "active_loans": session.query(func.count(Loan.id)).filter(open_loans).scalar(),
        "overdue_loans": session.query(func.count(Loan.id))
        .filter(loans.status_condition(loans.LoanStatus.OVERDUE, now))
        .scalar(),
    }
