"""
CSV bulk import and export.

Imports are forgiving: bad rows are skipped and reported, good rows are
committed together. Exports carry a UTF-8 byte order mark so spreadsheet
applications pick up non-ASCII text correctly.
"""

import csv
import io
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session, selectinload

from library_service import catalog, loans
from library_service.errors import ValidationError
from library_service.models import Book, Loan, Member
from library_service.schemas import normalize_email, normalize_isbn


BOM = "\ufeff"

BOOK_EXPORT_HEADERS = [
    "id",
    "title",
    "author",
    "isbn",
    "available",
    "cover_image_path",
    "categories",
    "created_at",
]
MEMBER_EXPORT_HEADERS = ["id", "name", "email", "phone", "created_at"]
LOAN_EXPORT_HEADERS = [
    "id",
    "book_title",
    "book_author",
    "book_isbn",
    "member_name",
    "member_email",
    "borrow_date",
    "due_date",
    "return_date",
    "status",
]


def parse_csv(content: bytes) -> List[Tuple[int, Dict[str, str]]]:
    """
    Parse an uploaded CSV file with a header row.

    Returns (row_number, record) pairs where row_number counts the header
    as row 1. Header names are lower-cased, cells are trimmed and blank
    lines are dropped.
    """
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValidationError(f"Invalid CSV file format: {exc}") from exc

    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise ValidationError("CSV file is empty or contains no valid data rows")
    reader.fieldnames = [(name or "").strip().lower() for name in reader.fieldnames]

    records = []
    try:
        for record in reader:
            cleaned = {
                key: (value or "").strip()
                for key, value in record.items()
                if key and isinstance(value, str)
            }
            if any(cleaned.values()):
                records.append((reader.line_num, cleaned))
    except csv.Error as exc:
        raise ValidationError(f"Invalid CSV file format: {exc}") from exc

    if not records:
        raise ValidationError("CSV file is empty or contains no valid data rows")
    return records


def _summary(noun: str, imported: int, errors: List[str]) -> dict:
    message = f"{imported} {noun} imported"
    if errors:
        message += f", {len(errors)} issues"
    return {"message": message + ".", "imported": imported, "errors": errors}


def import_books(session: Session, content: bytes) -> dict:
    """
    Import books from CSV.

    Columns: title, author, isbn, cover_image_path, description and
    categories (comma separated names, created when missing).
    """
    records = parse_csv(content)
    errors: List[str] = []
    seen_isbns = set()
    imported = 0

    try:
        for row_number, record in records:
            title = record.get("title")
            author = record.get("author")
            if not title or not author:
                errors.append(f"Row {row_number}: Missing required field (title/author)")
                continue

            try:
                isbn = normalize_isbn(record.get("isbn") or None)
            except ValueError:
                errors.append(f"Row {row_number}: Invalid ISBN ({record.get('isbn')})")
                continue

            if isbn and (
                isbn in seen_isbns
                or session.query(Book.id).filter(Book.isbn == isbn).first() is not None
            ):
                errors.append(f"Row {row_number}: Duplicate ISBN ({isbn})")
                continue

            book = Book(
                title=title,
                author=author,
                isbn=isbn,
                cover_image_path=record.get("cover_image_path") or None,
                description=record.get("description") or None,
                available=True,
            )
            session.add(book)
            names = [name.strip() for name in record.get("categories", "").split(",")]
            for name in dict.fromkeys(name for name in names if name):
                category = catalog.get_or_create_category(session, name)
                if category not in book.categories:
                    book.categories.append(category)

            session.flush()
            if isbn:
                seen_isbns.add(isbn)
            imported += 1

        session.commit()
    except Exception:
        session.rollback()
        raise

    return _summary("books", imported, errors)


def import_members(session: Session, content: bytes) -> dict:
    """Import members from CSV with columns name, email and phone."""
    records = parse_csv(content)
    errors: List[str] = []
    seen_emails = set()
    imported = 0

    try:
        for row_number, record in records:
            name = record.get("name")
            raw_email = record.get("email")
            if not name or not raw_email:
                errors.append(f"Row {row_number}: Missing required field (name/email)")
                continue

            try:
                email = normalize_email(raw_email)
            except ValueError:
                errors.append(f"Row {row_number}: Invalid email format: {raw_email}")
                continue

            if email in seen_emails or catalog.find_member_by_email(session, email) is not None:
                errors.append(f"Row {row_number}: Member with email {email} already exists")
                continue

            session.add(Member(name=name, email=email, phone=record.get("phone") or None))
            session.flush()
            seen_emails.add(email)
            imported += 1

        session.commit()
    except Exception:
        session.rollback()
        raise

    return _summary("members", imported, errors)


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")
    return str(value)


def to_csv(rows: Sequence[dict], headers: Sequence[str]) -> str:
    """Render rows as CSV text with a BOM, a header line and quoted fields where needed."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_cell(row.get(header)) for header in headers])
    return BOM + buffer.getvalue()


def _date_bounds(column, start_date: Optional[date], end_date: Optional[date]):
    # end_date is inclusive: everything before the following midnight.
    conditions = []
    if start_date is not None:
        conditions.append(column >= datetime.combine(start_date, time.min))
    if end_date is not None:
        conditions.append(column < datetime.combine(end_date + timedelta(days=1), time.min))
    return conditions


def export_books(
    session: Session, start_date: Optional[date] = None, end_date: Optional[date] = None
) -> str:
    books = (
        session.query(Book)
        .options(selectinload(Book.categories))
        .filter(*_date_bounds(Book.created_at, start_date, end_date))
        .order_by(Book.id)
        .all()
    )
    rows = [
        {
            "id": book.id,
            "title": book.title,
            "author": book.author,
            "isbn": book.isbn,
            "available": book.available,
            "cover_image_path": book.cover_image_path,
            "categories": "; ".join(category.name for category in book.categories),
            "created_at": book.created_at,
        }
        for book in books
    ]
    return to_csv(rows, BOOK_EXPORT_HEADERS)


def export_members(
    session: Session, start_date: Optional[date] = None, end_date: Optional[date] = None
) -> str:
    members = (
        session.query(Member)
        .filter(*_date_bounds(Member.created_at, start_date, end_date))
        .order_by(Member.id)
        .all()
    )
    rows = [
        {
            "id": member.id,
            "name": member.name,
            "email": member.email,
            "phone": member.phone,
            "created_at": member.created_at,
        }
        for member in members
    ]
    return to_csv(rows, MEMBER_EXPORT_HEADERS)


def export_loans(
    session: Session,
    now: datetime,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[str] = None,
) -> str:
    query = loans.query_loans(session, now, status=status)
    query = query.filter(*_date_bounds(Loan.borrow_date, start_date, end_date))
    rows = [loans.loan_details(loan, now) for loan in query.all()]
    return to_csv(rows, LOAN_EXPORT_HEADERS)
