from datetime import datetime, timezone
from library_service.database import Base
from sqlalchemy.orm import relationship
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    text,
)


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form every column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


book_categories = Table(
    "book_categories",
    Base.metadata,
    Column("book_id", Integer, ForeignKey("books.id", ondelete="CASCADE"), nullable=False),
    Column(
        "category_id",
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
    ),
    UniqueConstraint("book_id", "category_id", name="uq_book_category"),
)


class Book(Base):
    """
    Book model representing library books.

    Relationships:
    - One book can have many loans over time, at most one of them open
    - Many-to-many with categories through book_categories

    available is a materialized copy of "no open loan exists". Only the
    loan engine writes it, inside the same transaction as the loan change.
    """

    __tablename__ = "books"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False, index=True)
    author = Column(String, nullable=False, index=True)
    isbn = Column(String, unique=True, nullable=True, index=True)
    available = Column(Boolean, default=True, nullable=False)
    cover_image_path = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    categories = relationship(
        "Category",
        secondary=book_categories,
        back_populates="books",
        order_by="Category.name",
    )

    loans = relationship(
        "Loan",
        back_populates="book",
        cascade="all, delete-orphan",
    )


class Member(Base):
    """
    Member model representing library patrons.

    Deleting a member deletes every loan it holds (history included).
    """

    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    phone = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    loans = relationship(
        "Loan",
        back_populates="member",
        cascade="all, delete-orphan",
    )


class Loan(Base):
    """
    Loan model representing one borrowing of a book by a member.

    Business Logic:
    - due_date is always borrow_date + 14 days
    - return_date is null while the loan is open
    - status is a materialized classification (active/overdue/returned)
      kept for the sweep; reads recompute it from the dates

    The partial unique index allows only one open loan per book, so a
    second concurrent borrow fails at insert time even if both requests
    saw the book as available.
    """

    __tablename__ = "loans"
    __table_args__ = (
        Index(
            "uq_loans_open_book",
            "book_id",
            unique=True,
            sqlite_where=text("return_date IS NULL"),
            postgresql_where=text("return_date IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    book_id = Column(Integer, ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    member_id = Column(
        Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True
    )
    borrow_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False, index=True)
    return_date = Column(DateTime, nullable=True)
    status = Column(String(16), default="active", nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    book = relationship("Book", back_populates="loans")
    member = relationship("Member", back_populates="loans")


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False, index=True)

    books = relationship("Book", secondary=book_categories, back_populates="categories")


class User(Base):
    """
    System account used for access control, distinct from Member.

    role is either "admin" or "member".
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    role = Column(String(16), default="member", nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
