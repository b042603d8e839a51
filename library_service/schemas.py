import re
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
ISBN10_RE = re.compile(r"^(?:\d{9}X|\d{10})$")
ISBN13_RE = re.compile(r"^\d{13}$")


def normalize_isbn(value: Optional[str]) -> Optional[str]:
    """
    Strip hyphens and spaces and check the ISBN-10/ISBN-13 shape.

    Returns None for an empty value; raises ValueError for a malformed one.
    """
    if value is None:
        return None
    cleaned = re.sub(r"[-\s]", "", value).upper()
    if not cleaned:
        return None
    if not (ISBN10_RE.match(cleaned) or ISBN13_RE.match(cleaned)):
        raise ValueError("Invalid ISBN format. Must be ISBN-10 or ISBN-13")
    return cleaned


def normalize_email(value: str) -> str:
    cleaned = value.strip().lower()
    if not EMAIL_RE.match(cleaned):
        raise ValueError("Valid email is required")
    return cleaned


def _strip(value):
    # Trim and drop angle brackets, like the form inputs the API serves.
    if isinstance(value, str):
        return value.strip().replace("<", "").replace(">", "")
    return value


def _optional_text(value):
    value = _strip(value)
    return value or None


class CategoryBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip(value)


class CategoryCreate(CategoryBase):
    pass


class Category(CategoryBase):
    """
    Schema for category responses.

    from_attributes lets the schema read ORM objects directly.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int


class BookBase(BaseModel):
    """Base schema with common book fields."""

    title: str = Field(..., min_length=1, max_length=500)
    author: str = Field(..., min_length=1, max_length=300)
    isbn: Optional[str] = None
    cover_image_path: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = Field(None, max_length=5000)

    @field_validator("title", "author", mode="before")
    @classmethod
    def strip_required(cls, value):
        return _strip(value)

    @field_validator("cover_image_path", "description", mode="before")
    @classmethod
    def strip_optional(cls, value):
        return _optional_text(value)

    @field_validator("isbn", mode="before")
    @classmethod
    def check_isbn(cls, value):
        return normalize_isbn(value)


class BookCreate(BookBase):
    """
    Schema for creating a new book.

    category_ids tags the book on creation; availability is never taken
    from the client, a new book is always available.
    """

    category_ids: List[int] = Field(default_factory=list)


class BookUpdate(BaseModel):
    """
    Schema for updating a book.

    All fields are optional to support partial updates. category_ids,
    when present, replaces the book's categories.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    author: Optional[str] = Field(None, min_length=1, max_length=300)
    isbn: Optional[str] = None
    cover_image_path: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = Field(None, max_length=5000)
    category_ids: Optional[List[int]] = None

    @field_validator("title", "author", mode="before")
    @classmethod
    def strip_required(cls, value):
        return _strip(value)

    @field_validator("cover_image_path", "description", mode="before")
    @classmethod
    def strip_optional(cls, value):
        return _optional_text(value)

    @field_validator("isbn", mode="before")
    @classmethod
    def check_isbn(cls, value):
        return normalize_isbn(value)


class Book(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    author: str
    isbn: Optional[str] = None
    available: bool
    cover_image_path: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime
    categories: List[Category] = []


class MemberBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., max_length=320)
    phone: Optional[str] = Field(None, max_length=50)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip(value)

    @field_validator("phone", mode="before")
    @classmethod
    def strip_phone(cls, value):
        return _optional_text(value)

    @field_validator("email", mode="before")
    @classmethod
    def check_email(cls, value):
        if not isinstance(value, str):
            raise ValueError("Valid email is required")
        return normalize_email(value)


class MemberCreate(MemberBase):
    pass


class MemberUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[str] = Field(None, max_length=320)
    phone: Optional[str] = Field(None, max_length=50)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip(value)

    @field_validator("phone", mode="before")
    @classmethod
    def strip_phone(cls, value):
        return _optional_text(value)

    @field_validator("email", mode="before")
    @classmethod
    def check_email(cls, value):
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("Valid email is required")
        return normalize_email(value)


class Member(MemberBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime


class LoanCreate(BaseModel):
    """
    Schema for borrowing a book.

    Ids must be positive JSON integers; strings such as "5" are rejected
    rather than coerced.
    """

    book_id: int = Field(..., gt=0, strict=True)
    member_id: int = Field(..., gt=0, strict=True)


class LoanReturnByBook(BaseModel):
    book_id: int = Field(..., gt=0, strict=True)


class Loan(BaseModel):
    """
    Schema for loan responses.

    return_date is null while the loan is open.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    book_id: int
    member_id: int
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    status: Literal["active", "overdue", "returned"]


class LoanWithDetails(Loan):
    book_title: str
    book_author: str
    book_isbn: Optional[str] = None
    member_name: str
    member_email: str


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class BookPage(BaseModel):
    data: List[Book]
    pagination: Pagination


class MemberPage(BaseModel):
    data: List[Member]
    pagination: Pagination


class LoanPage(BaseModel):
    data: List[LoanWithDetails]
    pagination: Pagination


class SweepResult(BaseModel):
    count: int
    loan_ids: List[int]


class DashboardStats(BaseModel):
    total_books: int
    available_books: int
    total_members: int
    active_loans: int
    overdue_loans: int


class ImportResult(BaseModel):
    message: str
    imported: int
    errors: List[str] = []


class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=6, max_length=200)
    role: Literal["admin", "member"] = "member"

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, value):
        return _strip(value)


class UserUpdate(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    role: Literal["admin", "member"]

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, value):
        return _strip(value)


class PasswordChange(BaseModel):
    current_password: Optional[str] = None
    new_password: str = Field(..., min_length=6, max_length=200)


class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    role: Literal["admin", "member"]
    created_at: datetime


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: User


class SetupStatus(BaseModel):
    setup_needed: bool


class SystemInfo(BaseModel):
    name: str
    version: str
    environment: str
    database_connected: bool
    overdue_checks_enabled: bool
    overdue_check_interval: int
