from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Query

from library_service.config import settings
from library_service.database import SessionLocal
from library_service.models import utcnow


def get_clock() -> Callable[[], datetime]:
    """
    Dependency providing the time source for loan operations.

    Tests override it with a fixed or steppable clock.
    """
    return utcnow


def get_session_factory():
    """Session factory for work that manages its own transactions (the sweep)."""
    return SessionLocal


@dataclass
class PageParams:
    page: int
    limit: int


def page_params(
    page: int = Query(1, ge=1, description="Page number (1-based)"),
    limit: Optional[int] = Query(
        None, ge=1, le=settings.max_page_size, description="Items per page"
    ),
) -> PageParams:
    return PageParams(page=page, limit=limit or settings.default_page_size)


def parse_id_list(raw: Optional[str]):
    """Turn "1, 2,x,3" into [1, 2, 3]; entries that are not integers are ignored."""
    if not raw:
        return []
    ids = []
    for part in raw.split(","):
        part = part.strip()
        if part.isdigit():
            ids.append(int(part))
    return ids
