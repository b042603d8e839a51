import math
from dataclasses import dataclass, field
from typing import Any, List

from library_service.errors import ValidationError


@dataclass
class Page:
    """One page of results plus the numbers a client needs to page through."""

    page: int
    limit: int
    total: int
    data: List[Any] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self) -> dict:
        return {
            "data": self.data,
            "pagination": {
                "page": self.page,
                "limit": self.limit,
                "total": self.total,
                "total_pages": self.total_pages,
            },
        }


def paginate(query, page: int, limit: int, transform=None) -> Page:
    """
    Count the full result set, then fetch a single page of it.

    The query must already carry its ORDER BY so pages are stable.
    """
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive integers")

    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    if transform is not None:
        rows = [transform(row) for row in rows]
    return Page(page=page, limit=limit, total=total, data=rows)
