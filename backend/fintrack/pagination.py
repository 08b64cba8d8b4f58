"""
Page metadata for listing endpoints.

Listings respond with ``{"data": [...], "meta": PageMeta.to_dict()}``.
"""
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from sqlalchemy.orm import Query

from fintrack.errors import ValidationError

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class PageMeta:
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool
    skip: int

    def to_dict(self) -> dict:
        return {
            "page": self.page,
            "pageSize": self.page_size,
            "totalCount": self.total_count,
            "totalPages": self.total_pages,
            "hasNextPage": self.has_next_page,
            "hasPreviousPage": self.has_previous_page,
        }


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"invalid {name}", field=name)
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.strip().isdecimal():
        parsed = int(value.strip())
    else:
        raise ValidationError(f"invalid {name}", field=name)
    if parsed <= 0:
        raise ValidationError(f"invalid {name}", field=name)
    return parsed


def parse_page_param(raw: Optional[str], default: int, name: str = "page") -> int:
    """
    Parse a query-string page parameter.

    Missing or empty values fall back to ``default``; anything that is not a
    positive integer raises ``ValidationError("invalid <name>")``.
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    return _positive_int(raw, name)


def paginate(page: Any, page_size: Any, total_count: int) -> PageMeta:
    """
    Compute page metadata.

    Args:
        page: 1-based page number (int or numeric string)
        page_size: rows per page, clamped to MAX_PAGE_SIZE
        total_count: number of rows matching the listing

    Returns:
        PageMeta, where an empty listing still has one (empty) page
    """
    page = _positive_int(page, "page")
    page_size = min(_positive_int(page_size, "pageSize"), MAX_PAGE_SIZE)

    total_pages = max(1, math.ceil(total_count / page_size))
    return PageMeta(
        page=page,
        page_size=page_size,
        total_count=total_count,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_previous_page=page > 1,
        skip=(page - 1) * page_size,
    )


def paginate_query(query: Query, page: Any, page_size: Any) -> Tuple[List[Any], PageMeta]:
    """Count an ordered query, then fetch the rows of the requested page."""
    total_count = query.order_by(None).count()
    meta = paginate(page, page_size, total_count)
    rows = query.offset(meta.skip).limit(meta.page_size).all()
    return rows, meta
