"""Pagination helpers."""

import math
from typing import Any

MAX_PAGE_SIZE = 100


def paginate(page: int, limit: int, max_limit: int = MAX_PAGE_SIZE) -> tuple[int, int, int]:
    """Clamp page/limit; return (page, limit, skip)."""
    page = max(1, page)
    limit = max(1, min(limit, max_limit))
    return page, limit, (page - 1) * limit


def page_meta(page: int, limit: int, total: int) -> dict[str, Any]:
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total_records": total,
        "limit": limit,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }
