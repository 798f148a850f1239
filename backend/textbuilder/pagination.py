"""Page/limit helpers shared by list endpoints."""

import math
from typing import Dict, Any, Tuple

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def page_window(page: int, limit: int) -> Tuple[int, int]:
    """Return (skip, limit) for a 1-based page."""
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    return (page - 1) * limit, limit


def build_pagination(total: int, page: int, limit: int) -> Dict[str, Any]:
    skip, limit = page_window(page, limit)
    return {
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
        "currentPage": max(1, page),
        "hasNext": skip + limit < total,
        "hasPrev": skip > 0,
    }
