from typing import Any, Dict
from math import ceil


def paginate(page: int, limit: int, total: int) -> Dict[str, Any]:
    """
    Create pagination response
    """
    total_pages = ceil(total / limit) if limit > 0 else 0

    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1
    }
