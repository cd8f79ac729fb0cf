"""Standardized API response helpers.

Paginated endpoints return:
    {"items": [...], "total": <int>, "skip": <int>, "limit": <int>, "has_more": <bool>}
"""


def paginated_response(
    items: list,
    total: int,
    skip: int = 0,
    limit: int = 50,
) -> dict:
    """Wrap a paginated list in the standard envelope."""
    return {
        "items": items,
        "total": total,
        "skip": skip,
        "limit": limit,
        "has_more": (skip + len(items)) < total,
    }
