import math


def paginate(query, page: int = 1, limit: int = 20):
    """Apply page/limit to a query; returns (items, pagination dict)"""
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 20), 1), 200)
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }
