from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional


class AppException(Exception):
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(detail)


def isoformat(value: Optional[Any]) -> Optional[str]:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def to_dict(record, exclude: Iterable[str] = ()) -> Dict[str, Any]:
    """Serialize a SQLAlchemy row into a JSON-ready dict"""
    skip = set(exclude)
    data = {}
    for column in record.__table__.columns:
        if column.name in skip:
            continue
        data[column.name] = isoformat(getattr(record, column.key))
    return data


# Pagination helper
def paginate_query(query, page: int = 1, per_page: int = 20):
    """Add pagination to SQLAlchemy query"""
    page = max(page, 1)
    total = query.count()
    items = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": items,
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": (total + per_page - 1) // per_page
    }


def format_currency(value: float) -> str:
    return f"£{value:,.2f}"


def format_percentage(value: float) -> str:
    return f"{value:.2f}%"


def percentage_change(current: float, previous: Optional[float]) -> float:
    if not previous:
        return 0.0
    return ((current - previous) / abs(previous)) * 100
