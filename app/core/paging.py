from dataclasses import dataclass
from typing import Any, Literal
from fastapi import Query

@dataclass
class PageParams:
    page: int = 1
    limit: int = 10
    sort_by: str = "created_at"
    sort_order: Literal["asc", "desc"] | None = None

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

def page_params(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str | None = Query(None, alias="sortBy"),
    sort_order: Literal["asc", "desc"] | None = Query(None, alias="sortOrder"),
) -> PageParams:
    return PageParams(page=page, limit=limit, sort_by=sort_by or "created_at", sort_order=sort_order)

def page_of(data: list[Any], total: int, params: PageParams) -> dict:
    return {"meta": {"page": params.page, "limit": params.limit, "total": total}, "data": data}

def order_clause(model, params: PageParams, allowed: set[str], default: str = "created_at", default_order: str = "asc"):
    column = getattr(model, params.sort_by if params.sort_by in allowed else default)
    return column.desc() if (params.sort_order or default_order) == "desc" else column.asc()
