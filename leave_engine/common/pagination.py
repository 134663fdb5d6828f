"""Page/sort query parameters and the LIMIT/OFFSET helper behind list queries."""

import math
from typing import Any, Optional, Sequence

from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


class PaginationParams:
    """List-endpoint dependency: ``pagination: PaginationParams = Depends()``."""

    def __init__(
        self,
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        sort: Optional[str] = Query(
            default=None,
            description='Column name, "-" prefix for descending (e.g. "-start_date")',
        ),
    ) -> None:
        self.page = page
        self.page_size = page_size
        self.sort = sort


class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, *, page: int, page_size: int, total: int) -> "PaginationMeta":
        pages = math.ceil(total / page_size) if total else 0
        return cls(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=pages,
            has_next=page < pages,
            has_prev=page > 1,
        )


def _apply_sort(query: Select, model: Any, sort: str) -> Select:
    column = getattr(model, sort.lstrip("-"), None)
    # Only mapped columns; anything else keeps the caller's ordering
    if column is None or not hasattr(column, "desc"):
        return query
    ordered = column.desc() if sort.startswith("-") else column.asc()
    return query.order_by(None).order_by(ordered, model.id)


async def paginate(
    session: AsyncSession,
    query: Select,
    *,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    sort: Optional[str] = None,
    model: Any = None,
) -> tuple[Sequence[Any], PaginationMeta]:
    """Run *query* for one page and return ``(rows, meta)``.

    The count runs over the unordered query. *sort* must name a mapped
    attribute of *model*; the primary key breaks ties so pages are stable.
    """
    page_size = min(page_size, MAX_PAGE_SIZE)
    if sort and model is not None:
        query = _apply_sort(query, model, sort)

    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    total = (await session.execute(count_query)).scalar_one()

    page_query = query.offset((page - 1) * page_size).limit(page_size)
    rows = (await session.execute(page_query)).scalars().all()
    return rows, PaginationMeta.build(page=page, page_size=page_size, total=total)
