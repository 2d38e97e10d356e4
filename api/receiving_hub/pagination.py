# receiving_hub/pagination.py
from __future__ import annotations
import math
from typing import Generic, List, Sequence, TypeVar

from fastapi import Query, Request
from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class PageParams(BaseModel):
    page: int = 1
    items_per_page: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.items_per_page


class PaginationMeta(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_previous_page: bool


class Page(BaseModel, Generic[T]):
    items: List[T]
    pagination: PaginationMeta


def page_params(
    request: Request,
    page: int = Query(1, ge=1),
    items_per_page: int | None = Query(None, ge=1),
) -> PageParams:
    """Clamp page size to the configured maximum instead of rejecting it."""
    settings = request.app.state.settings
    size = items_per_page or settings.DEFAULT_PAGE_SIZE
    return PageParams(page=page, items_per_page=min(size, settings.MAX_PAGE_SIZE))


async def paginate(
    db: AsyncSession,
    stmt: Select,
    params: PageParams,
    options: Sequence = (),
) -> tuple[list, PaginationMeta]:
    """Run ``stmt`` for one page; returns (rows, metadata). Loader ``options`` apply to the page query only."""
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await db.execute(count_stmt)).scalar() or 0

    result = await db.execute(stmt.options(*options).limit(params.items_per_page).offset(params.offset))
    rows = list(result.scalars().unique())

    total_pages = math.ceil(total / params.items_per_page) if total else 0
    meta = PaginationMeta(
        current_page=params.page,
        total_pages=total_pages,
        total_items=total,
        items_per_page=params.items_per_page,
        has_next_page=params.page < total_pages,
        has_previous_page=params.page > 1,
    )
    return rows, meta
