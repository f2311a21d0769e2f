# pagination.py — page/limit parsing and the {items, pagination} envelope
import math
from dataclasses import dataclass
from typing import Any, Callable, List, Tuple

from fastapi import Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

MAX_LIMIT = 100


@dataclass(frozen=True)
class PageParams:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def page_params(default_limit: int = 20):
    """Dependency factory for ?page=N&limit=M"""
    def _params(
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=default_limit, ge=1, le=MAX_LIMIT),
    ) -> PageParams:
        return PageParams(page=page, limit=limit)
    return _params


def pagination_meta(total: int, page: int, limit: int) -> dict:
    return {
        "currentPage": page,
        "totalPages": math.ceil(total / limit) if limit else 0,
        "totalItems": total,
        "itemsPerPage": limit,
    }


async def paginate(db: AsyncSession, stmt, params: PageParams) -> Tuple[List[Any], dict]:
    """Run stmt for one page and return (rows, pagination meta)."""
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await db.execute(count_stmt)).scalar() or 0
    result = await db.execute(stmt.offset(params.offset).limit(params.limit))
    rows = list(result.scalars().unique().all())
    return rows, pagination_meta(total, params.page, params.limit)


def page_envelope(rows: List[Any], meta: dict, render: Callable[[Any], dict]) -> dict:
    return {"items": [render(r) for r in rows], "pagination": meta}
