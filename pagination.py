import math
from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


@dataclass
class PageResult(Generic[T]):
    items: List[T] = field(default_factory=list)
    current_page: int = 1
    page_size: int = 10
    total_count: int = 0
    total_pages: int = 0

    def meta(self) -> dict:
        """Pagination metadata as echoed in the X-Pagination header."""
        return {
            "totalCount": self.total_count,
            "pageSize": self.page_size,
            "currentPage": self.current_page,
            "totalPages": self.total_pages,
        }

    def map(self, fn) -> "PageResult":
        return PageResult([fn(i) for i in self.items], self.current_page, self.page_size,
                          self.total_count, self.total_pages)


def clamp_page_params(page_number: Optional[int], page_size: Optional[int],
                      default_page_size: int = 10, max_page_size: int = 100):
    """page_number >= 1, page_size within [1, max_page_size]; None means default."""
    page_number = max(1, page_number or 1)
    if page_size is None:
        page_size = default_page_size
    page_size = min(max(1, page_size), max_page_size)
    return page_number, page_size


def total_pages_for(total_count: int, page_size: int) -> int:
    return math.ceil(total_count / page_size) if total_count else 0


async def paginate(
    db: AsyncSession,
    stmt,
    page_number: Optional[int],
    page_size: Optional[int],
    order_by,
    *,
    options: Sequence[Any] = (),
    default_page_size: int = 10,
    max_page_size: int = 100,
) -> PageResult:
    """Run one page of `stmt` in the database.

    COUNT and OFFSET/LIMIT are pushed to SQL; the full collection is never
    loaded. `order_by` must be a stable unique key (the primary key) so
    successive pages do not overlap or skip rows. A page past the end
    returns no items, reports the last page as current and never reaches
    the row query.
    """
    page_number, page_size = clamp_page_params(page_number, page_size, default_page_size, max_page_size)

    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total_count = (await db.execute(count_stmt)).scalar() or 0
    total_pages = total_pages_for(total_count, page_size)

    page = PageResult(
        current_page=min(page_number, total_pages) if total_pages else 1,
        page_size=page_size,
        total_count=total_count,
        total_pages=total_pages,
    )
    if page_number > total_pages:
        return page

    page_stmt = (
        stmt.order_by(None)
        .order_by(order_by)
        .offset((page_number - 1) * page_size)
        .limit(page_size)
    )
    if options:
        page_stmt = page_stmt.options(*options)
    page.items = list((await db.execute(page_stmt)).scalars().all())
    return page
