import math
from typing import Callable

from fastapi import Query

from hc_registry.core.models.base import CamelModel
from hc_registry.settings import settings


class PageParams(CamelModel):
    page: int = 1
    limit: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PaginationBase(CamelModel):
    current_page: int
    total_pages: int
    has_next: bool
    has_prev: bool


class CreditPagination(PaginationBase):
    total_credits: int


class UserPagination(PaginationBase):
    total_users: int


def page_params(default_limit: int) -> Callable[..., PageParams]:
    """Build a FastAPI dependency reading ``page`` and ``limit`` query params."""

    def _dependency(
        page: int = Query(1, ge=1),
        limit: int = Query(default_limit, ge=1, le=settings.MAX_PAGE_LIMIT),
    ) -> PageParams:
        return PageParams(page=page, limit=limit)

    return _dependency


def pagination_fields(params: PageParams, total: int) -> dict[str, int | bool]:
    total_pages = math.ceil(total / params.limit) if total else 0
    return {
        "current_page": params.page,
        "total_pages": total_pages,
        "has_next": params.page * params.limit < total,
        "has_prev": params.page > 1,
    }
