"""Response envelope shared by the import and enrollment endpoints."""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class PaginationMeta(BaseModel):
    """Pagination metadata for list responses."""

    page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, page_size: int, total: int) -> "PaginationMeta":
        return cls(
            page=page,
            page_size=page_size,
            total_items=total,
            total_pages=(total + page_size - 1) // page_size,
            has_next=page * page_size < total,
            has_prev=page > 1,
        )


class APIResponse(BaseModel, Generic[T]):
    """Envelope for every JSON response; errors use the same shape with ``status="error"``."""

    status: str = "success"
    data: T | None = None
    message: str | None = None
    errors: list[dict[str, Any]] | None = None
    pagination: PaginationMeta | None = None
