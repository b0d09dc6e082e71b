from typing import Any, Generic, TypeVar

from fastapi import Query
from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class BaseSchema(BaseModel):
    """Base Pydantic schema; reads straight from ORM rows and Core result rows."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class ErrorDetail(BaseSchema):
    field: str | None = None
    message: str


class SuccessResponse(BaseSchema, Generic[T]):
    """Envelope for every successful API response."""

    success: bool = True
    data: T
    message: str | None = None


class ErrorResponse(BaseSchema):
    """
    Envelope for every failed API response.

    `details` carries the structured context of the failure, e.g. the
    outstanding balance of a rejected payment or the occupancy of a full room.
    """

    success: bool = False
    data: None = None
    message: str
    error_code: str
    errors: list[ErrorDetail] = []
    details: dict[str, Any] | None = None


class PageQuery:
    """`page` / `limit` query parameters of list endpoints."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(50, ge=1, le=500),
    ):
        self.page = page
        self.limit = limit


class PaginatedResponse(BaseSchema, Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def create(cls, items: list[T], total: int, page: int, limit: int) -> "PaginatedResponse[T]":
        pages = (total + limit - 1) // limit if limit > 0 else 0
        return cls(items=items, total=total, page=page, limit=limit, pages=pages)

    @classmethod
    def for_query(cls, items: list[T], total: int, query: PageQuery) -> "PaginatedResponse[T]":
        return cls.create(items=items, total=total, page=query.page, limit=query.limit)
