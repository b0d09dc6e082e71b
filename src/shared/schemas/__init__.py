from src.shared.schemas.base import (
    BaseSchema,
    ErrorDetail,
    ErrorResponse,
    PageQuery,
    PaginatedResponse,
    SuccessResponse,
)

__all__ = [
    "BaseSchema",
    "ErrorDetail",
    "ErrorResponse",
    "PageQuery",
    "PaginatedResponse",
    "SuccessResponse",
]
