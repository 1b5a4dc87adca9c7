"""Shared Pydantic schemas for AFT-Engine."""

from typing import Generic, Optional, TypeVar

from fastapi import Query
from pydantic import BaseModel, Field

from aft_engine.common.exceptions import ValidationError

T = TypeVar("T")


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    service: str = "aft-engine"


class ErrorResponse(BaseModel):
    error: str
    code: str
    detail: str = ""


class PaginationParams(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


def pagination_params(
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
) -> PaginationParams:
    """List paging with the configured default and maximum page size."""
    from aft_engine.common.config import get_settings

    settings = get_settings()
    if page_size is None:
        page_size = settings.default_page_size
    elif page_size > settings.max_page_size:
        raise ValidationError(f"page_size must be at most {settings.max_page_size}")
    return PaginationParams(page=page, page_size=page_size)


class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int
