from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Timestamps(BaseModel):
    """Common created/updated timestamp fields."""
    created_at: datetime = Field(..., description="Creation timestamp (UTC)")
    updated_at: datetime = Field(..., description="Last update timestamp (UTC)")


class MessageResponse(BaseModel):
    """Standard message response."""
    message: str = Field(..., description="Human readable message")
    details: Optional[dict] = Field(default=None, description="Optional extra data")


class PaginationMeta(BaseModel):
    """Pagination metadata of a list response."""
    totalItems: int = Field(..., ge=0)
    itemsPerPage: int = Field(..., ge=0)
    currentPage: int = Field(..., ge=1)
    totalPages: int = Field(..., ge=0)
    hasNextPage: bool
    hasPreviousPage: bool


class PrefetchedPage(BaseModel):
    """A page materialized ahead of the requested one."""
    pageNumber: int = Field(..., ge=1)
    items: List[Any] = Field(default_factory=list)


# PUBLIC_INTERFACE
class PaginatedResponse(BaseModel):
    """List envelope shared by every scoped list endpoint."""
    pagination: PaginationMeta
    items: List[Any] = Field(default_factory=list)
    nextPages: List[PrefetchedPage] = Field(default_factory=list)
    stats: Optional[Dict[str, Any]] = Field(default=None, description="Aggregate counts, when the endpoint provides them")


class ErrorInfo(BaseModel):
    """Structured error description."""
    type: str = Field(..., description="Machine-readable error type code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Any] = Field(default=None, description="Optional error details (e.g., validation issues)")


# PUBLIC_INTERFACE
class ErrorResponse(BaseModel):
    """Standardized API error envelope returned by exception handlers."""
    status: int = Field(..., description="HTTP status code")
    error: ErrorInfo = Field(..., description="Error details")
    correlation_id: Optional[str] = Field(default=None, description="Request correlation ID")
    sede_id: Optional[str] = Field(default=None, description="Caller sede (if authenticated)")
    path: Optional[str] = Field(default=None, description="Request path")
    method: Optional[str] = Field(default=None, description="HTTP method")
    timestamp: datetime = Field(..., description="Error timestamp (UTC)")
