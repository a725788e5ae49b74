"""
Common Pydantic schemas used across the application.
"""

from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class PaginationParams(BaseModel):
    """Pagination parameters for list endpoints"""

    page: int = Field(default=1, ge=1, description="Page number (starts from 1)")
    page_size: int = Field(default=50, ge=1, le=1000, description="Number of items per page")

    @property
    def offset(self) -> int:
        """Calculate offset for database queries"""
        return (self.page - 1) * self.page_size


class PaginatedResponse(BaseModel, Generic[T]):
    """Paginated response wrapper"""

    items: list[T] = Field(description="List of items")
    total_count: int = Field(description="Total number of items")
    page: int = Field(description="Current page number")
    page_size: int = Field(description="Number of items per page")
    total_pages: int = Field(description="Total number of pages")
    has_next: bool = Field(description="Whether there are more pages")
    has_previous: bool = Field(description="Whether there are previous pages")

    @classmethod
    def build(cls, items: list[T], total_count: int, pagination: PaginationParams) -> "PaginatedResponse[T]":
        total_pages = (total_count + pagination.page_size - 1) // pagination.page_size
        return cls(
            items=items,
            total_count=total_count,
            page=pagination.page,
            page_size=pagination.page_size,
            total_pages=total_pages,
            has_next=pagination.page < total_pages,
            has_previous=pagination.page > 1,
        )


class HealthCheckResponse(BaseModel):
    """Health check response schema"""

    status: str = Field(description="Overall health status")
    version: str = Field(description="Application version")
    environment: str = Field(description="Environment (development/production)")
    database: dict[str, Any] = Field(description="Database health information")
    services: dict[str, str] = Field(description="Service status map")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="Health check timestamp"
    )


class DeletedResponse(BaseModel):
    """Response for resource deletion"""

    id: str = Field(description="ID of deleted resource")
    resource_type: str = Field(description="Type of resource deleted")
    message: str = Field(default="Resource deleted successfully", description="Success message")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC), description="Deletion timestamp")


class OperationResult(BaseModel, Generic[T]):
    """Generic operation result wrapper"""

    success: bool = Field(description="Whether operation was successful")
    operation_id: str | None = Field(default=None, description="Unique operation identifier")
    operation_type: str = Field(description="Type of operation performed")
    result: T | None = Field(default=None, description="Operation result data")
    error_message: str | None = Field(default=None, description="Error message if operation failed")
    warnings: list[str] = Field(default_factory=list, description="Warning messages")
    execution_time_ms: int | None = Field(default=None, description="Operation execution time in milliseconds")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC), description="Operation timestamp")

    model_config = ConfigDict(arbitrary_types_allowed=True)
