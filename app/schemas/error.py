"""Standardized error response schema."""

from typing import Any

from pydantic import BaseModel, Field

from app.schemas.session import Violation


class ErrorResponse(BaseModel):
    """Standard error body for domain exceptions (4xx/5xx)."""

    detail: str = Field(..., description="Human-readable error message")
    code: str = Field(..., description="Machine-readable error code")
    violations: list[Violation] | None = Field(
        None, description="Every cross-entity validation violation, when validation failed"
    )
    context: dict[str, Any] | None = Field(
        None, description="Failing step and cause, when entity creation failed"
    )
