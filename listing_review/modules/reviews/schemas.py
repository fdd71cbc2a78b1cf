from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from listing_review.modules.pipeline.schemas import AgentViolation, ReviewStatus, Verdict


class ListingCreate(BaseModel):
    """Listing submitted for review."""

    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(..., min_length=1, max_length=20_000)
    category: str = Field(..., min_length=1, max_length=200)
    image_urls: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    tenant_id: str | None = Field(
        default=None, description="Defaults to the configured default tenant"
    )


class ReviewSubmitResponse(BaseModel):
    review_id: str


class ReviewStatusResponse(BaseModel):
    review_id: str
    status: ReviewStatus
    verdict: Verdict | None = None
    confidence: float | None = None
    explanation: str | None = None
    violations: list[AgentViolation] = Field(default_factory=list)
    error: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
