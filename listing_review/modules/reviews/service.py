"""Submission and status service behind the HTTP adapter.

Status polling doubles as a reaper: a review still ``pending`` after the
staleness window is assumed lost by the queue, moved to ``routing`` and
re-enqueued with the same identifiers.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog

from listing_review.core.errors import NotFoundError
from listing_review.modules.pipeline.queue import ReviewQueue
from listing_review.modules.pipeline.schemas import Review, ReviewJob
from listing_review.modules.reviews.repository import ListingRepository, ReviewRepository
from listing_review.modules.reviews.schemas import (
    ListingCreate,
    ReviewStatusResponse,
    ReviewSubmitResponse,
)

logger = structlog.get_logger()

DEFAULT_STALE_AFTER_SECONDS = 120


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReviewService:
    def __init__(
        self,
        reviews: ReviewRepository,
        listings: ListingRepository,
        queue: ReviewQueue,
        default_tenant_id: str,
        stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.reviews = reviews
        self.listings = listings
        self.queue = queue
        self.default_tenant_id = default_tenant_id
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self.clock = clock

    async def submit(self, data: ListingCreate) -> ReviewSubmitResponse:
        tenant_id = data.tenant_id or self.default_tenant_id
        listing, review = await self.reviews.create_with_listing(tenant_id, data)

        await self.queue.enqueue(
            ReviewJob(review_id=review.id, listing_id=listing.id, tenant_id=tenant_id)
        )
        logger.info("Review submitted", review_id=review.id, listing_id=listing.id, tenant_id=tenant_id)
        return ReviewSubmitResponse(review_id=review.id)

    async def get_status(self, review_id: str) -> ReviewStatusResponse:
        review = await self.reviews.get_by_id(review_id)
        if review is None:
            raise NotFoundError(f"Review {review_id} not found")

        if self.is_stuck(review):
            review = await self._requeue(review)

        violations = await self.reviews.get_violations(review.id) if review.verdict else []
        trace = review.trace or {}
        return ReviewStatusResponse(
            review_id=review.id,
            status=review.status,
            verdict=review.verdict,
            confidence=review.confidence,
            explanation=review.explanation,
            violations=violations,
            error=trace.get("error") if review.status == "failed" else None,
            created_at=review.created_at,
            updated_at=review.updated_at,
        )

    def is_stuck(self, review: Review) -> bool:
        created_at = review.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return review.status == "pending" and self.clock() - created_at > self.stale_after

    async def _requeue(self, review: Review) -> Review:
        listing = await self.listings.get_by_id(review.listing_id)
        tenant_id = listing.tenant_id if listing else self.default_tenant_id

        updated = await self.reviews.transition_status(review.id, "pending", "routing")
        if updated is None:
            # another poll or a worker moved it first
            current = await self.reviews.get_by_id(review.id)
            return current or review

        await self.queue.enqueue(
            ReviewJob(review_id=review.id, listing_id=review.listing_id, tenant_id=tenant_id)
        )
        logger.warning(
            "Stuck review re-enqueued",
            review_id=review.id,
            tenant_id=tenant_id,
            pending_since=review.created_at.isoformat(),
        )
        return updated
