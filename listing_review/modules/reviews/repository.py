"""Listing and Review repositories over SQLAlchemy async sessions.

Each method runs in its own session. Writes that must land together
(listing + pending review, verdict + violations) share one transaction.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from listing_review.core.database import as_uuid
from listing_review.core.errors import DatabaseError
from listing_review.modules.pipeline.schemas import (
    AgentViolation,
    Listing,
    Review,
    ReviewStatus,
    Verdict,
)
from listing_review.modules.reviews.models import ListingRecord, ReviewRecord, ViolationRecord
from listing_review.modules.reviews.schemas import ListingCreate

logger = structlog.get_logger()

COMPLETE_STATUS: ReviewStatus = "complete"


def to_listing(record: ListingRecord) -> Listing:
    return Listing(
        id=str(record.id),
        tenant_id=str(record.tenant_id),
        title=record.title,
        description=record.description,
        category=record.category,
        image_urls=list(record.image_urls or []),
        metadata=dict(record.metadata_ or {}),
        created_at=record.created_at,
    )


def to_review(record: ReviewRecord) -> Review:
    return Review(
        id=str(record.id),
        listing_id=str(record.listing_id),
        status=record.status,
        verdict=record.verdict,
        confidence=record.confidence,
        explanation=record.explanation,
        trace=record.trace,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class ListingRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, listing_id: str) -> Listing | None:
        async with self._session_factory() as session:
            record = await session.get(ListingRecord, as_uuid(listing_id, "listing_id"))
            return to_listing(record) if record else None


class ReviewRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, review_id: str) -> Review | None:
        async with self._session_factory() as session:
            record = await session.get(ReviewRecord, as_uuid(review_id, "review_id"))
            return to_review(record) if record else None

    async def create_with_listing(
        self, tenant_id: str, data: ListingCreate
    ) -> tuple[Listing, Review]:
        """Insert the listing and its pending review in one transaction."""
        async with self._session_factory() as session, session.begin():
            listing = ListingRecord(
                tenant_id=as_uuid(tenant_id, "tenant_id"),
                title=data.title,
                description=data.description,
                category=data.category,
                image_urls=list(data.image_urls),
                metadata_=dict(data.metadata),
            )
            session.add(listing)
            await session.flush()

            review = ReviewRecord(listing_id=listing.id, status="pending")
            session.add(review)
            await session.flush()
            await session.refresh(listing)
            await session.refresh(review)

            return to_listing(listing), to_review(review)

    async def update_status(
        self,
        review_id: str,
        status: ReviewStatus,
        trace: dict[str, Any] | None = None,
    ) -> Review:
        """Set status; the stored trace is replaced only when one is given."""
        values: dict[str, Any] = {"status": status, "updated_at": func.now()}
        if trace is not None:
            values["trace"] = trace

        stmt = (
            update(ReviewRecord)
            .where(ReviewRecord.id == as_uuid(review_id, "review_id"))
            .values(**values)
            .returning(ReviewRecord)
        )
        async with self._session_factory() as session, session.begin():
            record = (await session.execute(stmt)).scalar_one_or_none()
            if record is None:
                raise DatabaseError(f"Failed to update review status: {review_id}")
            return to_review(record)

    async def transition_status(
        self,
        review_id: str,
        from_status: ReviewStatus,
        to_status: ReviewStatus,
    ) -> Review | None:
        """Compare-and-set on status. Returns None when the review was not in ``from_status``."""
        stmt = (
            update(ReviewRecord)
            .where(
                ReviewRecord.id == as_uuid(review_id, "review_id"),
                ReviewRecord.status == from_status,
            )
            .values(status=to_status, updated_at=func.now())
            .returning(ReviewRecord)
        )
        async with self._session_factory() as session, session.begin():
            record = (await session.execute(stmt)).scalar_one_or_none()
            return to_review(record) if record is not None else None

    async def update_verdict(
        self,
        review_id: str,
        verdict: Verdict,
        confidence: float,
        explanation: str,
        trace: dict[str, Any],
        violations: Sequence[AgentViolation] = (),
    ) -> Review:
        """Write the decision and its violations atomically.

        Violations from an earlier run of the same review are replaced, so a
        redelivered job leaves one set behind.
        """
        review_uuid = as_uuid(review_id, "review_id")
        stmt = (
            update(ReviewRecord)
            .where(ReviewRecord.id == review_uuid)
            .values(
                verdict=verdict,
                confidence=confidence,
                explanation=explanation,
                trace=trace,
                status=COMPLETE_STATUS,
                updated_at=func.now(),
            )
            .returning(ReviewRecord)
        )

        async with self._session_factory() as session, session.begin():
            record = (await session.execute(stmt)).scalar_one_or_none()
            if record is None:
                raise DatabaseError(f"Failed to update review verdict: {review_id}")

            await session.execute(
                delete(ViolationRecord).where(ViolationRecord.review_id == review_uuid)
            )
            if violations:
                session.add_all(
                    [
                        ViolationRecord(
                            review_id=review_uuid,
                            policy_section=v.policy_section,
                            severity=v.severity,
                            description=v.description,
                        )
                        for v in violations
                    ]
                )
                await session.flush()

            review = to_review(record)

        logger.info(
            "Review verdict stored",
            review_id=review_id,
            verdict=verdict,
            violations=len(violations),
        )
        return review

    async def get_violations(self, review_id: str) -> list[AgentViolation]:
        query = (
            select(ViolationRecord)
            .where(ViolationRecord.review_id == as_uuid(review_id, "review_id"))
            .order_by(ViolationRecord.created_at, ViolationRecord.policy_section)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [
                AgentViolation(
                    policy_section=r.policy_section,
                    severity=r.severity,
                    description=r.description,
                )
                for r in result.scalars().all()
            ]
