"""Unit tests for submission and status, including stuck-review recovery."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from listing_review.core.errors import NotFoundError
from listing_review.modules.pipeline.queue import InMemoryReviewQueue
from listing_review.modules.pipeline.schemas import AgentViolation, Listing
from listing_review.modules.reviews.schemas import ListingCreate
from listing_review.modules.reviews.service import ReviewService
from tests.fakes import TENANT_ID, FakeListingRepository, FakeReviewRepository, make_listing

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def queue() -> InMemoryReviewQueue:
    return InMemoryReviewQueue()


@pytest.fixture
def service(
    review_repo: FakeReviewRepository,
    listing_repo: FakeListingRepository,
    queue: InMemoryReviewQueue,
) -> ReviewService:
    return ReviewService(
        review_repo, listing_repo, queue, TENANT_ID, stale_after_seconds=120, clock=lambda: NOW
    )


# ---------------------------------------------------------------------------
# submit
# ---------------------------------------------------------------------------


async def test_submit_creates_pending_review_and_enqueues(
    service: ReviewService, review_repo: FakeReviewRepository, queue: InMemoryReviewQueue
) -> None:
    response = await service.submit(
        ListingCreate(title="Lamp", description="Desk lamp", category="home")
    )

    review = review_repo.reviews[response.review_id]
    assert review.status == "pending"
    assert len(queue.enqueued) == 1
    job = queue.enqueued[0]
    assert job.review_id == response.review_id
    assert job.listing_id == review.listing_id
    assert job.tenant_id == TENANT_ID


async def test_submit_uses_given_tenant(
    service: ReviewService, queue: InMemoryReviewQueue, listing_repo: FakeListingRepository
) -> None:
    other = "00000000-0000-0000-0000-0000000000ff"
    await service.submit(ListingCreate(title="a", description="b", category="c", tenant_id=other))
    assert queue.enqueued[0].tenant_id == other
    assert listing_repo.listings[queue.enqueued[0].listing_id].tenant_id == other


# ---------------------------------------------------------------------------
# get_status
# ---------------------------------------------------------------------------


async def test_unknown_review_is_not_found(service: ReviewService) -> None:
    with pytest.raises(NotFoundError):
        await service.get_status("missing")


async def test_fresh_pending_review_is_left_alone(
    service: ReviewService, review_repo: FakeReviewRepository, queue: InMemoryReviewQueue, listing: Listing
) -> None:
    review = review_repo.add_pending(listing, created_at=NOW - timedelta(seconds=119))

    status = await service.get_status(review.id)

    assert status.status == "pending"
    assert not queue.enqueued


async def test_stale_pending_review_is_requeued(
    service: ReviewService, review_repo: FakeReviewRepository, queue: InMemoryReviewQueue,
    listing_repo: FakeListingRepository,
) -> None:
    other_tenant = "00000000-0000-0000-0000-0000000000aa"
    listing = listing_repo.add(make_listing(tenant_id=other_tenant))
    review = review_repo.add_pending(listing, created_at=NOW - timedelta(minutes=3))

    status = await service.get_status(review.id)

    assert status.status == "routing"
    assert review_repo.reviews[review.id].status == "routing"
    assert len(review_repo.reviews) == 1
    assert len(queue.enqueued) == 1
    job = queue.enqueued[0]
    assert (job.review_id, job.listing_id, job.tenant_id) == (review.id, listing.id, other_tenant)


async def test_stale_review_in_other_status_is_not_requeued(
    service: ReviewService, review_repo: FakeReviewRepository, queue: InMemoryReviewQueue, listing: Listing
) -> None:
    review = review_repo.add_pending(listing, created_at=NOW - timedelta(hours=1))
    await review_repo.update_status(review.id, "scanning")

    status = await service.get_status(review.id)

    assert status.status == "scanning"
    assert not queue.enqueued


async def test_stale_review_claimed_by_another_poll_is_not_requeued(
    service: ReviewService, review_repo: FakeReviewRepository, queue: InMemoryReviewQueue,
    listing: Listing, monkeypatch: pytest.MonkeyPatch,
) -> None:
    review = review_repo.add_pending(listing, created_at=NOW - timedelta(minutes=3))
    # a concurrent poll has already moved it on
    await review_repo.update_status(review.id, "routing")

    reads: list[str] = []
    current_get = review_repo.get_by_id

    async def get_by_id(review_id: str):
        reads.append(review_id)
        return review if len(reads) == 1 else await current_get(review_id)

    monkeypatch.setattr(review_repo, "get_by_id", get_by_id)

    status = await service.get_status(review.id)

    assert status.status == "routing"
    assert not queue.enqueued


async def test_concurrent_polls_requeue_once(
    service: ReviewService, review_repo: FakeReviewRepository, queue: InMemoryReviewQueue, listing: Listing
) -> None:
    review = review_repo.add_pending(listing, created_at=NOW - timedelta(minutes=3))

    first, second = await asyncio.gather(service.get_status(review.id), service.get_status(review.id))

    assert first.status == second.status == "routing"
    assert len(queue.enqueued) == 1


async def test_completed_review_reports_decision_and_violations(
    service: ReviewService, review_repo: FakeReviewRepository, listing: Listing
) -> None:
    review = review_repo.add_pending(listing, created_at=NOW)
    violation = AgentViolation(policy_section="1.1", severity="high", description="Weapon")
    await review_repo.update_verdict(
        review.id, "rejected", 0.9, "Sells a weapon.", {"traces": []}, [violation]
    )

    status = await service.get_status(review.id)

    assert status.status == "complete"
    assert status.verdict == "rejected"
    assert status.confidence == 0.9
    assert status.explanation == "Sells a weapon."
    assert status.violations == [violation]
    assert status.error is None


async def test_failed_review_reports_error(
    service: ReviewService, review_repo: FakeReviewRepository, listing: Listing
) -> None:
    review = review_repo.add_pending(listing, created_at=NOW)
    await review_repo.update_status(review.id, "failed", {"traces": [], "error": "All agents failed"})

    status = await service.get_status(review.id)

    assert status.status == "failed"
    assert status.error == "All agents failed"
