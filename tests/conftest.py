"""Shared test fixtures for the listing review suite.

Nothing here talks to a real LLM, database or Redis.
"""

from __future__ import annotations

import pytest

from listing_review.modules.pipeline.schemas import Listing
from tests.fakes import FakeListingRepository, FakeReviewRepository, make_listing


@pytest.fixture
def listing_repo() -> FakeListingRepository:
    return FakeListingRepository()


@pytest.fixture
def review_repo(listing_repo: FakeListingRepository) -> FakeReviewRepository:
    return FakeReviewRepository(listing_repo)


@pytest.fixture
def listing(listing_repo: FakeListingRepository) -> Listing:
    return listing_repo.add(make_listing())
